import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from unduplicator.errors import DuplicateMetadataError
from unduplicator.options import ConflictResolution, ForcePolicy, UnduplicateOptions
from unduplicator.services.metadata_reconciler import (
    LanguageMetadata,
    MetadataAction,
    MetadataReconciler,
    MetadataUpdateDecision,
    classify,
    is_empty_value,
    should_write_master,
)
from unduplicator.services.record_store import MetadataRow, SqlRecordStore

MASTER = 2
OLD = 1


def _decision(old_fields, master_fields=None, tracked=("description",)):
    return MetadataUpdateDecision(
        master_file_uid=MASTER,
        old_file_uid=OLD,
        old=MetadataRow(uid=10, file=OLD, sys_language_uid=0, fields=old_fields),
        master=(
            MetadataRow(uid=20, file=MASTER, sys_language_uid=0, fields=master_fields)
            if master_fields is not None
            else None
        ),
        tracked_fields=tracked,
    )


def _reconcile(db_session, resolver=None, **options):
    store = SqlRecordStore(db_session)
    reconciler = MetadataReconciler(store, UnduplicateOptions.from_values(**options), resolver)
    outcome = reconciler.reconcile(
        MASTER,
        LanguageMetadata(MASTER, store.list_metadata_for_file(MASTER)),
        OLD,
        LanguageMetadata(OLD, store.list_metadata_for_file(OLD)),
    )
    store.commit()
    return outcome


@pytest.fixture
def pair(registry):
    registry.add_files("/pair.jpg", [OLD, MASTER])
    return registry


@pytest.mark.parametrize("value", [None, "", "   ", 0, 0.0])
def test_empty_values(value):
    assert is_empty_value(value)


@pytest.mark.parametrize("value", ["x", 1, "0"])
def test_non_empty_values(value):
    assert not is_empty_value(value)


def test_classify_orders_decisions():
    assert classify(_decision({"description": ""}, {"description": "m"}), None) == MetadataAction.delete
    assert classify(_decision({"description": "m"}, {"description": "m"}), None) == MetadataAction.delete
    assert classify(_decision({"description": "o"}, {"description": ""}), None) == MetadataAction.migrate
    assert classify(_decision({"description": "o"}), None) == MetadataAction.migrate
    assert classify(_decision({"description": "o"}, {"description": "m"}), None) == MetadataAction.conflict
    assert (
        classify(_decision({"description": "o"}, {"description": "m"}), ForcePolicy.keep)
        == MetadataAction.migrate
    )


def test_untracked_fields_are_ignored_when_comparing():
    decision = _decision({"description": "same", "title": "old"}, {"description": "same", "title": "new"})
    assert decision.is_old_same_as_master
    assert classify(decision, None) == MetadataAction.delete


def test_should_write_master_by_policy():
    empty_master = _decision({"description": "o"}, {"description": ""})
    full_master = _decision({"description": "o"}, {"description": "m"})
    assert should_write_master(full_master, None)
    assert should_write_master(full_master, ForcePolicy.overwrite)
    assert not should_write_master(full_master, ForcePolicy.keep)
    assert not should_write_master(empty_master, ForcePolicy.keep)
    assert should_write_master(empty_master, ForcePolicy.keep_nonempty)
    assert not should_write_master(full_master, ForcePolicy.keep_nonempty)


def test_language_metadata_rejects_second_record_for_language():
    rows = [
        MetadataRow(uid=1, file=OLD, sys_language_uid=0),
        MetadataRow(uid=2, file=OLD, sys_language_uid=0),
    ]
    with pytest.raises(DuplicateMetadataError) as excinfo:
        LanguageMetadata(OLD, rows)
    assert excinfo.value.metadata_uids == (1, 2)
    assert excinfo.value.error_code == 7813804023


def test_language_metadata_iterates_languages_in_order():
    rows = [
        MetadataRow(uid=3, file=OLD, sys_language_uid=2),
        MetadataRow(uid=1, file=OLD, sys_language_uid=0),
    ]
    assert list(LanguageMetadata(OLD, rows)) == [0, 2]


def test_empty_duplicate_metadata_is_deleted(pair, db_session):
    pair.add_metadata(10, OLD, description="")
    pair.add_metadata(20, MASTER, description="master")
    pair.add_refindex("h-meta", "sys_file_metadata", 10, "file", OLD)

    outcome = _reconcile(db_session)

    assert outcome.safe_to_delete
    assert outcome.languages[0].action == MetadataAction.delete
    assert pair.metadata_uids() == [20]
    assert "h-meta" not in pair.refindex()
    assert pair.metadata(MASTER)[0]["description"] == "master"


def test_migrates_into_empty_master(pair, db_session):
    pair.add_metadata(10, OLD, description="old text")
    pair.add_metadata(20, MASTER, description="")

    outcome = _reconcile(db_session)

    assert outcome.safe_to_delete
    assert outcome.languages[0].action == MetadataAction.migrate
    assert outcome.languages[0].written_fields == ["description"]
    assert pair.metadata(MASTER)[0]["description"] == "old text"
    assert pair.metadata(OLD) == {}


def test_creates_master_record_for_missing_language(pair, db_session):
    pair.add_metadata(20, MASTER, description="default language")
    pair.add_metadata(11, OLD, language=1, description="deutsch", title="Titel")

    outcome = _reconcile(db_session)

    assert outcome.safe_to_delete
    assert outcome.languages[0].created_master
    created = pair.metadata(MASTER)[1]
    assert created["description"] == "deutsch"
    assert created["title"] == "Titel"
    assert pair.metadata(OLD) == {}


def test_conflict_keeps_duplicate_metadata(pair, db_session):
    pair.add_metadata(10, OLD, description="old text")
    pair.add_metadata(20, MASTER, description="master text")

    outcome = _reconcile(db_session)

    assert not outcome.safe_to_delete
    assert len(outcome.conflicts) == 1
    conflict = outcome.conflicts[0].as_dict()
    assert conflict["old"] == {"description": "old text"}
    assert conflict["master"] == {"description": "master text"}
    assert pair.metadata_uids() == [10, 20]
    assert "metadata.conflict" in pair.audit_event_types()


def test_force_overwrite_replaces_master_values(pair, db_session):
    pair.add_metadata(10, OLD, description="old text", caption="old caption")
    pair.add_metadata(20, MASTER, description="master text", caption="master caption")

    outcome = _reconcile(db_session, force="overwrite", meta_fields="description,caption")

    assert outcome.safe_to_delete
    master = pair.metadata(MASTER)[0]
    assert master["description"] == "old text"
    assert master["caption"] == "old caption"
    assert pair.metadata_uids() == [20]


def test_bare_force_means_overwrite(pair, db_session):
    pair.add_metadata(10, OLD, description="old text")
    pair.add_metadata(20, MASTER, description="master text")

    _reconcile(db_session, force=True)

    assert pair.metadata(MASTER)[0]["description"] == "old text"


def test_force_keep_leaves_master_untouched(pair, db_session):
    pair.add_metadata(10, OLD, description="old text")
    pair.add_metadata(20, MASTER, description="master text")

    outcome = _reconcile(db_session, force="keep")

    assert outcome.safe_to_delete
    assert pair.metadata(MASTER)[0]["description"] == "master text"
    assert pair.metadata_uids() == [20]


def test_force_keep_nonempty_only_fills_empty_master(registry, db_session):
    registry.add_files("/pair.jpg", [OLD, MASTER])
    registry.add_metadata(10, OLD, language=0, description="old default")
    registry.add_metadata(11, OLD, language=1, description="old translated")
    registry.add_metadata(20, MASTER, language=0, description="master default")
    registry.add_metadata(21, MASTER, language=1, description="")

    outcome = _reconcile(db_session, force="keep-nonempty")

    assert outcome.safe_to_delete
    master = registry.metadata(MASTER)
    assert master[0]["description"] == "master default"
    assert master[1]["description"] == "old translated"
    assert registry.metadata(OLD) == {}


def test_missing_field_is_skipped_not_cleared(pair, db_session):
    pair.add_metadata(10, OLD, description="old text", caption=None)
    pair.add_metadata(20, MASTER, description="", caption="master caption")

    outcome = _reconcile(db_session, force="overwrite", meta_fields="description,caption")

    assert outcome.safe_to_delete
    assert outcome.languages[0].missing_fields == ["caption"]
    master = pair.metadata(MASTER)[0]
    assert master["description"] == "old text"
    assert master["caption"] == "master caption"


@pytest.mark.parametrize(
    ("resolution", "expected_master", "expected_uids", "safe"),
    [
        (ConflictResolution.keep_old, "old text", [20], True),
        (ConflictResolution.keep_master, "master text", [20], True),
        (ConflictResolution.skip, "master text", [10, 20], False),
    ],
)
def test_interactive_resolution(pair, db_session, resolution, expected_master, expected_uids, safe):
    pair.add_metadata(10, OLD, description="old text")
    pair.add_metadata(20, MASTER, description="master text")
    asked = []

    def resolver(decision):
        asked.append((decision.old_uid, decision.master_uid))
        return resolution

    outcome = _reconcile(db_session, resolver=resolver, interactive=True)

    assert asked == [(10, 20)]
    assert outcome.safe_to_delete is safe
    assert pair.metadata(MASTER)[0]["description"] == expected_master
    assert pair.metadata_uids() == expected_uids


def test_skip_still_applies_other_languages(registry, db_session):
    registry.add_files("/pair.jpg", [OLD, MASTER])
    registry.add_metadata(10, OLD, language=0, description="old text")
    registry.add_metadata(11, OLD, language=1, description="")
    registry.add_metadata(20, MASTER, language=0, description="master text")

    outcome = _reconcile(db_session, resolver=lambda decision: ConflictResolution.skip, interactive=True)

    assert not outcome.safe_to_delete
    assert outcome.conflicts[0].skipped
    assert registry.metadata_uids() == [10, 20]


def test_dry_run_writes_nothing(pair, db_session):
    pair.add_metadata(10, OLD, description="old text")
    pair.add_metadata(20, MASTER, description="")

    outcome = _reconcile(db_session, dry_run=True)

    assert outcome.safe_to_delete
    assert outcome.languages[0].action == MetadataAction.migrate
    assert pair.metadata(MASTER)[0]["description"] == ""
    assert pair.metadata_uids() == [10, 20]
    assert pair.audit_event_types() == []
