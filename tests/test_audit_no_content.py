import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

import unduplicator.config as config
from unduplicator.audit import list_audit_events, log_event
from unduplicator.audit_constants import EVENT_FILE_UNDUPLICATED, EVENT_METADATA_MIGRATED
from unduplicator.models import AuditEvent


def test_audit_rejects_field_content_metadata(db_session):
    before = db_session.query(AuditEvent).count()
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_METADATA_MIGRATED,
            actor_type="system",
            target_type="metadata",
            target_ids=[1],
            metadata={"description": "should_not_log"},
        )
    db_session.rollback()
    after = db_session.query(AuditEvent).count()
    assert after == before


def test_audit_rejects_nested_field_content(db_session):
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_METADATA_MIGRATED,
            target_type="metadata",
            target_ids=[1],
            metadata={"changes": {"Caption": "should_not_log"}},
        )
    db_session.rollback()


def test_audit_rejects_long_strings(db_session):
    before = db_session.query(AuditEvent).count()
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_FILE_UNDUPLICATED,
            actor_type="system",
            target_type="file",
            target_ids=[1],
            metadata={"note": "x" * 600},
        )
    db_session.rollback()
    after = db_session.query(AuditEvent).count()
    assert after == before


def test_audit_rejects_unknown_target_type(db_session):
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_FILE_UNDUPLICATED,
            target_type="memory",
            target_ids=[1],
        )


def test_audit_roundtrip(db_session):
    log_event(
        db_session,
        event_type=EVENT_FILE_UNDUPLICATED,
        target_type="file",
        target_ids=[7, 9],
        count_affected=2,
        metadata={"master_file": 9, "references": 2},
    )
    db_session.commit()

    result = list_audit_events(db_session, event_type=EVENT_FILE_UNDUPLICATED)
    assert result["count"] == 1
    event = result["events"][0]
    assert event["actor_type"] == "cli"
    assert event["target_ids"] == [7, 9]
    assert event["metadata"] == {"master_file": 9, "references": 2}


def test_audit_can_be_disabled(db_session, monkeypatch):
    monkeypatch.setattr(config, "AUDIT_EVENTS_ENABLED", False)
    assert (
        log_event(
            db_session,
            event_type=EVENT_FILE_UNDUPLICATED,
            target_type="file",
            target_ids=[1],
        )
        is None
    )
    db_session.commit()
    assert db_session.query(AuditEvent).count() == 0
