import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

import unduplicator.config as config
from unduplicator.errors import ValidationIssue
from unduplicator.options import ForcePolicy, UnduplicateOptions
from unduplicator.validators import validate_force, validate_storage_filter, validate_tracked_fields


def test_defaults():
    options = UnduplicateOptions.from_values()
    assert options.dry_run is False
    assert options.identifier_filter is None
    assert options.storage_filter == config.STORAGE_FILTER_ALL
    assert options.order == "desc"
    assert options.force is None
    assert options.tracked_fields == config.DEFAULT_META_FIELDS
    assert options.link_prefix == config.FILE_LINK_PREFIX


def test_keep_oldest_orders_ascending():
    assert UnduplicateOptions.from_values(keep_oldest=True).order == "asc"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, None),
        (False, None),
        (True, "overwrite"),
        ("", "overwrite"),
        ("keep", "keep"),
        (" Keep-NonEmpty ", "keep-nonempty"),
        ("overwrite", "overwrite"),
    ],
)
def test_validate_force(raw, expected):
    assert validate_force(raw) == expected


def test_force_policy_on_options():
    assert UnduplicateOptions.from_values(force="keep-nonempty").force == ForcePolicy.keep_nonempty


@pytest.mark.parametrize("raw", ["always", 3])
def test_validate_force_rejects_unknown(raw):
    with pytest.raises(ValidationIssue) as excinfo:
        validate_force(raw)
    assert excinfo.value.field == "force"


def test_tracked_fields_from_comma_string():
    assert validate_tracked_fields(" description, caption ,,copyright,caption") == (
        "description",
        "caption",
        "copyright",
    )


@pytest.mark.parametrize("raw", ["", " , ", [], None])
def test_tracked_fields_must_not_be_empty(raw):
    with pytest.raises(ValidationIssue):
        validate_tracked_fields(raw)


@pytest.mark.parametrize("raw", ["uid", "sys_language_uid", "file", "drop table", "1abc"])
def test_tracked_fields_reject_keys_and_bad_names(raw):
    with pytest.raises(ValidationIssue):
        validate_tracked_fields(raw)


@pytest.mark.parametrize(("raw", "expected"), [(-1, -1), ("3", 3), (0, 0)])
def test_storage_filter(raw, expected):
    assert validate_storage_filter(raw) == expected


@pytest.mark.parametrize("raw", [-2, "x", True, None])
def test_storage_filter_rejects(raw):
    with pytest.raises(ValidationIssue):
        validate_storage_filter(raw)


def test_describe_lists_chosen_values():
    options = UnduplicateOptions.from_values(
        dry_run=True,
        identifier="/a.jpg",
        storage=1,
        force="keep",
        meta_fields=["description", "caption"],
    )
    assert options.describe() == {
        "dry_run": True,
        "identifier": "/a.jpg",
        "storage": 1,
        "keep_oldest": False,
        "force": "keep",
        "interactive": False,
        "meta_fields": ["description", "caption"],
    }


def test_validate_and_prepare_config_rejects_mismatched_url(monkeypatch):
    monkeypatch.setattr(config, "DB_BACKEND", "sqlite")
    monkeypatch.setattr(config, "DATABASE_URL", "postgresql://localhost/registry")
    with pytest.raises(RuntimeError) as excinfo:
        config.validate_and_prepare_config()
    assert "sqlite URL" in str(excinfo.value)


def test_validate_and_prepare_config_builds_sqlite_url(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "DB_BACKEND", "sqlite")
    monkeypatch.setattr(config, "DATABASE_URL", None)
    monkeypatch.setattr(config, "SQLITE_PATH", str(tmp_path / "registry.db"))
    monkeypatch.setattr(config, "PUBLIC_PATH", str(tmp_path))
    config.validate_and_prepare_config()
    assert config.DATABASE_URL == f"sqlite:///{tmp_path / 'registry.db'}"
