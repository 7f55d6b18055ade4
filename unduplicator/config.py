"""
Shared configuration for the unduplicator.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("unduplicator")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_list(env_name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.environ.get(env_name)
    if value is None:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items or default


SUPPORTED_DB_BACKENDS = {"sqlite", "postgres", "mysql"}

# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "sqlite").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/registry.db")
DATABASE_URL = os.environ.get("DATABASE_URL")

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Registry table names
FILE_TABLE = "sys_file"
METADATA_TABLE = "sys_file_metadata"
REFERENCE_INDEX_TABLE = "sys_refindex"
PROCESSED_FILE_TABLE = "sys_file_processedfile"
STORAGE_TABLE = "sys_file_storage"

# Reconciliation defaults
DEFAULT_META_FIELDS = _get_list("UNDUPLICATOR_META_FIELDS", ("description",))
FILEMETADATA_META_FIELDS = ("description", "caption", "copyright")
FILE_LINK_PREFIX = os.environ.get("UNDUPLICATOR_FILE_LINK_PREFIX", "t3://file?uid=")
RTE_IMAGE_REFERENCES = _get_bool("UNDUPLICATOR_RTE_IMAGE_REFERENCES", False)
RTE_IMAGE_ATTRIBUTE = "data-htmlarea-file-uid"
STORAGE_FILTER_ALL = -1

# Derived files live below this root, resolved per storage base path
PUBLIC_PATH = os.environ.get("UNDUPLICATOR_PUBLIC_PATH", os.getcwd())

# Audit trail
AUDIT_EVENTS_ENABLED = _get_bool("AUDIT_EVENTS_ENABLED", True)
MAX_FIELD_NAME_LENGTH = _get_int("UNDUPLICATOR_MAX_FIELD_NAME_LENGTH", 64)


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL

    errors = []
    if DB_BACKEND not in SUPPORTED_DB_BACKENDS:
        errors.append("DB_BACKEND must be 'sqlite', 'postgres', or 'mysql'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND != "sqlite" and is_sqlite_url:
            errors.append(f"DATABASE_URL must not be a sqlite URL when DB_BACKEND={DB_BACKEND}")

    if not FILE_LINK_PREFIX:
        errors.append("UNDUPLICATOR_FILE_LINK_PREFIX must not be empty")

    if not os.path.isdir(PUBLIC_PATH):
        logger.warning(
            "UNDUPLICATOR_PUBLIC_PATH=%s does not exist; processed files cannot be removed from disk.",
            PUBLIC_PATH,
        )

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
