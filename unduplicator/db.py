"""
File registry connection and schema revision handling.

The registry tables (``sys_file`` and friends) are owned by the Alembic
revisions under ``alembic/versions``. A run refuses to touch a registry whose
schema is behind the newest revision unless it may upgrade it itself.
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import unduplicator.config as config


class DB:
    """Engine and session factory of the registry the run works on."""

    engine = None
    SessionLocal = None


def _get_alembic_config():
    from alembic.config import Config

    # alembic.ini and alembic/ sit next to the unduplicator package
    project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    alembic_cfg = Config(os.path.join(project_dir, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(project_dir, "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", config.DATABASE_URL)
    return alembic_cfg


def _registry_revisions(engine) -> tuple[Optional[str], Optional[str]]:
    """Return (revision stamped on the registry, newest known revision)."""
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    script = ScriptDirectory.from_config(_get_alembic_config())
    newest = script.get_current_head()
    with engine.connect() as conn:
        stamped = MigrationContext.configure(conn).get_current_revision()
    return stamped, newest


def _upgrade_registry_schema(engine) -> None:
    from alembic import command

    stamped, newest = _registry_revisions(engine)
    if stamped == newest:
        config.logger.info("File registry schema is at revision %s", newest)
        return

    if not config.AUTO_MIGRATE_ON_STARTUP:
        raise RuntimeError(
            f"File registry schema is at revision {stamped}, expected {newest}. "
            "Run 'alembic upgrade head', set AUTO_MIGRATE_ON_STARTUP=true, "
            "or pass --no-migrate to skip this check."
        )

    config.logger.info("Upgrading file registry schema from %s to %s", stamped, newest)
    command.upgrade(_get_alembic_config(), "head")
    stamped, _ = _registry_revisions(engine)
    if stamped != newest:
        raise RuntimeError(f"File registry upgrade stopped at revision {stamped}, expected {newest}")


def init_db(migrate: bool = True) -> None:
    """Open the file registry and, unless ``migrate`` is False, check its schema revision."""
    config.validate_and_prepare_config()

    config.logger.info("Opening file registry (%s backend)", config.DB_BACKEND)
    engine_kwargs = {"pool_pre_ping": True}
    if config.DB_BACKEND == "sqlite":
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    DB.engine = create_engine(config.DATABASE_URL, **engine_kwargs)
    DB.SessionLocal = sessionmaker(bind=DB.engine)

    if migrate:
        _upgrade_registry_schema(DB.engine)
    else:
        config.logger.info("Schema revision check skipped; assuming the registry tables exist")
