"""
File registry database models.
"""

from datetime import datetime
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Index, JSON
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base

import unduplicator.config as config

DB_BACKEND = config.DB_BACKEND

JSON_TYPE = JSONB if DB_BACKEND == "postgres" else JSON
UUID_TYPE = UUID(as_uuid=True) if DB_BACKEND == "postgres" else String(36)


def _uuid_default() -> str | uuid.UUID:
    value = uuid.uuid4()
    return value if DB_BACKEND == "postgres" else str(value)

Base = declarative_base()

# =============================================================================
# Storages
# =============================================================================

class FileStorage(Base):
    __tablename__ = config.STORAGE_TABLE

    uid = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, default="")
    base_path = Column(String(1000), nullable=False, default="")  # "fileadmin/"


# =============================================================================
# Files
# =============================================================================

class FileRecord(Base):
    __tablename__ = config.FILE_TABLE

    uid = Column(Integer, primary_key=True)
    storage = Column(Integer, nullable=False, default=0)
    identifier = Column(String(768), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")
    sha1 = Column(String(40))
    tstamp = Column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("ix_sys_file_storage_identifier", "storage", "identifier"),
    )


class FileMetadata(Base):
    __tablename__ = config.METADATA_TABLE

    uid = Column(Integer, primary_key=True)
    file = Column(Integer, nullable=False, default=0)
    sys_language_uid = Column(Integer, nullable=False, default=0)
    title = Column(Text)
    description = Column(Text)
    alternative = Column(Text)
    caption = Column(Text)
    copyright = Column(Text)
    keywords = Column(Text)

    __table_args__ = (
        Index("ix_sys_file_metadata_file", "file"),
    )


class FileReference(Base):
    """Usage of a file by a content record (relation + optional link)."""

    __tablename__ = "sys_file_reference"

    uid = Column(Integer, primary_key=True)
    uid_local = Column(Integer, nullable=False, default=0)
    uid_foreign = Column(Integer, nullable=False, default=0)
    tablenames = Column(String(64), nullable=False, default="")
    fieldname = Column(String(64), nullable=False, default="")
    link = Column(Text)


class ProcessedFile(Base):
    __tablename__ = config.PROCESSED_FILE_TABLE

    uid = Column(Integer, primary_key=True)
    storage = Column(Integer, nullable=False, default=0)
    original = Column(Integer, nullable=False, default=0)
    identifier = Column(String(512), nullable=False, default="")
    name = Column(String(255))
    task_type = Column(String(200), nullable=False, default="")
    configuration = Column(Text)

    __table_args__ = (
        Index("ix_sys_file_processedfile_original", "original"),
    )


# =============================================================================
# Reference index
# =============================================================================

class ReferenceIndex(Base):
    __tablename__ = config.REFERENCE_INDEX_TABLE

    hash = Column(String(32), primary_key=True)
    tablename = Column(String(255), nullable=False, default="")
    recuid = Column(Integer, nullable=False, default=0)
    field = Column(String(64), nullable=False, default="")
    flexpointer = Column(String(255), nullable=False, default="")
    softref_key = Column(String(30), nullable=False, default="")
    softref_id = Column(String(40), nullable=False, default="")
    sorting = Column(Integer, nullable=False, default=0)
    workspace = Column(Integer, nullable=False, default=0)
    ref_table = Column(String(255), nullable=False, default="")
    ref_uid = Column(Integer, nullable=False, default=0)
    ref_string = Column(String(1024), nullable=False, default="")

    __table_args__ = (
        Index("ix_sys_refindex_lookup_uid", "ref_table", "ref_uid"),
        Index("ix_sys_refindex_lookup_rec", "tablename", "recuid"),
    )


# =============================================================================
# Audit
# =============================================================================

class AuditEvent(Base):
    __tablename__ = "audit_events"

    event_id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    event_type = Column(String(100), nullable=False)
    event_version = Column(Integer, default=1, nullable=False)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255))
    target_type = Column(String(50), nullable=False)
    target_ids = Column(JSON_TYPE, nullable=False)
    count_affected = Column(Integer)
    reason = Column(Text)
    metadata_ = Column("metadata", JSON_TYPE)

    __table_args__ = (
        Index("ix_audit_events_created_at", "created_at"),
        Index("ix_audit_events_event_type", "event_type"),
    )


__all__ = [
    "Base",
    "FileStorage",
    "FileRecord",
    "FileMetadata",
    "FileReference",
    "ProcessedFile",
    "ReferenceIndex",
    "AuditEvent",
]
