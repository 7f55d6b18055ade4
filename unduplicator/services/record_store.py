"""
Record store gateway for the file registry.

The reconciliation services only talk to the ``RecordStore`` protocol.
``SqlRecordStore`` implements it on top of a SQLAlchemy session: file,
reference index and processed file rows go through the ORM models, while
metadata and arbitrary referencing tables are reflected so that columns added
by other schema owners are visible as metadata fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from sqlalchemy import MetaData, Table, delete, func, insert, select, update
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

import unduplicator.config as config
from unduplicator.audit import log_event
from unduplicator.errors import ReferenceUpdateFailure, UnduplicatorError
from unduplicator.models import FileRecord, FileStorage, ProcessedFile, ReferenceIndex

METADATA_KEY_COLUMNS = ("uid", "file", "sys_language_uid")


@dataclass(frozen=True)
class DuplicateCandidate:
    identifier: str
    storage: int


@dataclass(frozen=True)
class FileRow:
    uid: int
    identifier: str
    storage: int


@dataclass(frozen=True)
class MetadataRow:
    uid: int
    file: int
    sys_language_uid: int
    fields: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ReferenceEntry:
    hash: str
    tablename: str
    recuid: int
    field: str
    ref_table: str
    ref_uid: int
    softref_key: str = ""


@dataclass(frozen=True)
class DerivedFile:
    uid: int
    identifier: str
    storage: int


class RecordStore(Protocol):
    def find_duplicate_identifier_groups(
        self, identifier_filter: Optional[str], storage_filter: int
    ) -> list[DuplicateCandidate]: ...

    def list_files_for_identifier(self, identifier: str, storage: int, order: str) -> list[FileRow]: ...

    def list_metadata_for_file(self, file_uid: int) -> list[MetadataRow]: ...

    def update_metadata_fields(self, metadata_uid: int, values: dict) -> None: ...

    def insert_metadata(self, file_uid: int, values: dict) -> int: ...

    def delete_metadata(self, uid: int) -> None: ...

    def delete_metadata_references(self, uid: int) -> None: ...

    def list_references_to(
        self, table: str, uid: int, exclude_table: Optional[str] = None
    ) -> list[ReferenceEntry]: ...

    def update_reference_target(self, entry: ReferenceEntry, new_uid: int) -> None: ...

    def read_referencing_field(self, table: str, record_uid: int, field: str) -> Any: ...

    def write_referencing_field(self, table: str, record_uid: int, field: str, value: Any) -> None: ...

    def delete_file_record(self, uid: int) -> None: ...

    def list_derived_files(self, original_uid: int) -> list[DerivedFile]: ...

    def delete_derived_file_records(self, original_uid: int) -> int: ...

    def storage_base_paths(self) -> dict[int, str]: ...

    def log_event(self, **kwargs) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class ReadOnlyStoreError(UnduplicatorError):
    """A mutating call reached a store opened for a dry run."""


class SqlRecordStore:
    """SQLAlchemy-backed ``RecordStore``."""

    def __init__(self, db, read_only: bool = False):
        self.db = db
        self.read_only = read_only
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    def _ensure_writable(self, operation: str) -> None:
        if self.read_only:
            raise ReadOnlyStoreError(f"{operation} is not allowed on a read-only store")

    def _table(self, name: str) -> Table:
        table = self._tables.get(name)
        if table is None:
            table = Table(name, self._metadata, autoload_with=self.db.connection())
            self._tables[name] = table
        return table

    def _metadata_table(self) -> Table:
        return self._table(config.METADATA_TABLE)

    # -------------------------------------------------------------------------
    # files
    # -------------------------------------------------------------------------

    def find_duplicate_identifier_groups(
        self, identifier_filter: Optional[str], storage_filter: int
    ) -> list[DuplicateCandidate]:
        folded = func.lower(FileRecord.identifier)
        query = self.db.query(
            func.max(FileRecord.identifier).label("identifier"),
            FileRecord.storage,
        )
        if identifier_filter:
            query = query.filter(folded == func.lower(identifier_filter))
        if storage_filter > config.STORAGE_FILTER_ALL:
            query = query.filter(FileRecord.storage == storage_filter)
        rows = (
            query.group_by(folded, FileRecord.storage)
            .having(func.count(FileRecord.uid) > 1)
            .order_by(FileRecord.storage, folded)
            .all()
        )
        return [DuplicateCandidate(identifier=row.identifier or "", storage=row.storage) for row in rows]

    def list_files_for_identifier(self, identifier: str, storage: int, order: str) -> list[FileRow]:
        ordering = FileRecord.uid.asc() if order == "asc" else FileRecord.uid.desc()
        rows = (
            self.db.query(FileRecord)
            .filter(FileRecord.storage == storage)
            .filter(func.lower(FileRecord.identifier) == func.lower(identifier))
            .order_by(ordering)
            .all()
        )
        return [FileRow(uid=row.uid, identifier=row.identifier, storage=row.storage) for row in rows]

    def delete_file_record(self, uid: int) -> None:
        self._ensure_writable("delete_file_record")
        self.db.query(FileRecord).filter(FileRecord.uid == uid).delete(synchronize_session=False)

    # -------------------------------------------------------------------------
    # metadata
    # -------------------------------------------------------------------------

    def list_metadata_for_file(self, file_uid: int) -> list[MetadataRow]:
        table = self._metadata_table()
        rows = self.db.execute(
            select(table).where(table.c.file == file_uid).order_by(table.c.uid)
        ).mappings().all()
        result = []
        for row in rows:
            values = {key: value for key, value in row.items() if key not in METADATA_KEY_COLUMNS}
            result.append(
                MetadataRow(
                    uid=row["uid"],
                    file=row["file"],
                    sys_language_uid=row["sys_language_uid"],
                    fields=values,
                )
            )
        return result

    def update_metadata_fields(self, metadata_uid: int, values: dict) -> None:
        self._ensure_writable("update_metadata_fields")
        if not values:
            return
        table = self._metadata_table()
        known = {key: value for key, value in values.items() if key in table.c}
        if not known:
            return
        self.db.execute(update(table).where(table.c.uid == metadata_uid).values(**known))

    def insert_metadata(self, file_uid: int, values: dict) -> int:
        self._ensure_writable("insert_metadata")
        table = self._metadata_table()
        row = {key: value for key, value in values.items() if key in table.c and key != "uid"}
        row["file"] = file_uid
        result = self.db.execute(insert(table).values(**row))
        return result.inserted_primary_key[0]

    def delete_metadata(self, uid: int) -> None:
        self._ensure_writable("delete_metadata")
        table = self._metadata_table()
        self.db.execute(delete(table).where(table.c.uid == uid))

    def delete_metadata_references(self, uid: int) -> None:
        self._ensure_writable("delete_metadata_references")
        self.db.query(ReferenceIndex).filter(
            ReferenceIndex.tablename == config.METADATA_TABLE,
            ReferenceIndex.recuid == uid,
        ).delete(synchronize_session=False)

    # -------------------------------------------------------------------------
    # reference index
    # -------------------------------------------------------------------------

    def list_references_to(
        self, table: str, uid: int, exclude_table: Optional[str] = None
    ) -> list[ReferenceEntry]:
        query = self.db.query(ReferenceIndex).filter(
            ReferenceIndex.ref_table == table,
            ReferenceIndex.ref_uid == uid,
        )
        if exclude_table:
            query = query.filter(ReferenceIndex.tablename != exclude_table)
        rows = query.order_by(
            ReferenceIndex.tablename,
            ReferenceIndex.recuid,
            ReferenceIndex.field,
            ReferenceIndex.hash,
        ).all()
        return [
            ReferenceEntry(
                hash=row.hash,
                tablename=row.tablename,
                recuid=row.recuid,
                field=row.field,
                ref_table=row.ref_table,
                ref_uid=row.ref_uid,
                softref_key=row.softref_key or "",
            )
            for row in rows
        ]

    def update_reference_target(self, entry: ReferenceEntry, new_uid: int) -> None:
        self._ensure_writable("update_reference_target")
        self.db.query(ReferenceIndex).filter(
            ReferenceIndex.hash == entry.hash,
            ReferenceIndex.tablename == entry.tablename,
            ReferenceIndex.recuid == entry.recuid,
            ReferenceIndex.field == entry.field,
            ReferenceIndex.ref_table == entry.ref_table,
            ReferenceIndex.ref_uid == entry.ref_uid,
        ).update({ReferenceIndex.ref_uid: new_uid}, synchronize_session=False)

    def _referencing_column(self, table: str, record_uid: int, field: str):
        try:
            target = self._table(table)
        except NoSuchTableError as exc:
            raise ReferenceUpdateFailure(
                f"Referencing table {table} does not exist",
                tablename=table,
                recuid=record_uid,
                field=field,
            ) from exc
        if field not in target.c or "uid" not in target.c:
            raise ReferenceUpdateFailure(
                f"Referencing field {table}.{field} does not exist",
                tablename=table,
                recuid=record_uid,
                field=field,
            )
        return target

    def read_referencing_field(self, table: str, record_uid: int, field: str) -> Any:
        target = self._referencing_column(table, record_uid, field)
        try:
            row = self.db.execute(
                select(target.c[field]).where(target.c.uid == record_uid)
            ).first()
        except SQLAlchemyError as exc:
            raise ReferenceUpdateFailure(
                f"Could not read {table}.{field} of record {record_uid}: {exc}",
                tablename=table,
                recuid=record_uid,
                field=field,
            ) from exc
        if row is None:
            raise ReferenceUpdateFailure(
                f"Referencing record {table}:{record_uid} not found",
                tablename=table,
                recuid=record_uid,
                field=field,
            )
        return row[0]

    def write_referencing_field(self, table: str, record_uid: int, field: str, value: Any) -> None:
        self._ensure_writable("write_referencing_field")
        target = self._referencing_column(table, record_uid, field)
        try:
            result = self.db.execute(
                update(target).where(target.c.uid == record_uid).values({field: value})
            )
        except SQLAlchemyError as exc:
            raise ReferenceUpdateFailure(
                f"Could not write {table}.{field} of record {record_uid}: {exc}",
                tablename=table,
                recuid=record_uid,
                field=field,
            ) from exc
        if result.rowcount == 0:
            raise ReferenceUpdateFailure(
                f"Referencing record {table}:{record_uid} not found",
                tablename=table,
                recuid=record_uid,
                field=field,
            )

    # -------------------------------------------------------------------------
    # processed files and storages
    # -------------------------------------------------------------------------

    def list_derived_files(self, original_uid: int) -> list[DerivedFile]:
        rows = (
            self.db.query(ProcessedFile)
            .filter(ProcessedFile.original == original_uid)
            .order_by(ProcessedFile.uid)
            .all()
        )
        return [DerivedFile(uid=row.uid, identifier=row.identifier or "", storage=row.storage) for row in rows]

    def delete_derived_file_records(self, original_uid: int) -> int:
        self._ensure_writable("delete_derived_file_records")
        return self.db.query(ProcessedFile).filter(
            ProcessedFile.original == original_uid
        ).delete(synchronize_session=False)

    def storage_base_paths(self) -> dict[int, str]:
        return {row.uid: row.base_path or "" for row in self.db.query(FileStorage).all()}

    # -------------------------------------------------------------------------
    # transaction + audit
    # -------------------------------------------------------------------------

    def log_event(self, **kwargs) -> None:
        self._ensure_writable("log_event")
        log_event(self.db, **kwargs)

    def commit(self) -> None:
        if self.read_only:
            self.db.rollback()
            return
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

