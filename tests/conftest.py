import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("AUTO_MIGRATE_ON_STARTUP", "false")

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, select
from sqlalchemy.orm import sessionmaker

from unduplicator.db import DB
from unduplicator.models import (
    AuditEvent,
    Base,
    FileMetadata,
    FileRecord,
    FileReference,
    FileStorage,
    ProcessedFile,
    ReferenceIndex,
)

CONTENT_TABLE = "tt_content"


def _content_table(metadata: MetaData) -> Table:
    return Table(
        CONTENT_TABLE,
        metadata,
        Column("uid", Integer, primary_key=True),
        Column("header_link", String(1024), nullable=False, default=""),
        Column("bodytext", Text),
    )


class Registry:
    """Seeds and inspects the test registry through short-lived sessions."""

    def __init__(self, engine):
        self.engine = engine
        self.content = _content_table(MetaData())

    def _add(self, *rows) -> None:
        with DB.SessionLocal() as db:
            db.add_all(rows)
            db.commit()

    def add_storage(self, uid: int, base_path: str) -> None:
        self._add(FileStorage(uid=uid, name=f"storage {uid}", base_path=base_path))

    def add_file(self, uid: int, identifier: str, storage: int = 1) -> None:
        self._add(FileRecord(uid=uid, identifier=identifier, storage=storage, name=os.path.basename(identifier)))

    def add_files(self, identifier: str, uids, storage: int = 1) -> None:
        for uid in uids:
            self.add_file(uid, identifier, storage)

    def add_metadata(self, uid: int, file: int, language: int = 0, **fields) -> None:
        self._add(FileMetadata(uid=uid, file=file, sys_language_uid=language, **fields))

    def add_file_reference(self, uid: int, file: int, foreign: int = 1) -> None:
        self._add(FileReference(uid=uid, uid_local=file, uid_foreign=foreign, tablenames=CONTENT_TABLE, fieldname="image"))

    def add_refindex(
        self,
        hash: str,
        tablename: str,
        recuid: int,
        field: str,
        ref_uid: int,
        softref_key: str = "",
        ref_table: str = "sys_file",
    ) -> None:
        self._add(
            ReferenceIndex(
                hash=hash,
                tablename=tablename,
                recuid=recuid,
                field=field,
                ref_table=ref_table,
                ref_uid=ref_uid,
                softref_key=softref_key,
            )
        )

    def add_content(self, uid: int, header_link: str = "", bodytext: str = "") -> None:
        with self.engine.begin() as conn:
            conn.execute(self.content.insert().values(uid=uid, header_link=header_link, bodytext=bodytext))

    def add_processed(self, uid: int, original: int, identifier: str, storage: int = 1) -> None:
        self._add(ProcessedFile(uid=uid, original=original, identifier=identifier, storage=storage, task_type="Image.CropScaleMask"))

    def file_uids(self) -> list[int]:
        with DB.SessionLocal() as db:
            return [row.uid for row in db.query(FileRecord).order_by(FileRecord.uid)]

    def metadata(self, file: int) -> dict[int, dict]:
        with DB.SessionLocal() as db:
            rows = db.query(FileMetadata).filter(FileMetadata.file == file).order_by(FileMetadata.uid).all()
            return {
                row.sys_language_uid: {
                    "uid": row.uid,
                    "title": row.title,
                    "description": row.description,
                    "caption": row.caption,
                    "copyright": row.copyright,
                }
                for row in rows
            }

    def metadata_uids(self) -> list[int]:
        with DB.SessionLocal() as db:
            return [row.uid for row in db.query(FileMetadata).order_by(FileMetadata.uid)]

    def refindex(self) -> dict[str, tuple]:
        with DB.SessionLocal() as db:
            return {
                row.hash: (row.tablename, row.recuid, row.field, row.ref_table, row.ref_uid, row.softref_key)
                for row in db.query(ReferenceIndex).all()
            }

    def file_reference_targets(self) -> dict[int, int]:
        with DB.SessionLocal() as db:
            return {row.uid: row.uid_local for row in db.query(FileReference).all()}

    def processed_uids(self) -> list[int]:
        with DB.SessionLocal() as db:
            return [row.uid for row in db.query(ProcessedFile).order_by(ProcessedFile.uid)]

    def content_row(self, uid: int) -> dict:
        with self.engine.connect() as conn:
            row = conn.execute(select(self.content).where(self.content.c.uid == uid)).mappings().first()
            return dict(row)

    def audit_event_types(self) -> list[str]:
        with DB.SessionLocal() as db:
            return [row.event_type for row in db.query(AuditEvent).all()]


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "registry.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    content_metadata = MetaData()
    _content_table(content_metadata)
    content_metadata.create_all(engine)

    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = sessionmaker(bind=engine)
    try:
        yield engine
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def registry(server_db):
    return Registry(server_db)
