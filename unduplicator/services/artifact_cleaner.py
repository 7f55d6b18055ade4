"""
Removal of derived (processed) files belonging to a deleted duplicate.
"""

from __future__ import annotations

import os
from typing import Optional, Protocol

import unduplicator.config as config
from unduplicator.errors import ArtifactAlreadyAbsent, UnduplicatorError
from unduplicator.options import UnduplicateOptions
from unduplicator.services.record_store import RecordStore
from unduplicator.services.shared import logger


class ArtifactStore(Protocol):
    def delete_artifact(self, storage: int, identifier: str) -> str: ...


class LocalArtifactStore:
    """Deletes derived files below per-storage root directories on local disk."""

    def __init__(self, storage_roots: dict[int, str]):
        self.storage_roots = {uid: os.path.abspath(root) for uid, root in storage_roots.items()}

    @classmethod
    def from_base_paths(
        cls, base_paths: dict[int, str], public_path: Optional[str] = None
    ) -> "LocalArtifactStore":
        public_path = public_path or config.PUBLIC_PATH
        roots = {}
        for uid, base_path in base_paths.items():
            if not base_path:
                continue
            if os.path.isabs(base_path):
                roots[uid] = base_path
            else:
                roots[uid] = os.path.join(public_path, base_path)
        return cls(roots)

    def root_for(self, storage: int) -> str:
        root = self.storage_roots.get(storage)
        if root is None:
            raise UnduplicatorError(f"Unknown storage {storage}")
        return root

    def delete_artifact(self, storage: int, identifier: str) -> str:
        root = self.root_for(storage)
        path = os.path.abspath(os.path.join(root, identifier.lstrip("/")))
        if os.path.commonpath([root, path]) != root or path == root:
            raise UnduplicatorError(f"Refusing to delete {path}: outside of storage root {root}")
        if not os.path.isfile(path):
            raise ArtifactAlreadyAbsent(f"Processed file {path} does not exist")

        logger.info("Deleting processed file %s", path)
        os.unlink(path)

        directory = os.path.dirname(path)
        while directory != root and directory.startswith(root) and not os.listdir(directory):
            os.rmdir(directory)
            directory = os.path.dirname(directory)
        return path


class DerivedArtifactCleaner:
    def __init__(
        self,
        store: RecordStore,
        artifact_store: Optional[ArtifactStore],
        options: UnduplicateOptions,
    ):
        self.store = store
        self.artifact_store = artifact_store
        self.options = options

    def clean(self, original_uid: int) -> dict:
        derived = self.store.list_derived_files(original_uid)
        deleted_files: list[str] = []
        absent = 0
        skipped = 0

        for record in derived:
            if not record.identifier or not record.storage:
                skipped += 1
                logger.error(
                    "Empty identifier or storage id. Aborting delete of processed file %s",
                    record.uid,
                )
                continue
            if self.options.dry_run or self.artifact_store is None:
                continue
            try:
                deleted_files.append(self.artifact_store.delete_artifact(record.storage, record.identifier))
            except ArtifactAlreadyAbsent as exc:
                absent += 1
                logger.debug(str(exc))
            except UnduplicatorError as exc:
                skipped += 1
                logger.error(
                    "Could not delete processed file %s: %s",
                    record.identifier,
                    exc,
                    extra={"file_uid": original_uid, "processed_uid": record.uid},
                )

        records_deleted = 0
        if derived and not self.options.dry_run:
            records_deleted = self.store.delete_derived_file_records(original_uid)

        return {
            "processed_records": len(derived),
            "records_deleted": records_deleted,
            "files_deleted": deleted_files,
            "files_absent": absent,
            "files_skipped": skipped,
        }
