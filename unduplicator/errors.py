"""
Shared error types for the unduplicator services.
"""

from __future__ import annotations

from typing import Optional


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class UnduplicatorError(RuntimeError):
    """Base class for reconciliation failures."""


class DuplicateMetadataError(UnduplicatorError):
    """More than one metadata record exists for the same file and language."""

    error_code = 7813804023

    def __init__(self, file_uid: int, language_uid: int, metadata_uids: tuple[int, ...] = ()):
        super().__init__(
            f"More than one metadata record for file {file_uid} and language {language_uid}"
        )
        self.file_uid = file_uid
        self.language_uid = language_uid
        self.metadata_uids = metadata_uids


class ReferenceUpdateFailure(UnduplicatorError):
    """A referencing record could not be read or written."""

    def __init__(
        self,
        message: str,
        tablename: Optional[str] = None,
        recuid: Optional[int] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message)
        self.tablename = tablename
        self.recuid = recuid
        self.field = field


class ConflictUnresolved:
    """Metadata of a duplicate differs from its master and was not resolved."""

    def __init__(
        self,
        master_file_uid: int,
        old_file_uid: int,
        language_uid: int,
        old_fields: dict,
        master_fields: dict,
        skipped: bool = False,
    ):
        self.master_file_uid = master_file_uid
        self.old_file_uid = old_file_uid
        self.language_uid = language_uid
        self.old_fields = old_fields
        self.master_fields = master_fields
        self.skipped = skipped

    def as_dict(self) -> dict:
        return {
            "master_file_uid": self.master_file_uid,
            "old_file_uid": self.old_file_uid,
            "language_uid": self.language_uid,
            "old": self.old_fields,
            "master": self.master_fields,
            "skipped": self.skipped,
        }


class MissingField(UnduplicatorError):
    """A tracked metadata field is absent on the duplicate during a migrate."""


class ArtifactAlreadyAbsent(UnduplicatorError):
    """A derived file was already gone from storage."""
