"""
Per-language metadata reconciliation between a master file and a duplicate.

For every language present on the duplicate the reconciler chooses one of:

* delete   - duplicate metadata is empty or identical to the master
* migrate  - duplicate values are copied to the master (subject to the force
             policy), then the duplicate metadata is deleted
* conflict - both sides carry different values and nothing resolves it;
             the duplicate file must be kept

A duplicate file is only safe to delete when no language ended in a conflict.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum as PyEnum
from typing import Callable, Iterator, Optional, Sequence

import unduplicator.config as config
from unduplicator.audit_constants import (
    EVENT_METADATA_CONFLICT,
    EVENT_METADATA_DELETED,
    EVENT_METADATA_MIGRATED,
)
from unduplicator.errors import ConflictUnresolved, DuplicateMetadataError, MissingField
from unduplicator.options import ConflictResolution, ForcePolicy, UnduplicateOptions
from unduplicator.services.record_store import MetadataRow, RecordStore
from unduplicator.services.shared import logger


def is_empty_value(value) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (int, float)):
        return value == 0
    return False


def clean_fields(fields: Mapping, tracked_fields: Sequence[str]) -> dict:
    """Restrict a metadata row to its tracked, non-empty fields."""
    return {
        name: fields[name]
        for name in tracked_fields
        if name in fields and not is_empty_value(fields[name])
    }


class LanguageMetadata(Mapping):
    """Metadata records of one file keyed by ``sys_language_uid``."""

    def __init__(self, file_uid: int, records: Sequence[MetadataRow]):
        self.file_uid = file_uid
        self._records: dict[int, MetadataRow] = {}
        for record in records:
            existing = self._records.get(record.sys_language_uid)
            if existing is not None:
                raise DuplicateMetadataError(
                    file_uid,
                    record.sys_language_uid,
                    (existing.uid, record.uid),
                )
            self._records[record.sys_language_uid] = record

    def __getitem__(self, language_uid: int) -> MetadataRow:
        return self._records[language_uid]

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._records))

    def __len__(self) -> int:
        return len(self._records)


@dataclass(frozen=True)
class MetadataUpdateDecision:
    master_file_uid: int
    old_file_uid: int
    old: MetadataRow
    master: Optional[MetadataRow]
    tracked_fields: tuple[str, ...]

    @property
    def language_uid(self) -> int:
        return self.old.sys_language_uid

    @property
    def old_uid(self) -> int:
        return self.old.uid

    @property
    def master_uid(self) -> Optional[int]:
        return self.master.uid if self.master else None

    @property
    def has_master(self) -> bool:
        return self.master is not None

    @property
    def old_clean(self) -> dict:
        return clean_fields(self.old.fields, self.tracked_fields)

    @property
    def master_clean(self) -> dict:
        if self.master is None:
            return {}
        return clean_fields(self.master.fields, self.tracked_fields)

    @property
    def is_old_empty(self) -> bool:
        return not self.old_clean

    @property
    def is_master_empty(self) -> bool:
        return not self.master_clean

    @property
    def is_old_same_as_master(self) -> bool:
        return self.old_clean == self.master_clean


class MetadataAction(str, PyEnum):
    delete = "delete"
    migrate = "migrate"
    conflict = "conflict"


ConflictResolver = Callable[[MetadataUpdateDecision], ConflictResolution]


@dataclass
class LanguageOutcome:
    language_uid: int
    old_uid: int
    master_uid: Optional[int]
    action: MetadataAction
    resolution: Optional[ConflictResolution] = None
    written_fields: list[str] = field(default_factory=list)
    missing_fields: list[str] = field(default_factory=list)
    created_master: bool = False
    safe_to_delete: bool = True
    # master row as it reads once this language is applied; None if untouched
    master_record: Optional[MetadataRow] = None

    def as_dict(self) -> dict:
        return {
            "language_uid": self.language_uid,
            "old_uid": self.old_uid,
            "master_uid": self.master_uid,
            "action": self.action.value,
            "resolution": self.resolution.value if self.resolution else None,
            "written_fields": list(self.written_fields),
            "missing_fields": list(self.missing_fields),
            "created_master": self.created_master,
        }


@dataclass
class MetadataOutcome:
    languages: list[LanguageOutcome] = field(default_factory=list)
    conflicts: list[ConflictUnresolved] = field(default_factory=list)

    @property
    def safe_to_delete(self) -> bool:
        return all(outcome.safe_to_delete for outcome in self.languages)

    def master_records(self) -> dict[int, MetadataRow]:
        """Master rows written by this outcome, keyed by language."""
        return {
            outcome.language_uid: outcome.master_record
            for outcome in self.languages
            if outcome.master_record is not None
        }


def classify(decision: MetadataUpdateDecision, force: Optional[ForcePolicy]) -> MetadataAction:
    if decision.is_old_empty or decision.is_old_same_as_master:
        return MetadataAction.delete
    if decision.is_master_empty or force is not None:
        return MetadataAction.migrate
    return MetadataAction.conflict


def should_write_master(decision: MetadataUpdateDecision, force: Optional[ForcePolicy]) -> bool:
    if force is None or force == ForcePolicy.overwrite:
        return True
    if force == ForcePolicy.keep_nonempty:
        return decision.is_master_empty
    return False


class MetadataReconciler:
    def __init__(
        self,
        store: RecordStore,
        options: UnduplicateOptions,
        resolver: Optional[ConflictResolver] = None,
    ):
        self.store = store
        self.options = options
        self.resolver = resolver

    @property
    def dry_run(self) -> bool:
        return self.options.dry_run

    def reconcile(
        self,
        master_file_uid: int,
        master_records: LanguageMetadata,
        old_file_uid: int,
        old_records: LanguageMetadata,
    ) -> MetadataOutcome:
        outcome = MetadataOutcome()
        for language_uid in old_records:
            decision = MetadataUpdateDecision(
                master_file_uid=master_file_uid,
                old_file_uid=old_file_uid,
                old=old_records[language_uid],
                master=master_records.get(language_uid),
                tracked_fields=self.options.tracked_fields,
            )
            language_outcome = self.reconcile_language(decision)
            outcome.languages.append(language_outcome)
            if not language_outcome.safe_to_delete:
                outcome.conflicts.append(
                    ConflictUnresolved(
                        master_file_uid=master_file_uid,
                        old_file_uid=old_file_uid,
                        language_uid=language_uid,
                        old_fields=decision.old_clean,
                        master_fields=decision.master_clean,
                        skipped=language_outcome.resolution == ConflictResolution.skip,
                    )
                )
        return outcome

    def reconcile_language(self, decision: MetadataUpdateDecision) -> LanguageOutcome:
        action = classify(decision, self.options.force)

        if action == MetadataAction.delete:
            logger.debug(
                "Old metadata %s is empty or same as in master for sys_language_uid %s",
                decision.old_uid,
                decision.language_uid,
            )
            return self._delete_old(decision, action)

        if action == MetadataAction.migrate:
            if decision.is_master_empty:
                logger.debug(
                    "Master metadata %s is empty for sys_language_uid %s",
                    decision.master_uid,
                    decision.language_uid,
                )
            elif self.options.force == ForcePolicy.keep:
                logger.debug("Force keeping metadata in master %s", decision.master_uid)
            else:
                logger.debug("Force %s metadata in master %s", self.options.force.value, decision.master_uid)
            return self._migrate(decision, action, self.options.force)

        return self._handle_conflict(decision)

    def _handle_conflict(self, decision: MetadataUpdateDecision) -> LanguageOutcome:
        interactive = self.options.interactive and self.resolver is not None
        logger.warning(
            "Old metadata %s with sys_language_uid %s is not empty and conflicts with the master data. %s",
            decision.old_uid,
            decision.language_uid,
            "Asking for a resolution." if interactive else "Not deleting this record.",
        )
        logger.info("Old metadata   : %s", decision.old_clean)
        logger.info("Master metadata: %s", decision.master_clean)

        resolution = self.resolver(decision) if interactive else None

        if resolution == ConflictResolution.keep_old:
            logger.info("Keeping OLD metadata for sys_language_uid %s", decision.language_uid)
            outcome = self._migrate(decision, MetadataAction.conflict, None)
            outcome.resolution = resolution
            return outcome

        if resolution == ConflictResolution.keep_master:
            logger.info("Keeping MASTER metadata for sys_language_uid %s", decision.language_uid)
            outcome = self._delete_old(decision, MetadataAction.conflict)
            outcome.resolution = resolution
            return outcome

        if resolution == ConflictResolution.skip:
            logger.info(
                "Skipping record. Not deleting any duplicate records related to file %s",
                decision.master_file_uid,
            )

        if not self.dry_run:
            self.store.log_event(
                event_type=EVENT_METADATA_CONFLICT,
                target_type="metadata",
                target_ids=[decision.old_uid],
                reason="metadata differs from master",
                metadata={
                    "file": decision.old_file_uid,
                    "master_file": decision.master_file_uid,
                    "language": decision.language_uid,
                    "fields": sorted(set(decision.old_clean) | set(decision.master_clean)),
                },
            )
        return LanguageOutcome(
            language_uid=decision.language_uid,
            old_uid=decision.old_uid,
            master_uid=decision.master_uid,
            action=MetadataAction.conflict,
            resolution=resolution,
            safe_to_delete=False,
        )

    def _delete_old(self, decision: MetadataUpdateDecision, action: MetadataAction) -> LanguageOutcome:
        logger.debug("Deleting old metadata record %s", decision.old_uid)
        if not self.dry_run:
            self.store.delete_metadata(decision.old_uid)
            self.store.delete_metadata_references(decision.old_uid)
            self.store.log_event(
                event_type=EVENT_METADATA_DELETED,
                target_type="metadata",
                target_ids=[decision.old_uid],
                metadata={"file": decision.old_file_uid, "language": decision.language_uid},
            )
        return LanguageOutcome(
            language_uid=decision.language_uid,
            old_uid=decision.old_uid,
            master_uid=decision.master_uid,
            action=action,
        )

    def _migrate(
        self,
        decision: MetadataUpdateDecision,
        action: MetadataAction,
        policy: Optional[ForcePolicy],
    ) -> LanguageOutcome:
        outcome = LanguageOutcome(
            language_uid=decision.language_uid,
            old_uid=decision.old_uid,
            master_uid=decision.master_uid,
            action=action,
        )

        if should_write_master(decision, policy):
            values, missing = self._collect_values(decision)
            outcome.written_fields = sorted(values)
            outcome.missing_fields = missing
            if decision.has_master:
                logger.debug("Updating master metadata record %s", decision.master_uid)
                if not self.dry_run:
                    self.store.update_metadata_fields(decision.master_uid, values)
                master_fields = {**decision.master.fields, **values}
            else:
                logger.debug("Creating master metadata record for file %s", decision.master_file_uid)
                outcome.created_master = True
                master_fields = dict(decision.old.fields)
                if not self.dry_run:
                    record = dict(master_fields)
                    record["sys_language_uid"] = decision.language_uid
                    outcome.master_uid = self.store.insert_metadata(decision.master_file_uid, record)
            outcome.master_record = MetadataRow(
                uid=outcome.master_uid,
                file=decision.master_file_uid,
                sys_language_uid=decision.language_uid,
                fields=master_fields,
            )

        logger.debug("Deleting old metadata record %s", decision.old_uid)
        if not self.dry_run:
            self.store.delete_metadata(decision.old_uid)
            self.store.delete_metadata_references(decision.old_uid)
            self.store.log_event(
                event_type=EVENT_METADATA_MIGRATED,
                target_type="metadata",
                target_ids=[decision.old_uid] + ([outcome.master_uid] if outcome.master_uid else []),
                metadata={
                    "file": decision.old_file_uid,
                    "master_file": decision.master_file_uid,
                    "language": decision.language_uid,
                    "fields": outcome.written_fields,
                    "force": policy.value if policy else None,
                },
            )
        return outcome

    def _collect_values(self, decision: MetadataUpdateDecision) -> tuple[dict, list[str]]:
        values: dict = {}
        missing: list[str] = []
        for name in decision.tracked_fields:
            try:
                values[name] = self._field_value(decision.old, name)
            except MissingField as exc:
                missing.append(name)
                logger.warning(str(exc))
        return values, missing

    @staticmethod
    def _field_value(record: MetadataRow, name: str):
        value = record.fields.get(name)
        if value is None:
            raise MissingField(f"Field '{name}' does not exist in {config.METADATA_TABLE}:{record.uid}")
        return value
