"""
Reconciliation run: find duplicate file records, merge their metadata into the
master, repoint references and delete what is no longer needed.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

from unduplicator.audit_constants import EVENT_FILE_UNDUPLICATED
from unduplicator.db import DB
from unduplicator.errors import DuplicateMetadataError, ReferenceUpdateFailure, ValidationIssue
from unduplicator.options import UnduplicateOptions
from unduplicator.services.artifact_cleaner import (
    ArtifactStore,
    DerivedArtifactCleaner,
    LocalArtifactStore,
)
from unduplicator.services.duplicate_finder import DuplicateGroup, DuplicateGroupFinder
from unduplicator.services.metadata_reconciler import (
    ConflictResolver,
    LanguageMetadata,
    MetadataReconciler,
)
from unduplicator.services.record_store import FileRow, MetadataRow, RecordStore, SqlRecordStore
from unduplicator.services.reference_rewriter import ReferenceRewriter
from unduplicator.services.shared import logger, service_tool


def _duplicate_detail(group: DuplicateGroup, duplicate: FileRow) -> dict:
    return {
        "uid": duplicate.uid,
        "master_uid": group.master.uid,
        "identifier": group.identifier,
        "storage": group.storage,
        "action": "kept",
        "metadata": [],
        "references": None,
        "processed": None,
        "error": None,
    }


def _error_entry(group: DuplicateGroup, duplicate: FileRow, exc: Exception) -> dict:
    return {
        "uid": duplicate.uid,
        "master_uid": group.master.uid,
        "identifier": group.identifier,
        "error_type": type(exc).__name__,
        "message": str(exc),
    }


def _master_metadata(
    store: RecordStore, master_uid: int, pending: dict[int, MetadataRow]
) -> list[MetadataRow]:
    """
    Master metadata as earlier duplicates of the group left it.

    A dry run never writes, so rows that a live run would already have
    migrated or created come from ``pending`` instead of the store.
    """
    rows = store.list_metadata_for_file(master_uid)
    if not pending:
        return rows
    return [row for row in rows if row.sys_language_uid not in pending] + list(pending.values())


def _status(errors: list, conflicts: list) -> str:
    if errors:
        return "errors"
    if conflicts:
        return "conflicts"
    return "ok"


def run_unduplicate(
    store: RecordStore,
    options: UnduplicateOptions,
    conflict_resolver: Optional[ConflictResolver] = None,
    artifact_store: Optional[ArtifactStore] = None,
    reference_index_updater: Optional[Callable[[], None]] = None,
) -> dict:
    """
    Reconcile every duplicate group the store reports.

    Each duplicate is handled in its own transaction. ``DuplicateMetadataError``
    abandons the rest of its group, ``ReferenceUpdateFailure`` keeps only the
    affected duplicate; both are reported and the run continues. Anything else
    rolls back the current duplicate and propagates.
    """
    if options.interactive and conflict_resolver is None:
        raise ValidationIssue(
            "interactive mode requires a conflict resolver",
            field="interactive",
            error_type="required",
        )

    if reference_index_updater is not None:
        logger.info("Updating reference index...")
        reference_index_updater()
    else:
        logger.info("Reference index is assumed to be up to date, continuing.")

    if options.dry_run:
        logger.info("Dry run: no records or files will be changed")

    if artifact_store is None and not options.dry_run:
        artifact_store = LocalArtifactStore.from_base_paths(store.storage_base_paths())

    finder = DuplicateGroupFinder(store, options)
    reconciler = MetadataReconciler(store, options, conflict_resolver)
    rewriter = ReferenceRewriter(store, options)
    cleaner = DerivedArtifactCleaner(store, artifact_store, options)

    duplicates_found = 0
    duplicates_removed = 0
    kept = 0
    conflicts: list[dict] = []
    errors: list[dict] = []
    details: list[dict] = []

    for group in finder.find():
        logger.info(
            "Found %d duplicate(s) of %r in storage %s, master is file %s",
            len(group.duplicates),
            group.identifier,
            group.storage,
            group.master.uid,
        )
        duplicates_found += len(group.duplicates)
        pending_master: dict[int, MetadataRow] = {}

        for position, duplicate in enumerate(group.duplicates):
            detail = _duplicate_detail(group, duplicate)
            details.append(detail)
            try:
                master_records = LanguageMetadata(
                    group.master.uid, _master_metadata(store, group.master.uid, pending_master)
                )
                old_records = LanguageMetadata(duplicate.uid, store.list_metadata_for_file(duplicate.uid))
                outcome = reconciler.reconcile(group.master.uid, master_records, duplicate.uid, old_records)
                detail["metadata"] = [language.as_dict() for language in outcome.languages]

                if not outcome.safe_to_delete:
                    logger.info("Keeping sys_file and processedFile records of file %s", duplicate.uid)
                    conflicts.extend(conflict.as_dict() for conflict in outcome.conflicts)
                    kept += 1
                    store.commit()
                    if options.dry_run:
                        pending_master.update(outcome.master_records())
                    continue

                rewrite = rewriter.rewrite(group.master.uid, duplicate.uid)
                detail["references"] = rewrite.as_dict()

                logger.info("Deleting sys_file and processedFile records of file %s", duplicate.uid)
                if not options.dry_run:
                    store.delete_file_record(duplicate.uid)
                detail["processed"] = cleaner.clean(duplicate.uid)
                if not options.dry_run:
                    store.log_event(
                        event_type=EVENT_FILE_UNDUPLICATED,
                        target_type="file",
                        target_ids=[duplicate.uid, group.master.uid],
                        count_affected=rewrite.total,
                        metadata={
                            "master_file": group.master.uid,
                            "storage": group.storage,
                            "references": rewrite.total,
                            "processed_records": detail["processed"]["records_deleted"],
                        },
                    )
                store.commit()
                if options.dry_run:
                    pending_master.update(outcome.master_records())
                detail["action"] = "deleted"
                duplicates_removed += 1
            except DuplicateMetadataError as exc:
                store.rollback()
                logger.error(
                    "Skipping %r in storage %s: %s",
                    group.identifier,
                    group.storage,
                    exc,
                    extra={"file_uid": exc.file_uid, "language_uid": exc.language_uid},
                )
                for remaining in group.duplicates[position:]:
                    errors.append(_error_entry(group, remaining, exc))
                    if remaining is not duplicate:
                        details.append(_duplicate_detail(group, remaining))
                    details[-1]["action"] = "error"
                    details[-1]["error"] = str(exc)
                    kept += 1
                break
            except ReferenceUpdateFailure as exc:
                store.rollback()
                logger.error(
                    "Could not repoint references of file %s: %s",
                    duplicate.uid,
                    exc,
                    extra={"tablename": exc.tablename, "recuid": exc.recuid, "field": exc.field},
                )
                errors.append(_error_entry(group, duplicate, exc))
                detail["action"] = "error"
                detail["error"] = str(exc)
                kept += 1
            except Exception:
                store.rollback()
                raise

    if not duplicates_found:
        logger.info("No duplicates found")
    if conflicts:
        logger.warning(
            "%d metadata conflict(s) were not resolved; the affected duplicates were kept. "
            "Re-run with --force or --interactive to resolve them.",
            len(conflicts),
        )

    return {
        "status": _status(errors, conflicts),
        "dry_run": options.dry_run,
        "has_conflicts": bool(conflicts),
        "duplicates_found": duplicates_found,
        "duplicates_removed": duplicates_removed,
        "kept": kept,
        "conflicts": conflicts,
        "errors": errors,
        "duplicates": details,
        "case_variants_skipped": finder.case_variants_skipped,
        "empty_identifiers": finder.empty_identifiers,
        "options": options.describe(),
    }


@service_tool
def unduplicate_files(
    dry_run: bool = False,
    identifier: Optional[str] = None,
    storage: int = -1,
    keep_oldest: bool = False,
    force=None,
    interactive: bool = False,
    meta_fields: Optional[Sequence[str] | str] = None,
    link_prefix: Optional[str] = None,
    rte_image_references: Optional[bool] = None,
    conflict_resolver: Optional[ConflictResolver] = None,
    artifact_store: Optional[ArtifactStore] = None,
    reference_index_updater: Optional[Callable[[], None]] = None,
) -> dict:
    """
    Reconcile duplicate file records in the configured registry database.
    """
    options = UnduplicateOptions.from_values(
        dry_run=dry_run,
        identifier=identifier,
        storage=storage,
        keep_oldest=keep_oldest,
        force=force,
        interactive=interactive,
        meta_fields=meta_fields,
        link_prefix=link_prefix,
        rte_image_references=rte_image_references,
    )
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized; call init_db() first")

    db = DB.SessionLocal()
    try:
        store = SqlRecordStore(db, read_only=options.dry_run)
        return run_unduplicate(
            store,
            options,
            conflict_resolver=conflict_resolver,
            artifact_store=artifact_store,
            reference_index_updater=reference_index_updater,
        )
    finally:
        db.close()
