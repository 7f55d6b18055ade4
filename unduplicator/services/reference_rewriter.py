"""
Repoint reference-index entries (and the fields they describe) from a
duplicate file to its master.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

import unduplicator.config as config
from unduplicator.errors import ReferenceUpdateFailure
from unduplicator.options import UnduplicateOptions
from unduplicator.services.record_store import RecordStore, ReferenceEntry
from unduplicator.services.shared import logger


def build_link_pattern(prefix: str, uid: int) -> re.Pattern:
    # uid=5 must not match uid=55
    return re.compile(re.escape(f"{prefix}{uid}") + r"(?!\d)", re.IGNORECASE)


def build_image_pattern(uid: int) -> re.Pattern:
    return re.compile(
        re.escape(config.RTE_IMAGE_ATTRIBUTE) + r'(\s*=\s*)(["\'])' + re.escape(str(uid)) + r"\2",
        re.IGNORECASE,
    )


def replace_file_links(
    text: str,
    old_uid: int,
    new_uid: int,
    prefix: str = config.FILE_LINK_PREFIX,
    rte_image_references: bool = False,
) -> tuple[str, int]:
    """
    Replace internal file links to ``old_uid`` with links to ``new_uid``.

    Returns the new text and the number of replacements made.
    """
    if not text:
        return text, 0
    replacement = f"{prefix}{new_uid}"
    text, count = build_link_pattern(prefix, old_uid).subn(lambda _match: replacement, text)
    if rte_image_references:
        text, image_count = build_image_pattern(old_uid).subn(
            lambda match: f"{config.RTE_IMAGE_ATTRIBUTE}{match.group(1)}{match.group(2)}{new_uid}{match.group(2)}",
            text,
        )
        count += image_count
    return text, count


@dataclass
class RewriteResult:
    hard_references: int = 0
    soft_references: int = 0
    replacements: int = 0
    entries: list[dict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.hard_references + self.soft_references

    def as_dict(self) -> dict:
        return {
            "hard_references": self.hard_references,
            "soft_references": self.soft_references,
            "replacements": self.replacements,
            "entries": list(self.entries),
        }


class ReferenceRewriter:
    def __init__(self, store: RecordStore, options: UnduplicateOptions):
        self.store = store
        self.options = options

    def rewrite(self, master_uid: int, old_uid: int) -> RewriteResult:
        result = RewriteResult()
        entries = self.store.list_references_to(
            config.FILE_TABLE,
            old_uid,
            exclude_table=config.METADATA_TABLE,
        )
        if not entries:
            logger.debug("No references to file %s", old_uid)
            return result

        for entry in entries:
            try:
                if entry.softref_key:
                    result.replacements += self._rewrite_soft(entry, master_uid, old_uid)
                    result.soft_references += 1
                else:
                    self._rewrite_hard(entry, master_uid)
                    result.hard_references += 1
                if not self.options.dry_run:
                    self.store.update_reference_target(entry, master_uid)
            except SQLAlchemyError as exc:
                raise ReferenceUpdateFailure(
                    f"Could not update reference {entry.tablename}:{entry.recuid}.{entry.field}: {exc}",
                    tablename=entry.tablename,
                    recuid=entry.recuid,
                    field=entry.field,
                ) from exc
            result.entries.append(
                {
                    "tablename": entry.tablename,
                    "recuid": entry.recuid,
                    "field": entry.field,
                    "softref_key": entry.softref_key or None,
                }
            )
        logger.info(
            "Repointed %d reference(s) from file %s to %s",
            result.total,
            old_uid,
            master_uid,
        )
        return result

    def _rewrite_hard(self, entry: ReferenceEntry, master_uid: int) -> None:
        logger.debug(
            "Updating %s:%s.%s -> file %s",
            entry.tablename,
            entry.recuid,
            entry.field,
            master_uid,
        )
        if self.options.dry_run:
            self.store.read_referencing_field(entry.tablename, entry.recuid, entry.field)
            return
        self.store.write_referencing_field(entry.tablename, entry.recuid, entry.field, master_uid)

    def _rewrite_soft(self, entry: ReferenceEntry, master_uid: int, old_uid: int) -> int:
        current = self.store.read_referencing_field(entry.tablename, entry.recuid, entry.field)
        text = "" if current is None else str(current)
        updated, count = replace_file_links(
            text,
            old_uid,
            master_uid,
            prefix=self.options.link_prefix,
            rte_image_references=self.options.rte_image_references,
        )
        if not count:
            logger.warning(
                "Soft reference %s in %s:%s.%s does not contain a link to file %s",
                entry.softref_key,
                entry.tablename,
                entry.recuid,
                entry.field,
                old_uid,
            )
            return 0
        logger.debug(
            "Rewriting %d link(s) in %s:%s.%s",
            count,
            entry.tablename,
            entry.recuid,
            entry.field,
        )
        if not self.options.dry_run:
            self.store.write_referencing_field(entry.tablename, entry.recuid, entry.field, updated)
        return count
