"""
Duplicate group discovery and master selection.

The registry database may compare identifiers case-insensitively (e.g. a
``*_ci`` collation), so candidates are collected with a case-folded query and
then split again by an exact, case-sensitive comparison in Python.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

from unduplicator.options import UnduplicateOptions
from unduplicator.services.record_store import FileRow, RecordStore
from unduplicator.services.shared import logger


@dataclass(frozen=True)
class DuplicateGroup:
    identifier: str
    storage: int
    master: FileRow
    duplicates: tuple[FileRow, ...]


def split_exact_groups(files: Sequence[FileRow]) -> list[DuplicateGroup]:
    """
    Partition case-insensitive candidates into groups of exact identifiers.

    ``files`` must already be in master-selection order: the first record seen
    for an identifier is its master, every later record with the same exact
    identifier is a duplicate of it. Identifiers that only collide when
    case-folded never end up in the same group.
    """
    masters: dict[str, FileRow] = {}
    duplicates: dict[str, list[FileRow]] = {}
    for row in files:
        if row.identifier in masters:
            duplicates[row.identifier].append(row)
            continue
        masters[row.identifier] = row
        duplicates[row.identifier] = []

    return [
        DuplicateGroup(
            identifier=identifier,
            storage=master.storage,
            master=master,
            duplicates=tuple(duplicates[identifier]),
        )
        for identifier, master in masters.items()
        if duplicates[identifier]
    ]


class DuplicateGroupFinder:
    def __init__(self, store: RecordStore, options: UnduplicateOptions):
        self.store = store
        self.options = options
        self.case_variants_skipped = 0
        self.empty_identifiers = 0

    def find(self) -> Iterator[DuplicateGroup]:
        candidates = self.store.find_duplicate_identifier_groups(
            self.options.identifier_filter,
            self.options.storage_filter,
        )
        for candidate in candidates:
            if not candidate.identifier:
                self.empty_identifiers += 1
                logger.warning("Found empty identifier in storage %s", candidate.storage)
                continue

            files = self.store.list_files_for_identifier(
                candidate.identifier,
                candidate.storage,
                self.options.order,
            )
            groups = split_exact_groups([row for row in files if row.identifier])
            matched = sum(1 + len(group.duplicates) for group in groups)
            variants = len([row for row in files if row.identifier]) - matched
            if variants:
                self.case_variants_skipped += variants
                logger.info(
                    "Skipping %d record(s) for %r in storage %s: identifiers differ only by case",
                    variants,
                    candidate.identifier,
                    candidate.storage,
                )

            for group in groups:
                if self.options.identifier_filter and group.identifier != self.options.identifier_filter:
                    continue
                yield group
