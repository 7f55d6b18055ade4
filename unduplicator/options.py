"""
Run-scoped option objects for a reconciliation pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Optional, Sequence

import unduplicator.config as config
from unduplicator.validators import (
    validate_force,
    validate_optional_text,
    validate_storage_filter,
    validate_tracked_fields,
)


class ForcePolicy(str, PyEnum):
    overwrite = "overwrite"
    keep = "keep"
    keep_nonempty = "keep-nonempty"


class ConflictResolution(str, PyEnum):
    keep_old = "keep-old"
    keep_master = "keep-master"
    skip = "skip"


@dataclass(frozen=True)
class UnduplicateOptions:
    dry_run: bool = False
    identifier_filter: Optional[str] = None
    storage_filter: int = config.STORAGE_FILTER_ALL
    keep_oldest: bool = False
    force: Optional[ForcePolicy] = None
    interactive: bool = False
    tracked_fields: tuple[str, ...] = config.DEFAULT_META_FIELDS
    link_prefix: str = config.FILE_LINK_PREFIX
    rte_image_references: bool = config.RTE_IMAGE_REFERENCES

    @property
    def order(self) -> str:
        return "asc" if self.keep_oldest else "desc"

    @staticmethod
    def from_values(
        dry_run: bool = False,
        identifier: Optional[str] = None,
        storage=config.STORAGE_FILTER_ALL,
        keep_oldest: bool = False,
        force=None,
        interactive: bool = False,
        meta_fields: Optional[Sequence[str] | str] = None,
        link_prefix: Optional[str] = None,
        rte_image_references: Optional[bool] = None,
    ) -> "UnduplicateOptions":
        validate_optional_text(identifier, "identifier", 768)
        force_value = validate_force(force)
        tracked = validate_tracked_fields(
            meta_fields if meta_fields is not None else config.DEFAULT_META_FIELDS
        )
        return UnduplicateOptions(
            dry_run=bool(dry_run),
            identifier_filter=identifier or None,
            storage_filter=validate_storage_filter(storage),
            keep_oldest=bool(keep_oldest),
            force=ForcePolicy(force_value) if force_value else None,
            interactive=bool(interactive),
            tracked_fields=tracked,
            link_prefix=link_prefix or config.FILE_LINK_PREFIX,
            rte_image_references=(
                config.RTE_IMAGE_REFERENCES
                if rte_image_references is None
                else bool(rte_image_references)
            ),
        )

    def describe(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "identifier": self.identifier_filter,
            "storage": self.storage_filter,
            "keep_oldest": self.keep_oldest,
            "force": self.force.value if self.force else None,
            "interactive": self.interactive,
            "meta_fields": list(self.tracked_fields),
        }


__all__ = [
    "ForcePolicy",
    "ConflictResolution",
    "UnduplicateOptions",
]
