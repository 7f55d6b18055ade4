"""
Shared validation helpers for reconciliation options.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from unduplicator.config import MAX_FIELD_NAME_LENGTH, STORAGE_FILTER_ALL
from unduplicator.errors import ValidationIssue

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
METADATA_KEY_FIELDS = {"uid", "file", "sys_language_uid"}
FORCE_VALUES = ("overwrite", "keep", "keep-nonempty")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_storage_filter(value) -> int:
    if isinstance(value, bool):
        raise ValidationIssue("storage must be an integer", field="storage", error_type="invalid_type")
    try:
        storage = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationIssue("storage must be an integer", field="storage", error_type="invalid_type") from exc
    if storage < STORAGE_FILTER_ALL:
        raise ValidationIssue(
            f"storage must be {STORAGE_FILTER_ALL} (all) or a storage uid",
            field="storage",
            error_type="out_of_range",
        )
    return storage


def validate_force(value) -> Optional[str]:
    """Normalize the force option: absent/False disables it, a bare flag means overwrite."""
    if value is None or value is False:
        return None
    if value is True:
        return "overwrite"
    if not isinstance(value, str):
        raise ValidationIssue("force must be a string", field="force", error_type="invalid_type")
    normalized = value.strip().lower()
    if not normalized:
        return "overwrite"
    if normalized not in FORCE_VALUES:
        raise ValidationIssue(
            f"force must be one of: {', '.join(FORCE_VALUES)}",
            field="force",
            error_type="invalid_choice",
        )
    return normalized


def validate_tracked_fields(values: Optional[Sequence[str]]) -> tuple[str, ...]:
    if values is None:
        raise ValidationIssue("meta-fields must not be empty", field="meta-fields", error_type="required")
    if isinstance(values, str):
        values = values.split(",")
    fields: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise ValidationIssue("meta-fields must contain only strings", field="meta-fields", error_type="invalid_type")
        name = item.strip()
        if not name:
            continue
        if len(name) > MAX_FIELD_NAME_LENGTH or not FIELD_NAME_PATTERN.match(name):
            raise ValidationIssue(f"invalid metadata field name: {name!r}", field="meta-fields", error_type="invalid")
        if name in METADATA_KEY_FIELDS:
            raise ValidationIssue(
                f"{name} identifies the metadata record and cannot be compared",
                field="meta-fields",
                error_type="invalid",
            )
        if name not in fields:
            fields.append(name)
    if not fields:
        raise ValidationIssue("meta-fields must not be empty", field="meta-fields", error_type="required")
    return tuple(fields)
