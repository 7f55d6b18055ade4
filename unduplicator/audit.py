"""
Audit logging helpers (DB-only, metadata-only).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import unduplicator.config as config
from unduplicator.models import AuditEvent

ALLOWED_ACTOR_TYPES = {"cli", "system", "integration"}
ALLOWED_TARGET_TYPES = {"file", "metadata"}

# Field contents never leave the registry tables; only uids and field names are recorded.
FORBIDDEN_METADATA_KEYS = {
    "description",
    "caption",
    "copyright",
    "alternative",
    "title",
    "bodytext",
    "value",
}
MAX_METADATA_STRING_LENGTH = 500


def _normalize_key(key: str) -> str:
    return key.strip().lower().replace("-", "_")


def _validate_metadata_value(value: Any, path: str = "") -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError("metadata keys must be strings")
            if _normalize_key(key) in FORBIDDEN_METADATA_KEYS:
                raise ValueError(f"metadata key '{key}' is not allowed")
            next_path = f"{path}.{key}" if path else key
            _validate_metadata_value(item, next_path)
        return
    if isinstance(value, list):
        for item in value:
            _validate_metadata_value(item, path)
        return
    if isinstance(value, str) and len(value) > MAX_METADATA_STRING_LENGTH:
        raise ValueError(f"metadata value too long at '{path or 'value'}'")


def log_event(
    db,
    *,
    event_type: str,
    actor_type: str = "cli",
    actor_id: Optional[str] = None,
    target_type: str,
    target_ids: list[int],
    count_affected: Optional[int] = None,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> Optional[AuditEvent]:
    """
    Append an audit event to the current transaction.
    """
    if not config.AUDIT_EVENTS_ENABLED:
        return None
    if not event_type or not isinstance(event_type, str):
        raise ValueError("event_type must be a non-empty string")
    if actor_type not in ALLOWED_ACTOR_TYPES:
        raise ValueError("actor_type must be one of: cli|system|integration")
    if target_type not in ALLOWED_TARGET_TYPES:
        raise ValueError("target_type must be one of: file|metadata")
    if not all(isinstance(item, int) and not isinstance(item, bool) for item in target_ids):
        raise ValueError("target_ids must contain integers")

    if metadata is not None:
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be a dict")
        _validate_metadata_value(metadata)

    event = AuditEvent(
        created_at=datetime.utcnow(),
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        target_type=target_type,
        target_ids=list(target_ids),
        count_affected=count_affected,
        reason=reason,
        metadata_=metadata,
    )
    db.add(event)
    return event


def list_audit_events(
    db,
    *,
    event_type: Optional[str] = None,
    limit: int = 100,
) -> dict:
    """
    Query audit events, newest first.
    """
    if limit <= 0:
        raise ValueError("limit must be positive")

    query = db.query(AuditEvent)
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)

    rows = (
        query.order_by(AuditEvent.created_at.desc(), AuditEvent.event_id.desc())
        .limit(limit)
        .all()
    )
    return {
        "status": "ok",
        "count": len(rows),
        "events": [
            {
                "event_id": str(row.event_id),
                "created_at": row.created_at.isoformat() if row.created_at else None,
                "event_type": row.event_type,
                "actor_type": row.actor_type,
                "actor_id": row.actor_id,
                "target_type": row.target_type,
                "target_ids": row.target_ids,
                "count_affected": row.count_affected,
                "reason": row.reason,
                "metadata": row.metadata_,
            }
            for row in rows
        ],
    }


__all__ = [
    "AuditEvent",
    "log_event",
    "list_audit_events",
    "ALLOWED_ACTOR_TYPES",
    "ALLOWED_TARGET_TYPES",
]
