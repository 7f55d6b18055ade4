"""
Canonical audit event type strings.
"""

EVENT_FILE_UNDUPLICATED = "file.unduplicated"
EVENT_METADATA_MIGRATED = "metadata.migrated"
EVENT_METADATA_DELETED = "metadata.deleted"
EVENT_METADATA_CONFLICT = "metadata.conflict"

__all__ = [
    "EVENT_FILE_UNDUPLICATED",
    "EVENT_METADATA_MIGRATED",
    "EVENT_METADATA_DELETED",
    "EVENT_METADATA_CONFLICT",
]
