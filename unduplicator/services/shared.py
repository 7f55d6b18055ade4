"""
Shared helpers for reconciliation services.
"""

from __future__ import annotations

from functools import wraps
from typing import Callable

import unduplicator.config as config
from unduplicator.errors import ValidationIssue

logger = config.logger


def _tool_error_payload(tool_name: str, exc: ValidationIssue) -> dict:
    return {
        "status": "error",
        "error_type": "validation_error",
        "tool": tool_name,
        "field": exc.field,
        "message": str(exc),
    }


def _log_validation_issue(tool_name: str, exc: ValidationIssue) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    logger.info("tool_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc)
            return _tool_error_payload(fn.__name__, exc)
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)
