from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Raised when the key-value store cannot be reached or rejects a command."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class MalformedRecordError(ValueError):
    """Raised when a stored session payload cannot be decoded into a record.

    Callers looking tokens up treat this as a miss; it never reaches a
    request handler.
    """


__all__ = ["StoreError", "MalformedRecordError"]
