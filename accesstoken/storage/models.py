from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from accesstoken.storage.common import SessionStore
from accesstoken.storage.errors import MalformedRecordError


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# Durable fields in serialization order; attributes are appended separately.
_DURABLE_FIELDS = (
    "token",
    "user_id",
    "fingerprint",
    "ip",
    "created_at",
    "updated_at",
    "max_age",
)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class SessionRecord:
    """State of one issued access token.

    The store value is ``serialize()`` encoded as JSON under the key
    ``token``; the store entry's TTL tracks ``max_age``. ``is_dead`` and
    ``death_reason`` live only in memory and are never written.
    """

    token: str
    user_id: str
    created_at: int
    updated_at: int
    max_age: int
    fingerprint: str = ""
    ip: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    is_dead: bool = field(default=False, compare=False)
    death_reason: str = field(default="", compare=False)
    _store: Optional[SessionStore] = field(default=None, repr=False, compare=False)
    _dirty: bool = field(default=False, repr=False, compare=False)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def bind(self, store: SessionStore) -> "SessionRecord":
        self._store = store
        return self

    def serialize(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for name in _DURABLE_FIELDS:
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        if self.attributes:
            payload["attributes"] = dict(self.attributes)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.serialize(), separators=(",", ":"), sort_keys=True)

    @classmethod
    def deserialize(
        cls, payload: Any, store: Optional[SessionStore] = None
    ) -> "SessionRecord":
        """Build a clean record from a decoded store payload.

        Raises:
            MalformedRecordError: If required fields are missing or mistyped.
        """
        if not isinstance(payload, dict):
            raise MalformedRecordError("session payload must be an object")

        token = payload.get("token")
        user_id = payload.get("user_id")
        if not isinstance(token, str) or not token:
            raise MalformedRecordError("session payload has no token")
        if not isinstance(user_id, str) or not user_id:
            raise MalformedRecordError("session payload has no user_id")
        for name in ("created_at", "updated_at", "max_age"):
            if not _is_int(payload.get(name)):
                raise MalformedRecordError(f"session payload field {name} must be an integer")

        fingerprint = payload.get("fingerprint", "")
        ip = payload.get("ip")
        attributes = payload.get("attributes", {})
        if not isinstance(fingerprint, str):
            raise MalformedRecordError("session payload fingerprint must be a string")
        if ip is not None and not isinstance(ip, str):
            raise MalformedRecordError("session payload ip must be a string")
        if not isinstance(attributes, dict):
            raise MalformedRecordError("session payload attributes must be an object")

        return cls(
            token=token,
            user_id=user_id,
            created_at=payload["created_at"],
            updated_at=payload["updated_at"],
            max_age=payload["max_age"],
            fingerprint=fingerprint,
            ip=ip,
            attributes=dict(attributes),
            _store=store,
        )

    @classmethod
    def from_json(cls, raw: str, store: Optional[SessionStore] = None) -> "SessionRecord":
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            raise MalformedRecordError("session payload is not valid JSON") from exc
        return cls.deserialize(payload, store)

    def mark_dirty(self) -> None:
        self.updated_at = now_ms()
        self._dirty = True

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value
        self.mark_dirty()

    def pop_attribute(self, key: str, default: Any = None) -> Any:
        if key not in self.attributes:
            return default
        value = self.attributes.pop(key)
        self.mark_dirty()
        return value

    def kill(self, reason: str) -> None:
        """Flag the session for teardown at the end of the current request."""
        self.is_dead = True
        self.death_reason = reason

    def _require_store(self) -> SessionStore:
        if self._store is None:
            raise RuntimeError(f"session record for user {self.user_id} is not bound to a store")
        return self._store

    async def save(self, force: bool = False) -> None:
        """Write the record if it has unsaved changes (or ``force`` is set).

        The dirty flag is cleared only after the store accepted the write, so a
        failed save can be retried.
        """
        if not force and not self._dirty:
            return
        store = self._require_store()
        await store.set(self.token, self.to_json(), px=self.max_age)
        self._dirty = False

    async def refresh_expiry(self) -> bool:
        """Reset the store TTL to ``max_age`` without rewriting content.

        Returns False when the key no longer exists.
        """
        store = self._require_store()
        return await store.pexpire(self.token, self.max_age)


__all__ = ["SessionRecord", "now_ms"]
