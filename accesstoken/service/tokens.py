from __future__ import annotations

import hashlib
import secrets
from typing import Any, Callable, Dict, List, Optional, Union

from accesstoken.durations import parse_duration
from accesstoken.logging import get_logger
from accesstoken.service.errors import ValidationError
from accesstoken.service.fingerprint import (
    FingerprintConfig,
    RequestSignals,
    compute_fingerprint,
)
from accesstoken.service.messages import (
    MISSING_USER_ID,
    CatalogMessages,
    MessageFormatter,
)
from accesstoken.storage.common import SessionStore, escape_glob
from accesstoken.storage.errors import MalformedRecordError
from accesstoken.storage.models import SessionRecord, now_ms

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "acst"
DEFAULT_MAX_AGE_MS = 20 * 60 * 1000
NONCE_BYTES = 32


def resolve_max_age(value: Union[str, int, float]) -> int:
    """Normalize a max-age setting to positive milliseconds.

    Raises:
        ValueError: If the value cannot be parsed or is not positive.
    """
    max_age = parse_duration(value)
    if max_age <= 0:
        raise ValueError(f"max age must be positive, got {value!r}")
    return max_age


class TokenManager:
    """Issues, resolves, lists and destroys access-token sessions.

    Tokens have the form ``{key_prefix}:{user_id}:{digest}`` and double as the
    store key. The digest covers 32 random bytes, so knowing the user id and
    issue time is not enough to guess a token.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        fingerprint: FingerprintConfig = None,
        messages: Optional[MessageFormatter] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        if not key_prefix or ":" in key_prefix:
            raise ValueError("key_prefix must be a non-empty string without ':'")
        self.store = store
        self.key_prefix = key_prefix
        self.max_age_ms = resolve_max_age(max_age_ms)
        self.fingerprint_policy = fingerprint
        self.messages: MessageFormatter = messages or CatalogMessages()
        self._clock = clock or now_ms

    async def compute_fingerprint(self, signals: RequestSignals) -> str:
        return await compute_fingerprint(self.fingerprint_policy, signals)

    def _token_for(self, user_id: str, ip: str, nonce: str, timestamp: int) -> str:
        digest = hashlib.sha256(f"{user_id}{ip}{nonce}{timestamp}".encode()).hexdigest()
        return f"{self.key_prefix}:{user_id}:{digest}"

    async def create_session(
        self,
        user_id: str,
        *,
        ip: Optional[str] = None,
        fingerprint: Optional[str] = None,
        max_age: Union[str, int, None] = None,
        signals: Optional[RequestSignals] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> SessionRecord:
        """Issue a new in-memory session for ``user_id``.

        The record is dirty and bound to the store but not yet written, so the
        caller can add attributes before the first ``save()``. When ``signals``
        is given, ``ip`` and ``fingerprint`` default to values derived from
        the current request.
        """
        if not isinstance(user_id, str) or not user_id:
            raise ValidationError(
                self.messages.format(MISSING_USER_ID, "UserID is Required"),
                detail={"field": "user_id"},
            )

        if max_age is None:
            effective_max_age = self.max_age_ms
        else:
            try:
                effective_max_age = resolve_max_age(max_age)
            except ValueError as exc:
                raise ValidationError(str(exc), detail={"field": "max_age"}) from exc

        if signals is not None:
            if ip is None:
                ip = signals.client_ip or None
            if fingerprint is None:
                fingerprint = await self.compute_fingerprint(signals)

        timestamp = self._clock()
        nonce = secrets.token_hex(NONCE_BYTES)
        token = self._token_for(user_id, ip or "", nonce, timestamp)

        record = SessionRecord(
            token=token,
            user_id=user_id,
            created_at=timestamp,
            updated_at=timestamp,
            max_age=effective_max_age,
            fingerprint=fingerprint or "",
            ip=ip,
            attributes=dict(attributes or {}),
            _store=self.store,
            _dirty=True,
        )
        logger.info("access_token_issued", user_id=user_id, max_age=effective_max_age)
        return record

    def _owns(self, token: str) -> bool:
        return bool(token) and token.startswith(f"{self.key_prefix}:")

    async def find_by_token(self, token: str) -> Optional[SessionRecord]:
        """Resolve ``token`` to its session, or None.

        Tokens outside this manager's prefix are refused without touching the
        store. Corrupt payloads are indistinguishable from missing ones.
        """
        if not isinstance(token, str) or not self._owns(token):
            return None

        raw = await self.store.get(token)
        if not raw:
            return None

        try:
            record = SessionRecord.from_json(raw, self.store)
        except MalformedRecordError as exc:
            logger.debug("access_token_payload_malformed", error=str(exc))
            return None
        if record.token != token:
            logger.debug("access_token_payload_mismatch")
            return None
        return record

    async def list_by_user_id(self, user_id: str, skip_count: int = 0) -> List[SessionRecord]:
        """Live sessions of ``user_id``, newest first, after skipping ``skip_count``."""
        if not isinstance(user_id, str) or not user_id:
            return []

        namespace = self.store.key_prefix or ""
        user_prefix = f"{self.key_prefix}:{user_id}:"
        raw_keys = await self.store.keys(f"{escape_glob(namespace + user_prefix)}*")

        results: List[SessionRecord] = []
        for raw_key in raw_keys:
            if not raw_key.startswith(namespace):
                continue
            token = raw_key[len(namespace):]
            # Reject keys of users whose id extends this one (e.g. "u1:x")
            if not token.startswith(user_prefix) or ":" in token[len(user_prefix):]:
                continue
            record = await self.find_by_token(token)
            if record is not None:
                results.append(record)

        # last login first
        results.sort(key=lambda item: item.created_at, reverse=True)
        if skip_count > 0:
            results = results[skip_count:]
        return results

    async def destroy(self, token: str) -> None:
        if not token:
            return
        await self.store.delete(token)

    async def destroy_all(self, user_id: str, *, except_token: Optional[str] = None) -> int:
        """Destroy every session of ``user_id`` except ``except_token``.

        Returns:
            Number of sessions destroyed
        """
        destroyed = 0
        for record in await self.list_by_user_id(user_id):
            if except_token and record.token == except_token:
                continue
            await self.destroy(record.token)
            destroyed += 1
        if destroyed:
            logger.info("access_tokens_revoked", user_id=user_id, count=destroyed)
        return destroyed


__all__ = ["TokenManager", "resolve_max_age", "DEFAULT_KEY_PREFIX", "DEFAULT_MAX_AGE_MS"]
