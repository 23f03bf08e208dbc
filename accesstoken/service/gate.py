from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from fastapi import Request

from accesstoken.logging import get_logger
from accesstoken.service.errors import AuthenticationError
from accesstoken.service.fingerprint import RequestSignals, fingerprint_enabled
from accesstoken.service.messages import (
    INVALID_ACCESS_TOKEN,
    INVALID_CLIENT_FINGERPRINT,
    MISSING_ACCESS_TOKEN,
    MessageFormatter,
)
from accesstoken.service.tokens import TokenManager
from accesstoken.storage.errors import StoreError
from accesstoken.storage.models import SessionRecord

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class AccessContext:
    """Per-request view of the authenticated session handed to route handlers.

    ``session`` is None for anonymous requests admitted by an optional gate.
    Calling ``clear()`` asks the gate to destroy the session once the handler
    returns (logout).
    """

    signals: RequestSignals
    session: Optional[SessionRecord] = None
    _manager: Optional[TokenManager] = field(default=None, repr=False)
    _resolved: Optional[SessionRecord] = field(default=None, repr=False)

    @property
    def authenticated(self) -> bool:
        return self.session is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    @property
    def cleared(self) -> bool:
        return self._resolved is not None and self.session is None

    async def fingerprint(self) -> str:
        """Fingerprint of the current request under the configured policy."""
        if self._manager is None:
            return ""
        return await self._manager.compute_fingerprint(self.signals)

    def clear(self) -> None:
        self.session = None


class AccessTokenGate:
    """Authenticates requests by access token and persists session changes.

    A request passes through ``authenticate`` (token extraction, lookup,
    death and fingerprint checks), then the route handler, then ``finalize``
    (destroy if cleared, save if dirty, extend the TTL). ``finalize`` only
    runs when the handler returned normally.
    """

    def __init__(
        self,
        manager: TokenManager,
        *,
        messages: Optional[MessageFormatter] = None,
        auto_keep_active: bool = True,
        strict_persistence: bool = False,
        token_header: str = "access-token",
        token_body_field: str = "authToken",
        token_alt_header: str = "authToken",
        trust_forwarded_for: bool = False,
    ) -> None:
        self.manager = manager
        self.messages: MessageFormatter = messages or manager.messages
        self.auto_keep_active = auto_keep_active
        self.strict_persistence = strict_persistence
        self.token_header = token_header
        self.token_body_field = token_body_field
        self.token_alt_header = token_alt_header
        self.trust_forwarded_for = trust_forwarded_for

    @property
    def check_fingerprint(self) -> bool:
        return fingerprint_enabled(self.manager.fingerprint_policy)

    def extract_token(self, signals: RequestSignals) -> str:
        """First non-empty token from header, body field, then alternate header."""
        body_value = signals.body.get(self.token_body_field)
        candidates = (
            signals.header(self.token_header),
            body_value if isinstance(body_value, str) else "",
            signals.header(self.token_alt_header),
        )
        for candidate in candidates:
            if candidate and candidate.strip():
                return candidate.strip()
        return ""

    def _reject(self, message_id: str, default: str) -> AuthenticationError:
        return AuthenticationError(self.messages.format(message_id, default))

    async def authenticate(
        self, signals: RequestSignals, *, optional: bool = False
    ) -> AccessContext:
        """Resolve the request's session or raise AuthenticationError.

        Store failures propagate as StoreError so an unavailable store is never
        reported as an invalid token.
        """
        context = AccessContext(signals=signals, _manager=self.manager)

        token = self.extract_token(signals)
        if not token:
            if optional:
                return context
            logger.warning("access_token_missing", ip=signals.client_ip)
            raise self._reject(MISSING_ACCESS_TOKEN, "AccessToken is Required")

        record = await self.manager.find_by_token(token)
        if record is None:
            if optional:
                return context
            logger.info("access_token_invalid", ip=signals.client_ip)
            raise self._reject(INVALID_ACCESS_TOKEN, "AccessToken Is Invalid")

        if record.is_dead:
            logger.info(
                "access_token_dead", user_id=record.user_id, reason=record.death_reason
            )
            await self.manager.destroy(record.token)
            if record.death_reason:
                raise AuthenticationError(record.death_reason)
            raise self._reject(INVALID_ACCESS_TOKEN, "AccessToken Is Invalid")

        if self.check_fingerprint:
            current = await self.manager.compute_fingerprint(signals)
            if record.fingerprint != current:
                logger.info(
                    "access_token_fingerprint_mismatch",
                    user_id=record.user_id,
                    ip=signals.client_ip,
                    expected_fingerprint=current,
                    stored_fingerprint=record.fingerprint,
                )
                await self.manager.destroy(record.token)
                raise self._reject(INVALID_CLIENT_FINGERPRINT, "Client fingerprint is changed!")

        context.session = record
        context._resolved = record
        return context

    async def finalize(self, context: AccessContext) -> None:
        """Persist what the handler did to the session.

        Persistence failures are logged and swallowed unless
        ``strict_persistence`` is set; a failed save leaves the record dirty.
        """
        resolved = context._resolved
        if resolved is None:
            return

        try:
            if context.session is None or context.session.is_dead:
                await self.manager.destroy(resolved.token)
                logger.info(
                    "access_token_destroyed",
                    user_id=resolved.user_id,
                    reason=resolved.death_reason or "cleared",
                )
                return

            session = context.session
            await session.save()
            if self.auto_keep_active:
                await session.refresh_expiry()
        except StoreError as exc:
            logger.error(
                "access_token_persist_failed",
                user_id=resolved.user_id,
                error=exc.message,
                detail=exc.detail,
            )
            if self.strict_persistence:
                raise

    async def process(
        self,
        signals: RequestSignals,
        handler: Callable[[AccessContext], Awaitable[T]],
        *,
        optional: bool = False,
    ) -> T:
        """Run ``handler`` inside the full authenticate/finalize cycle."""
        context = await self.authenticate(signals, optional=optional)
        result = await handler(context)
        await self.finalize(context)
        return result

    async def authenticate_request(
        self, request: Request, *, optional: bool = False
    ) -> AccessContext:
        """``authenticate`` for a FastAPI/Starlette request."""
        signals = await RequestSignals.from_request(
            request, trust_forwarded_for=self.trust_forwarded_for
        )
        return await self.authenticate(signals, optional=optional)


__all__ = ["AccessContext", "AccessTokenGate"]
