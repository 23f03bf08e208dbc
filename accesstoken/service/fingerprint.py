"""Client fingerprinting for binding sessions to the client that created them.

A fingerprint is derived from request signals at issuance and recomputed on
every authenticated request. Changing the policy (for example enabling the
user-agent flag) changes every computed value, so sessions issued under the
previous policy fail the fingerprint check and are destroyed on their next
use.
"""

from __future__ import annotations

import hashlib
import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException

from accesstoken.logging import get_logger

if TYPE_CHECKING:
    from starlette.requests import Request

logger = get_logger(__name__)

DEVICE_UUID_HEADER = "device-uuid"
USER_AGENT_HEADER = "user-agent"

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@dataclass
class RequestSignals:
    """Request data the session layer reads: headers, client address, body fields."""

    headers: Dict[str, str] = field(default_factory=dict)
    client_ip: str = ""
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        headers: Optional[Mapping[str, str]] = None,
        client_ip: str = "",
        body: Optional[Mapping[str, Any]] = None,
    ) -> "RequestSignals":
        return cls(
            headers={k.lower(): v for k, v in (headers or {}).items()},
            client_ip=client_ip or "",
            body=dict(body or {}),
        )

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "") or ""

    @classmethod
    async def from_request(
        cls, request: "Request", *, trust_forwarded_for: bool = False
    ) -> "RequestSignals":
        headers = {k.lower(): v for k, v in request.headers.items()}
        client_ip = request.client.host if request.client else ""
        if trust_forwarded_for:
            forwarded = headers.get("x-forwarded-for", "")
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                client_ip = first_hop
        return cls(headers=headers, client_ip=client_ip, body=await _read_body(request))


async def _read_body(request: "Request") -> Dict[str, Any]:
    """Parse JSON or form bodies into a dict; anything else yields ``{}``."""
    if request.method in {"GET", "HEAD", "OPTIONS"}:
        return {}
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    try:
        if content_type == "application/json" or content_type.endswith("+json"):
            payload = await request.json()
            return dict(payload) if isinstance(payload, dict) else {}
        if content_type in _FORM_CONTENT_TYPES:
            form = await request.form()
            return {key: value for key, value in form.items() if isinstance(value, str)}
    except (ValueError, MultiPartException, HTTPException) as exc:
        # Unparseable bodies carry no token; the handler reports its own parse error.
        # Inside an app Starlette reports multipart failures as a 400 HTTPException.
        logger.debug("request_body_unreadable", content_type=content_type, error=str(exc))
    return {}


@dataclass(frozen=True)
class FingerprintPolicy:
    """Declarative fingerprint: which client signals feed the digest."""

    device_uuid: bool = False
    ip: bool = False
    user_agent: bool = False

    @property
    def enabled(self) -> bool:
        return self.device_uuid or self.ip or self.user_agent

    def compute(self, signals: RequestSignals) -> str:
        device_id = signals.header(DEVICE_UUID_HEADER) if self.device_uuid else ""
        ip = signals.client_ip if self.ip else ""
        user_agent = signals.header(USER_AGENT_HEADER) if self.user_agent else ""
        return hashlib.sha256(f"{device_id}{ip}{user_agent}".encode()).hexdigest()


FingerprintFunction = Callable[[RequestSignals], Union[str, Awaitable[str]]]
FingerprintConfig = Union[FingerprintPolicy, FingerprintFunction, None]


def fingerprint_enabled(policy: FingerprintConfig) -> bool:
    if policy is None:
        return False
    if isinstance(policy, FingerprintPolicy):
        return policy.enabled
    return True


async def compute_fingerprint(policy: FingerprintConfig, signals: RequestSignals) -> str:
    """Fingerprint for ``signals`` under ``policy``; ``""`` when fingerprinting is off."""
    if policy is None:
        return ""
    if isinstance(policy, FingerprintPolicy):
        return policy.compute(signals) if policy.enabled else ""
    result = policy(signals)
    if inspect.isawaitable(result):
        result = await result
    return result or ""


__all__ = [
    "RequestSignals",
    "FingerprintPolicy",
    "FingerprintFunction",
    "FingerprintConfig",
    "fingerprint_enabled",
    "compute_fingerprint",
]
