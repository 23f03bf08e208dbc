from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for session-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP status_code and a stable error_code:
    - validation_error (400): bad issuance input such as a missing user id
    - unauthorized (401): the access token was rejected
    - not_found (404): the addressed session does not exist
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Issuance or request input failed validation (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Access token missing, unknown, revoked or bound to another client (401).

    The message is the user-facing rejection reason; ``detail`` is never
    sent to the client.
    """
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    """Session not found or not owned by the caller (404)."""
    status_code = 404
    error_code = "not_found"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "NotFoundError",
]
