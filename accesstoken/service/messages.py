from __future__ import annotations

from typing import Mapping, Optional, Protocol

MISSING_USER_ID = "Error_Missing_UserID"
MISSING_ACCESS_TOKEN = "Error_Missing_AccessToken"
INVALID_ACCESS_TOKEN = "Error_Invalid_AccessToken"
INVALID_CLIENT_FINGERPRINT = "Error_Invalid_Client_Fingerprint"


class MessageFormatter(Protocol):
    def format(self, message_id: str, default: str) -> str: ...


class CatalogMessages:
    """Render user-facing messages from a static catalog.

    Unknown ids fall back to the default text, so an empty catalog yields the
    built-in English messages.
    """

    def __init__(self, catalog: Optional[Mapping[str, str]] = None) -> None:
        self.catalog = dict(catalog or {})

    def format(self, message_id: str, default: str) -> str:
        return self.catalog.get(message_id) or default


__all__ = [
    "MessageFormatter",
    "CatalogMessages",
    "MISSING_USER_ID",
    "MISSING_ACCESS_TOKEN",
    "INVALID_ACCESS_TOKEN",
    "INVALID_CLIENT_FINGERPRINT",
]
