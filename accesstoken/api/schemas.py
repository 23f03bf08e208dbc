from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

# Maximum nested JSON depth to prevent deserialization bombs
MAX_JSON_DEPTH = 20
# Maximum array items to prevent memory exhaustion
MAX_ARRAY_ITEMS = 1000
# Attribute bags are stored with every session write
MAX_ATTRIBUTE_KEYS = 64


def _validate_json_depth(obj: Any, max_depth: int = MAX_JSON_DEPTH, current_depth: int = 0) -> None:
    """Validate nested JSON depth.

    Raises:
        ValueError: If depth exceeds maximum
    """
    if current_depth > max_depth:
        raise ValueError(f"JSON nesting depth exceeds maximum of {max_depth}")

    if isinstance(obj, dict):
        for value in obj.values():
            _validate_json_depth(value, max_depth, current_depth + 1)
    elif isinstance(obj, list):
        if len(obj) > MAX_ARRAY_ITEMS:
            raise ValueError(f"Array length {len(obj)} exceeds maximum of {MAX_ARRAY_ITEMS}")
        for item in obj:
            _validate_json_depth(item, max_depth, current_depth + 1)


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any] | List[Any]] = None


class Envelope(BaseModel):
    """Stable API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class SessionView(BaseModel):
    session_id: str
    user_id: str
    created_at: int
    updated_at: int
    max_age: int
    ip: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    current: bool = False


class SessionListResponse(BaseModel):
    items: List[SessionView]
    skipped: int = 0


class AttributesUpdateRequest(BaseModel):
    """Attribute changes; a null value removes the key."""

    attributes: Dict[str, Any]

    @field_validator("attributes")
    @classmethod
    def _validate_attributes(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if len(value) > MAX_ATTRIBUTE_KEYS:
            raise ValueError(f"at most {MAX_ATTRIBUTE_KEYS} attributes per update")
        _validate_json_depth(value)
        return value


class WhoAmIResponse(BaseModel):
    authenticated: bool
    user_id: Optional[str] = None
