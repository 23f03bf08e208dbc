from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from accesstoken.durations import parse_duration
from accesstoken.logging import get_logger
from accesstoken.service.fingerprint import FingerprintPolicy

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the access-token layer."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_key_prefix: str = env_field(
        "",
        "REDIS_KEY_PREFIX",
        description="Namespace prepended to every Redis key (e.g. 'myapp:')",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Use a synchronous Redis client and allow the in-memory fallback",
    )

    access_token_key_prefix: str = env_field("acst", "ACCESS_TOKEN_KEY_PREFIX")
    access_token_max_age: int = env_field(
        20 * 60 * 1000,
        "ACCESS_TOKEN_MAX_AGE",
        description="Session lifetime; duration string ('20m', '12h') or milliseconds",
    )
    access_token_auto_keep_active: bool = env_field(
        True,
        "ACCESS_TOKEN_AUTO_KEEP_ACTIVE",
        description="Extend the session TTL on every authenticated request",
    )
    access_token_header: str = env_field("access-token", "ACCESS_TOKEN_HEADER")
    access_token_body_field: str = env_field("authToken", "ACCESS_TOKEN_BODY_FIELD")
    access_token_alt_header: str = env_field("authToken", "ACCESS_TOKEN_ALT_HEADER")

    # Changing any fingerprint flag invalidates every session issued before the change.
    fingerprint_device_uuid: bool = env_field(False, "FINGERPRINT_DEVICE_UUID")
    fingerprint_ip: bool = env_field(False, "FINGERPRINT_IP")
    fingerprint_user_agent: bool = env_field(False, "FINGERPRINT_USER_AGENT")

    trust_forwarded_for: bool = env_field(
        False,
        "TRUST_FORWARDED_FOR",
        description="Take the client IP from X-Forwarded-For (only behind a trusted proxy)",
    )
    strict_persistence: bool = env_field(
        False,
        "STRICT_PERSISTENCE",
        description="Fail the request when saving or refreshing the session fails",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("access_token_max_age", mode="before")
    @classmethod
    def _parse_max_age(cls, value: Any) -> int:
        max_age = parse_duration(value)
        if max_age <= 0:
            raise ValueError("access_token_max_age must be positive")
        return max_age

    @field_validator("access_token_key_prefix")
    @classmethod
    def _validate_key_prefix(cls, value: str) -> str:
        if not value or ":" in value:
            raise ValueError("access_token_key_prefix must be non-empty and contain no ':'")
        return value

    @property
    def fingerprint_policy(self) -> FingerprintPolicy | None:
        policy = FingerprintPolicy(
            device_uuid=self.fingerprint_device_uuid,
            ip=self.fingerprint_ip,
            user_agent=self.fingerprint_user_agent,
        )
        return policy if policy.enabled else None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            key_prefix=_settings_cache.access_token_key_prefix,
            max_age=_settings_cache.access_token_max_age,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
