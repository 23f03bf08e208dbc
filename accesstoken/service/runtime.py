from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from accesstoken.config import Settings, get_settings, reset_settings_cache
from accesstoken.logging import get_logger
from accesstoken.service.fingerprint import FingerprintConfig
from accesstoken.service.gate import AccessTokenGate
from accesstoken.service.messages import CatalogMessages, MessageFormatter
from accesstoken.service.tokens import TokenManager
from accesstoken.storage.common import SessionStore
from accesstoken.storage.memory import MemoryCache
from accesstoken.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask password in URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_store(settings: Settings) -> Union[RedisCache, SyncRedisCache, MemoryCache]:
    """Pick the session store backend for ``settings``.

    Redis is required unless TEST_MODE or ALLOW_REDIS_FALLBACK_DEV permits
    falling back to the process-local MemoryCache.
    """
    if settings.use_memory_store:
        logger.info("runtime_store_initialized", store_type="memory")
        return MemoryCache(key_prefix=settings.redis_key_prefix)

    redis_error: Exception | None = None
    if settings.redis_url:
        try:
            # Use sync Redis client in test mode to avoid event loop issues
            cache_cls = SyncRedisCache if settings.test_mode else RedisCache
            cache = cache_cls(settings.redis_url, key_prefix=settings.redis_key_prefix)
            cache.verify_connection()
            logger.info(
                "runtime_store_initialized",
                store_type="redis",
                redis_url=_mask_url_password(settings.redis_url),
            )
            return cache
        except Exception as exc:
            redis_error = exc

    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for access-token sessions; start Redis or set "
            "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for the in-memory fallback."
        ) from redis_error

    fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error) if redis_error else "redis_url_missing",
        message=(
            f"Running without Redis under {fallback_mode}; sessions are process-local "
            "and lost on restart."
        ),
        mode=fallback_mode,
    )
    return MemoryCache(key_prefix=settings.redis_key_prefix)


class Runtime:
    """Holds the store, token manager and gate shared by all requests."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[SessionStore] = None,
        messages: Optional[MessageFormatter] = None,
        fingerprint: FingerprintConfig = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store if store is not None else build_store(self.settings)
        self.messages: MessageFormatter = messages or CatalogMessages()
        policy = fingerprint if fingerprint is not None else self.settings.fingerprint_policy
        self.tokens = TokenManager(
            self.store,
            key_prefix=self.settings.access_token_key_prefix,
            max_age_ms=self.settings.access_token_max_age,
            fingerprint=policy,
            messages=self.messages,
        )
        self.gate = AccessTokenGate(
            self.tokens,
            messages=self.messages,
            auto_keep_active=self.settings.access_token_auto_keep_active,
            strict_persistence=self.settings.strict_persistence,
            token_header=self.settings.access_token_header,
            token_body_field=self.settings.access_token_body_field,
            token_alt_header=self.settings.access_token_alt_header,
            trust_forwarded_for=self.settings.trust_forwarded_for,
        )
        logger.info(
            "runtime_initialized",
            key_prefix=self.tokens.key_prefix,
            max_age=self.tokens.max_age_ms,
            auto_keep_active=self.gate.auto_keep_active,
            fingerprint_check=self.gate.check_fingerprint,
        )

    async def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()


def setup_access_token(
    settings: Optional[Settings] = None,
    *,
    store: Optional[SessionStore] = None,
    messages: Optional[MessageFormatter] = None,
    fingerprint: FingerprintConfig = None,
) -> Runtime:
    """Build and install the process-wide runtime.

    ``fingerprint`` overrides the settings-derived policy and may be a
    callable computing the fingerprint from request signals.
    """
    global runtime
    with _runtime_lock:
        runtime = Runtime(settings, store=store, messages=messages, fingerprint=fingerprint)
        return runtime


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> None:
    """Drop the runtime singleton and cached settings for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            store = runtime.store
            if isinstance(store, SyncRedisCache):
                store.client.close()
            elif isinstance(store, (RedisCache, MemoryCache)):
                try:
                    loop = asyncio.get_running_loop()
                    loop.create_task(store.close())
                except RuntimeError:
                    asyncio.run(store.close())
        runtime = None
        reset_settings_cache()
