import pytest

from accesstoken.config import Settings
from accesstoken.logging import _redact_secrets, bind_request_context, get_correlation_id
from accesstoken.service import runtime as runtime_module
from accesstoken.service.fingerprint import FingerprintPolicy, RequestSignals
from accesstoken.service.runtime import (
    Runtime,
    _mask_url_password,
    build_store,
    get_runtime,
    setup_access_token,
)
from accesstoken.storage.memory import MemoryCache

UNREACHABLE_REDIS = "redis://127.0.0.1:1/0"


class TestBuildStore:
    def test_memory_store_requested(self):
        store = build_store(Settings(use_memory_store=True, redis_key_prefix="app:"))

        assert isinstance(store, MemoryCache)
        assert store.key_prefix == "app:"

    def test_missing_redis_is_fatal_outside_test_mode(self):
        settings = Settings(redis_url=UNREACHABLE_REDIS, test_mode=False)

        with pytest.raises(RuntimeError, match="Redis is required"):
            build_store(settings)

    def test_missing_redis_falls_back_in_test_mode(self):
        settings = Settings(redis_url=UNREACHABLE_REDIS, test_mode=True)

        assert isinstance(build_store(settings), MemoryCache)

    def test_missing_redis_falls_back_when_dev_fallback_allowed(self):
        settings = Settings(redis_url=UNREACHABLE_REDIS, allow_redis_fallback_dev=True)

        assert isinstance(build_store(settings), MemoryCache)


class TestRuntime:
    def test_settings_flow_into_gate_and_manager(self):
        settings = Settings(
            use_memory_store=True,
            access_token_key_prefix="app",
            access_token_max_age="1h",
            access_token_auto_keep_active=False,
            fingerprint_user_agent=True,
            access_token_header="x-session",
        )

        rt = Runtime(settings)

        assert rt.tokens.key_prefix == "app"
        assert rt.tokens.max_age_ms == 3_600_000
        assert rt.tokens.fingerprint_policy == FingerprintPolicy(user_agent=True)
        assert rt.gate.auto_keep_active is False
        assert rt.gate.check_fingerprint is True
        assert rt.gate.token_header == "x-session"

    @pytest.mark.asyncio
    async def test_fingerprint_callable_overrides_settings(self):
        settings = Settings(use_memory_store=True, fingerprint_ip=True)

        rt = setup_access_token(settings, fingerprint=lambda signals: "fixed")

        assert await rt.tokens.compute_fingerprint(RequestSignals.build()) == "fixed"

    def test_setup_installs_process_runtime(self):
        rt = setup_access_token(Settings(use_memory_store=True))

        assert get_runtime() is rt

    def test_get_runtime_builds_from_environment(self, monkeypatch):
        monkeypatch.setenv("USE_MEMORY_STORE", "true")
        monkeypatch.setenv("ACCESS_TOKEN_KEY_PREFIX", "envpfx")
        runtime_module.reset_runtime_for_tests()

        rt = get_runtime()

        assert rt.tokens.key_prefix == "envpfx"
        assert get_runtime() is rt


class TestLoggingHelpers:
    def test_mask_url_password(self):
        assert _mask_url_password("redis://:secret@localhost:6379/0") == (
            "redis://:***@localhost:6379/0"
        )
        assert _mask_url_password("redis://localhost:6379/0") == "redis://localhost:6379/0"

    def test_tokens_and_fingerprints_are_redacted(self):
        event = _redact_secrets(
            None,
            "info",
            {
                "event": "access_token_fingerprint_mismatch",
                "token": "acst:u1:0123456789",
                "expected_fingerprint": "abcdef123456",
                "user_id": "u1",
            },
        )

        assert event["token"] == "acst:u1:01***89"
        assert event["expected_fingerprint"] == "ab***56"
        assert event["user_id"] == "u1"

    def test_request_context_generates_correlation_id(self):
        cid = bind_request_context(None, method="GET", path="/v1/session")

        assert len(cid) == 36
        assert get_correlation_id() == cid
        assert bind_request_context("req-7") == "req-7"
        assert get_correlation_id() == "req-7"
