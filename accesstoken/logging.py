from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, Optional

import structlog

_REDACTED_KEYS = {"password", "secret", "token", "authorization", "fingerprint", "nonce"}


def _mask(value: str) -> str:
    # Access tokens keep their prefix and user id so log lines stay attributable
    head, sep, digest = value.rpartition(":")
    if sep and head and len(digest) > 4:
        return f"{head}:{digest[:2]}***{digest[-2:]}"
    return value[:2] + "***" + value[-2:]


def _redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to mask session tokens and other credentials in log entries."""
    for key in list(event_dict.keys()):
        lower_key = key.lower()
        if any(marker in lower_key for marker in _REDACTED_KEYS):
            value = event_dict[key]
            if isinstance(value, str) and len(value) > 4:
                event_dict[key] = _mask(value)
    return event_dict


def bind_request_context(correlation_id: Optional[str] = None, **values: Any) -> str:
    """Start a fresh per-request log context and return its correlation id.

    A missing id (no X-Request-ID header) is replaced with a new UUID.
    """
    cid = correlation_id or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=cid, **values)
    return cid


def get_correlation_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get("correlation_id")


def _configure_structlog(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Install the processor chain shared by every accesstoken logger.

    Redaction runs after the correlation id is attached and before any
    renderer, so no output mode sees an unmasked token. ``json_output=False``
    or ``development_mode`` switches to the coloured console renderer.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
    ]

    if development_mode or not json_output:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


# Logging is configured once, before any module asks for a logger
_configure_structlog(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development_mode=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger with correlation ID support."""
    return structlog.get_logger(name)
