"""Structured logging configuration with structlog."""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from meza.config import Settings

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({
    "authorization",
    "jwt_secret",
    "stripe_secret_key",
    "stripe_webhook_secret",
    "stripe_signature",
    "payment_method_id",
    "default_payment_method",
    "p256dh_key",
    "auth_key",
})


def redact_sensitive(
    logger: Any,  # noqa: ANN401
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Mask card references, push keys and credentials before rendering."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(settings: Settings) -> None:
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.DEBUG if settings.debug else logging.WARNING)
