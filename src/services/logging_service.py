"""Structured logging with secret redaction and phone number masking."""

import logging
import sys
from typing import Any, Dict

import structlog

# Substrings of field names whose values are never logged
SENSITIVE_KEYS = (
    "auth_token",
    "private_key",
    "api_key",
    "authorization",
    "secret",
    "password",
    "keys",
)

PHONE_KEYS = frozenset({"phone", "phone_number", "to_number", "from_number"})


def redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Redact sensitive information from log entries.

    Redacts:
    - Twilio auth tokens and VAPID private keys
    - Operator api_key fields and Authorization headers
    - Push subscription keys
    - Any field containing 'secret' or 'password'
    """
    for key in list(event_dict.keys()):
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
            event_dict[key] = "REDACTED"

    return event_dict


def mask_phone_numbers(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Keep only the last four digits of phone number fields."""
    for key in PHONE_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and value and not value.startswith("***"):
            event_dict[key] = f"***{value[-4:]}"
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for JSON output on stdout.

    Context bound through ``structlog.contextvars`` (``correlation_id`` for
    requests, ``job_run_id`` for recurring jobs) is merged into every entry.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_sensitive,
            mask_phone_numbers,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger, bound to ``logger_name`` when a name is given."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger
