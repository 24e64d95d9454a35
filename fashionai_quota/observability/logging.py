"""
Quota event logging with structlog.

Every quota decision is one event: credit_deducted, credit_deduction_denied,
credit_refunded, credits_reset, api_key_marked_inactive,
api_key_pool_exhausted, rate_limiters_pruned and so on. Vendor credentials
never reach the sink whole; fields that may carry one are cut to their
loggable prefix.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from fashionai_quota.config import settings

# Matches ApiKeyEntry.prefix
CREDENTIAL_PREFIX_LENGTH = 8

_CREDENTIAL_FIELDS = frozenset({"api_key", "key", "admin_token", "x_admin_token"})


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp service name and version on every event."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def truncate_credentials(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Cut credential-bearing fields down to their prefix."""
    for field_name in _CREDENTIAL_FIELDS.intersection(event_dict):
        value = event_dict[field_name]
        if isinstance(value, str) and len(value) > CREDENTIAL_PREFIX_LENGTH:
            event_dict[field_name] = value[:CREDENTIAL_PREFIX_LENGTH] + "..."
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog for the quota service.

    JSON output looks like:
    {
        "event": "credit_deducted",
        "level": "info",
        "timestamp": "2025-03-10T12:00:00.123456Z",
        "logger": "fashionai_quota.services.credits",
        "service": "fashionai-quota",
        "version": "0.1.0",
        "user_id": "user-123",
        "generation_type": "try-on",
        "cost": 1,
        "credits_remaining": 9
    }

    Console output (LOG_FORMAT=console) is for local runs.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        truncate_credentials,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for a quota module, e.g. get_logger(__name__)."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind request-scoped fields (request_id, user_id) for nested events.

    Usage:
        with log_context(request_id=request_id, user_id=user_id):
            await ledger.deduct_credit(user_id, GenerationType.TRY_ON)
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
