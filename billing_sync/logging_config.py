"""Structured logging configuration using structlog.

Every log line carries the service name, level and ISO timestamp, plus
whatever request, account or webhook context is bound at the time.
Customer references and emails are shortened before rendering, whether the
caller masked them or not.
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Optional

import structlog
from structlog.typing import EventDict, Processor

SERVICE_NAME = "billing-sync"

# Field name -> characters kept when masking
MASKED_FIELDS = {
    "customer_id": 8,
    "email": 3,
}


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = SERVICE_NAME
    return event_dict


def mask_billing_identifiers(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten customer references and emails in any field that carries them."""
    for key, keep in MASKED_FIELDS.items():
        if key in event_dict:
            event_dict[key] = mask_identifier(event_dict[key], keep=keep)
    return event_dict


def drop_debug_in_production(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Drop DEBUG logs if not in debug mode."""
    if method_name == "debug" and not is_debug_mode():
        raise structlog.DropEvent
    return event_dict


def mask_identifier(value: Any, keep: int = 8) -> Any:
    """Shorten provider ids and emails before they reach the logs.

    Already masked values come back unchanged.
    """
    if not isinstance(value, str) or len(value) <= keep or value.endswith("***"):
        return value
    return value[:keep] + "***"


def is_debug_mode() -> bool:
    """Check if debug mode is enabled via LOG_LEVEL environment variable."""
    return os.getenv("LOG_LEVEL", "INFO").upper() == "DEBUG"


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamp: bool = True,
) -> None:
    """Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON; if False, use colored console output
        include_timestamp: Include ISO8601 timestamps in logs
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        mask_billing_identifiers,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if numeric_level > logging.DEBUG:
        processors.append(drop_debug_in_production)

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables that will be included in all subsequent logs.

    Example:
        bind_context(request_id="abc123", customer_id="cus_456")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def webhook_event_context(event_id: str, event_type: str, customer_id: Optional[str] = None) -> Iterator[None]:
    """Bind a webhook event's identity for the duration of its processing."""
    context: dict[str, Any] = {"event_id": event_id, "event_type": event_type}
    if customer_id:
        context["customer_id"] = customer_id
    with structlog.contextvars.bound_contextvars(**context):
        yield


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
