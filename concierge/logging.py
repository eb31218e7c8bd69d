"""structlog configuration for the design compiler API.

Every event carries the service name and environment. Request middleware
binds ``request_id``; the action endpoint binds ``action`` and, where the
payload has one, ``session_id`` or ``workspace_id``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import structlog

from concierge.config import settings

SERVICE_NAME = "design-compiler"

_LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Payload keys worth correlating across an action's log events
_CONTEXT_KEYS = ("session_id", "workspace_id", "job_id")


def add_service_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def action_context(payload: dict[str, Any]) -> dict[str, str]:
    """Log context for one dispatched action: its name plus correlation IDs."""
    context = {"action": str(payload.get("action") or "")}
    for key in _CONTEXT_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            context[key] = value
    return context


def _logger_factory() -> Any:
    if settings.log_file:
        # JSON lines appended to LOG_FILE instead of stdout
        path = Path(settings.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        return structlog.WriteLoggerFactory(file=path.open("at"))
    return structlog.PrintLoggerFactory()


def configure_logging() -> None:
    """Configure structlog with console renderer in dev, JSON elsewhere.

    A LOG_FILE always gets JSON, whatever the environment.
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_service_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if settings.environment == "development" and not settings.log_file:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    level = _LOG_LEVEL_MAP.get(settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=_logger_factory(),
        cache_logger_on_first_use=True,
    )
