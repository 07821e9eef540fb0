from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

from tradebook.utils.config import get_settings

# Keys whose values never reach a log line (broker payloads, auth headers).
SECRET_KEYS = frozenset({
    "api_key", "access_token", "refresh_token", "password", "secret", "authorization", "code",
})
REDACTED = "***REDACTED***"


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of `data` with secret values masked, nested dicts included."""
    clean: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in SECRET_KEYS:
            clean[key] = REDACTED
        elif isinstance(value, dict):
            clean[key] = sanitize_log_data(value)
        else:
            clean[key] = value
    return clean


def _redact_event(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    return sanitize_log_data(event_dict)


def _handlers(log_file: str) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a"))
    return handlers


def setup_logging() -> None:
    """JSON (or console) structlog events on stdout and the journal log file."""
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", level=level, handlers=_handlers(settings.log_file))
    # The store logs through stdlib; keep it at the same threshold.
    logging.getLogger("journal_store").setLevel(level)

    renderer = (structlog.processors.JSONRenderer() if settings.log_json
                else structlog.dev.ConsoleRenderer(colors=False))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            _redact_event,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_user(user_id: str) -> None:
    """Tag every event of the current request with the acting user."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(user_id=user_id)
