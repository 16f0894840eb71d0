"""structlog based logger configuration."""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from typing import Any

import structlog

_SECRET_HEADERS = {"authorization", "x-api-key", "x-subscriber-key"}
_SECRET_FIELDS = frozenset({"token", "access_token", "refresh_token", "api_key", "password"})

# Client log levels on top of the stdlib names.
_CLIENT_LEVELS = {"none": logging.WARNING, "debug": logging.DEBUG}


def new_logger(
    level: str = "none",
    format: str = "json",
    name: str = "crudify_client",
) -> structlog.stdlib.BoundLogger:
    """Return a configured structlog logger for the client.

    Args:
        level: client log level ("none" or "debug") or a stdlib level name;
            "none" and unknown names keep only warnings and errors
        format: output format ("json" or "text")
        name: logger name, namespaced under crudify_client by default

    Returns:
        a configured structlog.stdlib.BoundLogger whose event fields named
        after credentials are masked
    """
    log_level = _CLIENT_LEVELS.get(level.lower())
    if log_level is None:
        log_level = getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    logging.getLogger(name).setLevel(log_level)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        mask_secret_fields,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if format == "json":
        processors += [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.stdlib.get_logger(name)


def mask_secret(value: str | None, visible: int = 6) -> str:
    """Truncate a credential so it can appear in a log line."""
    if not value:
        return ""
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}..."


def mask_secret_fields(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """structlog processor masking string fields named after credentials."""
    for key in _SECRET_FIELDS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = mask_secret(value)
    return event_dict


def mask_headers(headers: Mapping[str, str]) -> dict[str, str]:
    masked: dict[str, str] = {}
    for name, value in headers.items():
        if name.lower() not in _SECRET_HEADERS:
            masked[name] = value
        elif value.startswith("Bearer "):
            masked[name] = f"Bearer {mask_secret(value[len('Bearer '):])}"
        else:
            masked[name] = mask_secret(value)
    return masked
