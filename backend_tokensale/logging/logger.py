"""
Structured JSON logging: timestamp, event_type, wallet and distribution context.

structlog with ISO timestamps, log level, and consistent keys for aggregation.
All modules should use get_logger(__name__) and log snake_case event names
with keyword context (wallet=..., distribution_id=...).

LOG_LEVEL and LOG_FORMAT are read through config.env, so a project-root .env
applies here as well. config.env must not import backend_tokensale.logging.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

from backend_tokensale.config.env import get_env


def log_settings() -> tuple[int, str]:
    """(level, format) from LOG_LEVEL and LOG_FORMAT. json for production, anything else is human-readable."""
    level = getattr(logging, get_env("LOG_LEVEL", "INFO").upper(), logging.INFO)
    return level, get_env("LOG_FORMAT", "json").lower()


def _add_timestamp(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Ensure timestamp is always present (ISO 8601)."""
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Rename structlog 'event' to event_type; keep message if present."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "message" not in event_dict and "event_type" in event_dict:
        event_dict["message"] = str(event_dict["event_type"])
    return event_dict


def configure_structlog() -> None:
    """Configure structlog once at import: JSON, timestamp, level, event_type."""
    level, log_format = log_settings()
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _normalize_event,
    ]
    if log_format == "json":
        shared_processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        shared_processors.append(
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        )
    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger for the given module name.

        logger = get_logger(__name__)
        logger.info("distribution_created", distribution_id=dist_id, eligible_holders=3)

    Output (JSON): {"event_type": "distribution_created", "distribution_id": "...",
    "eligible_holders": 3, "timestamp": "...", "level": "info", "logger": "module.name"}
    """
    return structlog.get_logger(name).bind(logger=name)


def short_address(address: str | None) -> str:
    """Truncate a wallet address for log lines (0x1234abcd...)."""
    address = address or ""
    return address[:10] + "..." if len(address) > 10 else address

