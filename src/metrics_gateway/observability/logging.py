"""
metrics_gateway.observability.logging

Structured logging configuration for the service.

Responsibilities:
- Configure `structlog` for JSON logs.
- Truncate credential material (tokens) and drop passwords before rendering.
- Provide a small wrapper for obtaining bound loggers.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Event fields that carry a token; only a prefix is ever rendered.
_TOKEN_FIELDS = frozenset({"token", "token_id", "subject_token"})
_DROPPED_FIELDS = frozenset({"password"})


def truncate_token(token: str) -> str:
    """First quarter of a token (plus one char), enough to correlate log lines."""
    if not token:
        return ""
    return token[: 1 + len(token) // 4] + "..."


def configure_logging(*, service_name: str, level: str) -> None:
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name(service_name),
            redact_credentials,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _add_service_name(service_name: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def redact_credentials(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in _DROPPED_FIELDS & event_dict.keys():
        event_dict[key] = "***"
    for key in _TOKEN_FIELDS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = truncate_token(value)
    return event_dict


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Callers should still avoid passing secrets as positional event text; the
# redaction processor only inspects keyword fields.
