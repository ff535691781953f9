"""Structured logging helpers."""

from __future__ import annotations
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace

from app.config import Settings
from app.observability.metrics import log_errors_total, log_messages_total

_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "trace_id", "span_id", "service", "env"}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "urllib3")


class TraceContextFilter(logging.Filter):
    """Attach service metadata and the active span ids to every record."""

    def __init__(self, service: str, env: str) -> None:
        super().__init__()
        self.service = service
        self.env = env

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        record.env = self.env
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = None
            record.span_id = None
        return True


class LogMetricsFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        level = record.levelname.lower()
        log_messages_total.add(1, {"level": level})
        if record.levelno >= logging.ERROR:
            error_type = record.exc_info[0].__name__ if record.exc_info and record.exc_info[0] else "unknown"
            log_errors_total.add(1, {"logger": record.name, "error_type": error_type})
        return True


class JsonLogFormatter(logging.Formatter):
    """Format log records as JSON lines for downstream ingestion."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "service": getattr(record, "service", None),
            "env": getattr(record, "env", None),
        }
        if getattr(record, "trace_id", None):
            payload["trace_id"] = record.trace_id
            payload["span_id"] = record.span_id
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value if isinstance(value, (str, int, float, bool, type(None))) else str(value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def build_handler(settings: Settings, stream=None) -> logging.Handler:
    handler = logging.StreamHandler(stream or sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
    handler.addFilter(TraceContextFilter(settings.otel_service_name, settings.environment))
    handler.addFilter(LogMetricsFilter())
    handler._momoi = True  # type: ignore[attr-defined]
    return handler


def configure_logging(settings: Settings, *, stream=None) -> logging.Handler:
    """Install the service handler on the root logger, replacing a previous one."""
    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if getattr(existing, "_momoi", False):
            root_logger.removeHandler(existing)

    handler = build_handler(settings, stream)
    root_logger.addHandler(handler)
    root_logger.setLevel(_LEVELS.get(settings.log_level, logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
