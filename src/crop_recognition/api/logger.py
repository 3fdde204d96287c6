"""Structured JSON logging module.

One JSON object per line on stdout, stamped with the id of the request being
served. Logs metadata only; image bytes and base64 payloads are never logged.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

# Request id of the current handler; copied into worker threads by anyio
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

EXTRA_FIELDS = (
    "endpoint",
    "latency_ms",
    "status_code",
    "predictions",
    "error",
    "port",
    "model",
)

# Third-party loggers that would otherwise repeat every request line
QUIET_LOGGERS = ("uvicorn.access", "httpx")


def bind_request_id() -> str:
    """Start a request context and return its new id."""
    request_id = uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Every record carries timestamp (UTC, ISO 8601), level, logger and message.
    request_id is added inside a request context, the EXTRA_FIELDS when passed
    through `extra=`, and exception when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            payload["request_id"] = request_id

        payload.update(
            {key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)}
        )

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Display names are Chinese; keep them readable
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(log_level: str = "INFO") -> None:
    """Route all logging through a single JSON handler on stdout.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
