"""
Structured logging for the tour finance service.

One JSON object per line. Ledger and status code pass booking-level context
through ``extra=`` (booking_id, finance_id, item_count, ...); the request id of
the HTTP call in flight is attached to every record by RequestContextFilter,
so a pattern assignment and the status changes its hooks make share one id.
"""
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_EXTRA_FIELDS = (
    "request_id", "booking_id", "finance_id", "item_count", "category_code",
    "duration_ms", "http_method", "http_path", "http_status",
)

_NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "sqlalchemy.engine", "celery.redirected")


class RequestContextFilter(logging.Filter):
    """Copies the current request id onto records that don't carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s (req=%(request_id)s): %(message)s"
        ))
    root.handlers = [handler]

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
