"""
Logging setup for the imagefy logger hierarchy.

Production emits one JSON object per line; every other environment gets a
single readable line. Both carry the request id of the request being served
(bound in a ContextVar by RequestIdMiddleware) and whichever structured
attributes were passed through ``extra``.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Tuple

LOGGER_NAME = "imagefy"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Record attributes rendered by both formatters, in this order
STRUCTURED_FIELDS = (
    "email",
    "event_id",
    "event_type",
    "outcome",
    "reason",
    "error_code",
    "status",
    "path",
    "method",
    "latency_bucket",
)

# (upper bound in ms, label)
_LATENCY_BUCKETS = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))

MAX_EXTRA_LENGTH = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label, so log lines group without high-cardinality values."""
    if latency_ms is None:
        return "unknown"
    for bound, label in _LATENCY_BUCKETS:
        if latency_ms < bound:
            return label
    return ">=1000ms"


def _utc_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _present_fields(record: logging.LogRecord) -> Iterator[Tuple[str, Any]]:
    for name in STRUCTURED_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            yield name, value


class RequestIdFilter(logging.Filter):
    """Fill record.request_id from the context when the caller did not pass one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        entry.update(_present_fields(record))
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_utc_timestamp(record), f"{record.levelname:<7}", f"[{record.name}]"]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{name}={value}" for name, value in _present_fields(record))

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development", level: int = logging.INFO) -> None:
    """Install a single stdout handler on the imagefy logger. Safe to call repeatedly."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = True

    # uvicorn has its own handlers; keep its records off the root logger
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).propagate = False


def _truncate(value: Any, limit: int = MAX_EXTRA_LENGTH) -> str:
    text = str(value)
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    email: Optional[str] = None,
    event_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
    exc_info: bool = False,
) -> None:
    """
    Log `msg` on the imagefy logger with the usual correlation attributes.

    Values in `extra` are stringified and truncated; None-valued keyword
    attributes are left off the record.
    """
    attrs: Dict[str, Any] = {"request_id": request_id or get_request_id()}
    named = {"email": email, "event_id": event_id, "event_type": event_type, "error_code": error_code}
    attrs.update((key, value) for key, value in named.items() if value is not None)
    if extra:
        attrs.update((key, _truncate(value)) for key, value in extra.items())

    logger = logging.getLogger(LOGGER_NAME)
    logger.log(logging.getLevelName(level.upper()), msg, extra=attrs, exc_info=exc_info)
