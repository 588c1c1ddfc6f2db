"""
Structured JSON logging with correlation IDs.

One JSON object per line: timestamp, level, logger, correlation_id, message,
plus any known identifiers passed through `extra=`. The correlation ID lives in
a ContextVar, bound per HTTP request by middleware or per sync-command run.
"""
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Iterator, Optional, TextIO

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Identifiers copied from `extra=` onto the JSON line
EXTRA_FIELDS = (
    "event_id",
    "event_type",
    "payment_id",
    "order_id",
    "square_id",
    "operation",
    "attempt",
    "error_code",
)

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: Optional[str]) -> Token:
    """Bind cid to the current context. Returns the token for reset_correlation_id."""
    return correlation_id_ctx.set(cid)


def reset_correlation_id(token: Token) -> None:
    correlation_id_ctx.reset(token)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


@contextmanager
def correlation_scope(cid: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID (generated if not given) for the duration of the block."""
    cid = cid or generate_correlation_id()
    token = set_correlation_id(cid)
    try:
        yield cid
    finally:
        reset_correlation_id(token)


class StructuredJsonFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": get_correlation_id(),
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """
    Install a single JSON handler on the root logger, replacing any existing ones.
    Call once at process startup.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
