from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
lot_context: ContextVar[str] = ContextVar("lot_context", default="")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] [cid=%(correlation_id)s lot=%(lot)s] %(message)s"


def get_correlation_id() -> str:
    cid = correlation_id.get()
    if not cid:
        cid = uuid.uuid4().hex[:12]
        correlation_id.set(cid)
    return cid


@contextmanager
def lot_scope(site: int, lot_id: str) -> Iterator[str]:
    """Tag every record logged inside the block with ``site:lot_id``."""
    label = f"{site}:{lot_id}"
    token = lot_context.set(label)
    try:
        yield label
    finally:
        lot_context.reset(token)


class RequestContextFilter(logging.Filter):
    """Copies the request context variables onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id.get("")
        record.lot = lot_context.get("")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or correlation_id.get(""),
        }
        lot = getattr(record, "lot", None) or lot_context.get("")
        if lot:
            entry["lot"] = lot
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_data"):
            entry["data"] = record.extra_data
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    # Per-request lines from the HTTP and Kafka clients drown out pipeline logs.
    for noisy in ("httpx", "httpcore", "aiokafka", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
