"""JSON logging configuration for the chapter bot."""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"chapterbot.{name}")


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class RequestLogger(logging.LoggerAdapter):
    """Adapter that stamps every record with the delivery's request id.

    Callers may still pass ``extra={"context": {...}}``; the two context
    dicts are merged with the call-site keys winning.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra") or {}
        call_context = extra.get("context") or {}
        kwargs["extra"] = {**extra, "context": {**self.extra, **call_context}}
        return msg, kwargs


def request_logger(name: str, request_id: str, **context: Any) -> RequestLogger:
    return RequestLogger(get_logger(name), {"request_id": request_id, **context})
