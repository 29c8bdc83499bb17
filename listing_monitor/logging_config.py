from __future__ import annotations

import logging
import os
import time
from typing import Any

import orjson

# Attributes every LogRecord carries; only caller-supplied extras are emitted.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RECORD_ATTRS or key in payload:
                continue
            try:
                orjson.dumps(value)
                payload[key] = value
            except orjson.JSONEncodeError:
                payload[key] = repr(value)
        return orjson.dumps(payload).decode()


def configure_logging(level: str = "INFO", timezone: str | None = None) -> None:
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level.upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    tz = timezone or os.getenv("TZ")
    if tz and hasattr(time, "tzset"):
        os.environ["TZ"] = tz
        time.tzset()
