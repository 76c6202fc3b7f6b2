"""
Central logging configuration.

Level comes from LOG_LEVEL (default INFO). Set LOG_JSON=1 for single-line
JSON records. Modules log through getLogger(__name__); keep usernames and
passwords out of messages.
"""
from __future__ import annotations

import json
import logging
import sys
from typing import Any

from folio.config import settings


def _json_serial(obj: Any) -> str:
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_serial)


def configure_logging(level_name: str | None = None, use_json: bool | None = None) -> None:
    """Configure the root logger once per process."""
    level_name = (level_name or settings.log_level or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    if use_json is None:
        use_json = settings.log_json

    root = logging.getLogger()
    root.setLevel(level)
    # Avoid duplicate handlers when reloading
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("yfinance").setLevel(logging.WARNING)
