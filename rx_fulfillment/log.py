"""
Logging setup for the server entry point.
JSON lines on stdout in production, plain text when LOG_JSON is off.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from rx_fulfillment.config import settings


class JSONFormatter(logging.Formatter):
    """Structured JSON log output for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_JSON if json_output is None else json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.root.handlers = [handler]
    logging.root.setLevel((level or settings.LOG_LEVEL).upper())
