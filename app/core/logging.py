"""Logging setup shared by the API process.

``APP_LOG_FORMAT=json`` switches to one JSON object per
line; the default is a compact human-readable format.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        file_id = getattr(record, "file_id", None)
        if file_id:
            entry["file_id"] = file_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class HumanFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("[%(levelname)s] %(asctime)s | %(name)s | %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        file_id = getattr(record, "file_id", None)
        if file_id:
            message = f"{message} [file_id={file_id}]"
        return message


def setup_logging(level: Optional[str] = None, format_type: Optional[str] = None) -> None:
    """Configure the root logger once at startup."""
    log_level = (level or "INFO").upper()
    numeric_level = getattr(logging, log_level, logging.INFO)

    formatter: logging.Formatter
    if (format_type or "text").lower() == "json":
        formatter = JSONFormatter()
    else:
        formatter = HumanFormatter()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    logging.getLogger("multipart").setLevel(logging.WARNING)
    logging.getLogger(__name__).debug("Logging configured: level=%s, format=%s", log_level, format_type)
