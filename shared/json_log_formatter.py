"""
JSON Log Formatter - Structured logging for file output.

Produces one JSON object per line, compatible with log aggregation tools.
Console output stays human-readable (text format).

Each log line includes:
  - ts: Unix timestamp
  - level: DEBUG/INFO/WARNING/ERROR/CRITICAL
  - logger: Logger name
  - msg: Log message
  - cache_key / tick / route_type / batch_size: when passed via ``extra=``
"""
from __future__ import annotations

import json
import logging
import traceback

CONTEXT_FIELDS = ("cache_key", "tick", "route_type", "batch_size")


class JsonLogFormatter(logging.Formatter):
    """Structured JSON formatter for log file output."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": round(record.created, 3),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        # Add exception info if present
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "msg": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(entry, ensure_ascii=False, default=str)
