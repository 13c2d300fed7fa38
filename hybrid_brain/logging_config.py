"""
Logging setup for the CLI and the API server.

Console output goes to stderr so command output on stdout stays parseable.
With a ``log_dir`` two rotating files are added: a plain-text log and a
JSON-lines log carrying the structured fields (subsystem, source, event,
latency) attached through ``extra``.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

STRUCTURED_FIELDS = ("subsystem", "agent_id", "source", "event", "latency_ms")

TEXT_LOG = "hybrid_brain.log"
JSON_LOG = "hybrid_brain.json.log"

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    found = {}
    for name in STRUCTURED_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            found[name] = value
    found.update(getattr(record, "data", None) or {})
    return found


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    """``HH:MM:SS.mmm LEVL [subsystem] message (1.2ms)``, optionally coloured."""

    def __init__(self, color: bool = False):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        where = getattr(record, "subsystem", None) or record.name.rsplit(".", 1)[-1]
        text = f"{stamp} {record.levelname[:4]} [{where}]"

        source = getattr(record, "source", None)
        if source:
            text += f" src={source}"
        text += f": {record.getMessage()}"

        latency = getattr(record, "latency_ms", None)
        if latency is not None:
            text += f" ({latency:.1f}ms)"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)

        if self.color:
            text = f"{_LEVEL_COLORS.get(record.levelno, '')}{text}\033[0m"
        return text


class BrainLogger(logging.LoggerAdapter):
    """Adapter adding ``event`` and ``latency`` helpers on top of a module logger."""

    def process(self, msg, kwargs):
        return msg, kwargs

    def event(self, event: str, msg: str, subsystem: Optional[str] = None, **data) -> None:
        self.info(msg, extra={"event": event, "subsystem": subsystem, "data": data})

    def latency(
        self,
        operation: str,
        latency_ms: float,
        subsystem: Optional[str] = None,
        source: Optional[str] = None,
        **data,
    ) -> None:
        if not self.isEnabledFor(logging.DEBUG):
            return
        self.debug(
            f"{operation} completed",
            extra={
                "subsystem": subsystem,
                "source": source,
                "latency_ms": round(latency_ms, 3),
                "data": data,
            },
        )


def get_logger(name: str) -> BrainLogger:
    return BrainLogger(logging.getLogger(name), {})


def _rotating(path: str, formatter: logging.Formatter, max_bytes: int, backups: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Replace the root handlers with a stderr handler and, if ``log_dir`` is
    given, the rotating text and JSON files.

    Unknown level names fall back to INFO.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(HumanFormatter(color=sys.stderr.isatty()))
    root.addHandler(console)

    if not log_dir:
        return

    os.makedirs(log_dir, exist_ok=True)
    root.addHandler(_rotating(os.path.join(log_dir, TEXT_LOG), HumanFormatter(), max_bytes, backup_count))
    root.addHandler(_rotating(os.path.join(log_dir, JSON_LOG), JSONFormatter(), max_bytes, backup_count))
    logging.getLogger(__name__).debug(f"File logging enabled in {log_dir}")
