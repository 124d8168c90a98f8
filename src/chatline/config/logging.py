"""Logging setup: text or JSON output, with credential redaction."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any, Dict, Optional

from chatline.utils.validation import sanitize_log_message

# Attributes copied from ``extra=`` into structured output. The request
# middleware sets the HTTP ones; the orchestrator and hub set the rest.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_ip",
    "user_id",
    "turn_state",
    "connection_id",
)

_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access")


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class SanitizingFilter(logging.Filter):
    """Redact bearer tokens, API keys and passwords before a record is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = sanitize_log_message(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                sanitize_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, stamped with the record's own UTC time."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines; a user id, when present, is appended in brackets."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        user_id = getattr(record, "user_id", None)
        if user_id:
            line = f"{line} [user={user_id}]"
        return line


def configure_logging(
    level: str = "INFO",
    format: str = "text",
    sanitize_logs: bool = True,
    stream: Optional[IO[str]] = None,
) -> logging.Handler:
    """Install a single console handler on the root logger.

    Args:
        level: Log level name (case-insensitive).
        format: 'text' or 'json'.
        sanitize_logs: Redact credentials from every record.
        stream: Destination; defaults to stdout.

    Returns:
        The installed handler.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if format.lower() == "json" else TextFormatter())
    if sanitize_logs:
        handler.addFilter(SanitizingFilter())
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
