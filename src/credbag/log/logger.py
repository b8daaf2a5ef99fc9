"""Structured logging setup."""

import json
import logging
import os
import sys
import threading
from contextlib import suppress
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.types import EventDict

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "passphrase",
        "secret",
        "token",
        "key",
        "credential",
        "api_key",
        "ciphertext",
        "plaintext",
        "secret_access_key",
        "session_token",
        "private_key",
    }
)

_logger_lock = threading.Lock()


def create_secure_handler(
    log_path: Path, max_bytes: int, backup_count: int
) -> RotatingFileHandler:
    """Create a RotatingFileHandler with restrictive permissions.

    Args:
        log_path: Path to the log file
        max_bytes: Maximum size of each log file
        backup_count: Number of backup files to keep

    Returns:
        Configured RotatingFileHandler instance
    """
    os.makedirs(log_path.parent, mode=0o750, exist_ok=True)

    # Ensure file exists since some platforms need it for permissions
    if not log_path.exists():
        log_path.touch(mode=0o640)
    os.chmod(log_path, 0o640)

    return RotatingFileHandler(
        str(log_path), maxBytes=max_bytes, backupCount=backup_count
    )


def add_timestamp(
    _: structlog.BoundLogger, __: str, event_dict: EventDict
) -> EventDict:
    """Add ISO 8601 timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def sanitize_keys(
    event_dict: dict[str, Any], sensitive_keys: frozenset[str] = SENSITIVE_KEYS
) -> dict[str, Any]:
    """Redact sensitive keys, case-insensitively and through nested structures.

    Args:
        event_dict: Dictionary to sanitize
        sensitive_keys: Key names to redact

    Returns:
        Sanitized copy of the dictionary
    """
    lowered = {k.lower() for k in sensitive_keys}

    def _sanitize_value(key: str, value: Any) -> Any:
        if key.lower() in lowered:
            return "***"
        if isinstance(value, dict):
            return sanitize_keys(value, sensitive_keys)
        if isinstance(value, list):
            return [_sanitize_value("", item) for item in value]
        return value

    return {k: _sanitize_value(k, v) for k, v in event_dict.items()}


def sanitize_event_dict(
    _: structlog.BoundLogger, __: str, event_dict: EventDict
) -> EventDict:
    """Mask sensitive values before rendering."""
    return sanitize_keys(dict(event_dict))


class StructuredJsonFormatter(logging.Formatter):
    """JSON-lines formatter for the log file.

    Records emitted through structlog already carry a JSON message; its
    fields are merged into the record instead of being nested as a string.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
        }

        message = record.getMessage()
        try:
            event = json.loads(message)
        except json.JSONDecodeError:
            event = None
        if isinstance(event, dict):
            log_data.update(event)
        else:
            log_data["event"] = message

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(
    *,
    debug: bool = False,
    log_file: Optional[Path] = None,
    max_log_size: int = 10 * 1024 * 1024,
    backup_count: int = 3,
) -> structlog.BoundLogger:
    """Configure structlog over the standard library logging module.

    Warnings and errors go to stderr (everything when ``debug`` is set);
    when ``log_file`` is given, records are also appended to it as JSON lines.

    Args:
        debug: Log at DEBUG level and echo debug records to stderr.
        log_file: Optional rotating log file.
        max_log_size: Maximum size of a log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        A logger bound to the ``credbag`` namespace.
    """

    with _logger_lock:
        _reset()

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                add_timestamp,
                sanitize_event_dict,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        root_logger.addHandler(console_handler)

        if log_file is not None:
            file_handler = create_secure_handler(Path(log_file), max_log_size, backup_count)
            file_handler.setFormatter(StructuredJsonFormatter())
            root_logger.addHandler(file_handler)

    return structlog.get_logger("credbag")


def _reset() -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        with suppress(OSError, ValueError):
            handler.close()
        root_logger.removeHandler(handler)
    structlog.reset_defaults()


def reset_logging() -> None:
    """Remove installed handlers and restore structlog defaults. Idempotent."""
    with _logger_lock:
        _reset()
