"""Logging setup and configuration."""

import logging
import secrets
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "urllib3",
    "aiohttp",
    "aiohttp.access",
    "aiohttp.client",
    "asyncio",
]


def setup_logging(
    name: str = "mixpanel_export",
    level: int = DEFAULT_CONSOLE_LEVEL,
    json_format: bool = False,
    log_file: Path | None = None,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
) -> logging.Logger:
    """
    Configure root logging for an export run.

    Console output always goes to stderr so stdout stays free for exported
    records. An optional log file gets JSON lines with time-based rotation.

    Args:
        name: Logger name to return
        level: Console handler level (default: INFO)
        json_format: Use JSONFormatter on the console instead of ConsoleFormatter
        log_file: Optional path for a rotating JSON log file
        file_level: File handler level (default: DEBUG)
        rotation_when: When to rotate the log file (default: midnight)
        backup_count: Number of rotated files to keep (default: 7)
        suppress_noisy: Quiet down HTTP client loggers

    Returns:
        Configured logger instance
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter(stream=sys.stderr))
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_file,
            when=rotation_when,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"operation": "setup_logging", "state": f"file={log_file}, json={json_format}"},
    )
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def generate_export_id() -> str:
    """
    Generate unique export call identifier.

    Format: x-YYYYMMDD-HHMMSS-XXXX where XXXX is random hex.

    Returns:
        Unique export ID string
    """
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    suffix = secrets.token_hex(2)
    return f"x-{ts}-{suffix}"
