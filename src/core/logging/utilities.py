"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
    }
)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (event_type, duration_ms, etc.)
                  Note: exc_info=True is supported and handled specially.

    Example:
        log_with_context(
            logger, logging.INFO, "Export complete",
            records_emitted=stats.records_emitted,
            duration_ms=elapsed,
        )
    """
    exc_info = kwargs.pop("exc_info", None)

    # Filter out reserved keys to prevent LogRecord conflicts
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from ExportError subclasses.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields

    Example:
        try:
            await sink.write(payload)
        except OSError as e:
            log_exception(logger, e, "Sink write failed", event_type=event)
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def format_export_summary(
    records_read: int,
    records_emitted: int,
    records_invalid: int = 0,
    records_failed: int = 0,
    per_event: dict[str, int] | None = None,
) -> str:
    """
    Format a one-line export summary.

    Example:
        >>> format_export_summary(3, 3, per_event={"signup": 2, "purchase": 1})
        'read=3 emitted=3 | purchase=1, signup=2'
        >>> format_export_summary(5, 3, records_invalid=1, records_failed=1)
        'read=5 emitted=3 invalid=1 failed=1'
    """
    parts = [f"read={records_read}", f"emitted={records_emitted}"]
    if records_invalid > 0:
        parts.append(f"invalid={records_invalid}")
    if records_failed > 0:
        parts.append(f"failed={records_failed}")

    summary = " ".join(parts)
    if per_event:
        breakdown = ", ".join(f"{name}={count}" for name, count in sorted(per_event.items()))
        summary = f"{summary} | {breakdown}"
    return summary
