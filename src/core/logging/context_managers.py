"""Context managers for structured logging."""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from core.logging.context import get_log_context, set_log_context
from core.logging.utilities import log_exception, log_with_context

_CONTEXT_FIELDS = ("export_id", "stage", "worker_id", "product", "event_type")


class LogContext:
    """
    Scope log context fields to a block, restoring the previous values on exit.

    Only fields passed with a value are changed; the rest keep whatever the
    enclosing scope set.

    Usage:
        with LogContext(export_id=generate_export_id(), stage="router", product="app"):
            await router.run(chunks)
    """

    def __init__(self, **fields: Optional[str]):
        unknown = set(fields) - set(_CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        self.fields = {k: v for k, v in fields.items() if v is not None}
        self._saved: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self._saved = get_log_context()
        set_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**self._saved)
        return False


class OperationContext:
    """
    Times a block and logs one line when it ends.

    Outcome decides the message: ``Completed``, ``Failed`` (any Exception,
    logged via log_exception so ExportError categories are kept) or
    ``Cancelled`` (CancelledError, KeyboardInterrupt). When a
    ``records_read`` count is present in the context, the completion line
    also carries ``records_per_second``.
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.DEBUG,
        slow_threshold_ms: Optional[float] = 1000.0,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.slow_threshold_ms = slow_threshold_ms
        self.context = context
        self._started: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        return (time.perf_counter() - self._started) * 1000

    def add_context(self, **kwargs: Any) -> None:
        """Attach counts learned while the operation runs."""
        self.context.update(kwargs)

    def __enter__(self) -> "OperationContext":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = round(self.elapsed_ms, 2)
        fields = {"duration_ms": duration_ms, "operation": self.operation, **self.context}

        if isinstance(exc_val, Exception):
            log_exception(self.logger, exc_val, f"Failed: {self.operation}", **fields)
            return False

        if exc_val is not None:
            log_with_context(self.logger, logging.WARNING, f"Cancelled: {self.operation}", **fields)
            return False

        level = self.level
        if self.slow_threshold_ms is not None and duration_ms > self.slow_threshold_ms:
            level = max(level, logging.INFO)

        records = self.context.get("records_read")
        if isinstance(records, int) and duration_ms > 0:
            fields["records_per_second"] = round(records / (duration_ms / 1000), 1)

        log_with_context(self.logger, level, f"Completed: {self.operation}", **fields)
        return False


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation: str,
    level: int = logging.DEBUG,
    slow_threshold_ms: Optional[float] = 1000.0,
    **context: Any,
):
    """Convenience wrapper around OperationContext."""
    with OperationContext(
        logger, operation, level=level, slow_threshold_ms=slow_threshold_ms, **context
    ) as op:
        yield op
