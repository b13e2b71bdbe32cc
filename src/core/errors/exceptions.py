"""
Unified exception hierarchy for the export client.

Provides typed exceptions with category classification so a host process can
tell stream-level integrity failures apart from transient transport trouble.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class ExportError(Exception):
    """
    Base exception for all export errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Base categories
# =============================================================================


class PermanentError(ExportError):
    """Base class for permanent errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Export errors
# =============================================================================


class TransportError(ExportError):
    """
    The export request could not be made or failed mid-stream.

    Category depends on what went wrong, so it is set per instance rather
    than per class: HTTP status via classify_http_status, connection and
    timeout failures as TRANSIENT.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code
        self.category = category


class StreamDecodeError(PermanentError):
    """Response stream contained data that is not a sequence of JSON objects."""

    def __init__(
        self,
        message: str,
        offset: int | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.offset = offset
        if offset is not None:
            self.context.setdefault("offset", offset)


class SinkWriteError(ExportError):
    """Output sink rejected an enriched record."""

    def __init__(
        self,
        message: str,
        event_type: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.event_type = event_type


class ConfigurationError(PermanentError):
    """Missing or invalid client configuration."""

    pass


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code == 429:
        return ErrorCategory.TRANSIENT  # Rate limited

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN
