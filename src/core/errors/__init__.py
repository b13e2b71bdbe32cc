"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- ExportError hierarchy for typed exceptions
- HTTP status classification
"""

from core.errors.exceptions import (
    ConfigurationError,
    # Enums
    ErrorCategory,
    # Base classes
    ExportError,
    PermanentError,
    SinkWriteError,
    StreamDecodeError,
    TransportError,
    # Classification utilities
    classify_http_status,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "ExportError",
    "PermanentError",
    # Export errors
    "TransportError",
    "StreamDecodeError",
    "SinkWriteError",
    "ConfigurationError",
    # Classification utilities
    "classify_http_status",
]
