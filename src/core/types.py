"""
Core types used across modules.

This module provides base types and enums that are
shared across the core library and the export client.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    The export client never retries on its own; the category is surfaced so a
    host process can decide whether to re-run an export call.

    Categories:
        TRANSIENT: Temporary failures that may succeed on a later attempt
                   (e.g., network timeouts, 429/503 errors)
        AUTH: Authentication failures (e.g., 401, bad signature, expired query)
        PERMANENT: Failures that won't succeed on retry
                   (e.g., 400/404, corrupt response stream, bad configuration)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
