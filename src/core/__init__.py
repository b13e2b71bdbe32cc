"""
Core library: reusable, transport-agnostic components.

Modules:
    errors   - Error classification and exception hierarchy
    logging  - Structured JSON logging with export context propagation
    utils    - JSON serialization helpers

Design Principles:
    - No dependencies on the export domain package
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
