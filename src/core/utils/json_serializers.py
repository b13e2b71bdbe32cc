"""Shared JSON serialization utilities for type-safe JSON encoding."""

import json
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any


def _serialize_known_type(obj: Any) -> tuple[bool, Any]:
    """Try to serialize by known type. Returns (handled, result)."""
    if isinstance(obj, (datetime, date)):
        return True, obj.isoformat()
    if isinstance(obj, Decimal):
        return True, float(obj)
    if isinstance(obj, Path):
        return True, str(obj)
    if isinstance(obj, (set, frozenset)):
        return True, sorted(obj, key=str)
    return False, None


def json_serializer(obj: Any) -> Any:
    """
    Lenient JSON serializer for log records.

    Keeps numeric and temporal types meaningful instead of converting
    everything to strings:
    - datetime/date → ISO 8601 string
    - Decimal → float
    - Path → string
    - set → sorted list
    - Enums → value
    - Everything else → string (fallback)

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation
    """
    handled, result = _serialize_known_type(obj)
    if handled:
        return result
    if hasattr(obj, "value"):
        return obj.value
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


def dumps_record(record: dict[str, Any]) -> bytes:
    """
    Serialize one output record as a newline-terminated UTF-8 JSON line.

    Strict on purpose: NaN/Infinity and unknown types raise ValueError or
    TypeError instead of being coerced, so a record that cannot be
    represented as standard JSON is reported rather than emitted corrupted.
    """
    line = json.dumps(record, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    return line.encode("utf-8") + b"\n"


__all__ = ["json_serializer", "dumps_record"]
