"""
Record schemas for the Mixpanel raw export stream.

Each line of an export response is one event:

    {"event": "signup", "properties": {"distinct_id": "u1", "time": 1700000000, ...}}

ExportEvent validates that shape; enrich() builds the outbound record.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

PRODUCT_KEY = "product"
EVENT_KEY = "event"


class ExportEvent(BaseModel):
    """Schema for one raw event decoded from the export stream.

    Attributes:
        event: Event-type identifier used for routing (non-empty)
        properties: Arbitrary JSON-compatible event properties

    Unknown top-level keys are ignored. A missing or null ``properties``
    becomes an empty mapping; a non-object ``properties`` is invalid.

    Example:
        >>> ev = ExportEvent.model_validate({"event": "signup", "properties": {"distinct_id": "u1"}})
        >>> ev.event
        'signup'
    """

    model_config = ConfigDict(extra="ignore")

    event: str = Field(..., description="Event type (e.g., signup, purchase)", min_length=1)
    properties: dict[str, Any] = Field(default_factory=dict, description="Event properties")

    @field_validator("event")
    @classmethod
    def validate_event_name(cls, v: str) -> str:
        """Reject whitespace-only event names; keep the name otherwise verbatim."""
        if not v.strip():
            raise ValueError("event cannot be empty or whitespace")
        return v

    @field_validator("properties", mode="before")
    @classmethod
    def default_missing_properties(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def distinct_id(self) -> Any:
        return self.properties.get("distinct_id")


def enrich(event: ExportEvent, product: str) -> tuple[dict[str, Any], list[str]]:
    """
    Build the outbound record: properties plus ``product`` and ``event``.

    Reserved keys always win over same-named properties. The names that were
    overwritten with a different value are returned so callers can report
    the clobber.

    Returns:
        (enriched record, overwritten key names)
    """
    record = dict(event.properties)
    overwritten = [
        key
        for key, value in ((PRODUCT_KEY, product), (EVENT_KEY, event.event))
        if key in record and record[key] != value
    ]
    record[PRODUCT_KEY] = product
    record[EVENT_KEY] = event.event
    return record, overwritten


__all__ = [
    "ExportEvent",
    "enrich",
    "PRODUCT_KEY",
    "EVENT_KEY",
]
