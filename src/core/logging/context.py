"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_export_id: ContextVar[str] = ContextVar("export_id", default="")
_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_product: ContextVar[str] = ContextVar("product", default="")
_event_type: ContextVar[str] = ContextVar("event_type", default="")


def set_log_context(
    export_id: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
    product: Optional[str] = None,
    event_type: Optional[str] = None,
) -> None:
    if export_id is not None:
        _export_id.set(export_id)
    if stage is not None:
        _stage_name.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if product is not None:
        _product.set(product)
    if event_type is not None:
        _event_type.set(event_type)


def get_log_context() -> Dict[str, str]:
    return {
        "export_id": _export_id.get(),
        "stage": _stage_name.get(),
        "worker_id": _worker_id.get(),
        "product": _product.get(),
        "event_type": _event_type.get(),
    }


def clear_log_context() -> None:
    _export_id.set("")
    _stage_name.set("")
    _worker_id.set("")
    _product.set("")
    _event_type.set("")
