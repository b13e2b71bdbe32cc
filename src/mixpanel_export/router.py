"""
Event router: fans a decoded export stream out to per-event-type workers.

State machine:

    IDLE -> STREAMING -> DRAINING -> CLOSED

The router reads byte chunks, decodes them into events, validates each one
and hands it to the worker for its event type, spawning that worker on
first sight. At end of stream (or on a fatal stream error) every worker
queue is closed and every worker joined before the call returns, so no
write reaches the sink after run() finishes.
"""

import asyncio
import logging
from collections.abc import AsyncIterable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from core.errors.exceptions import ExportError
from core.logging.context_managers import log_operation
from core.logging.utilities import format_export_summary, log_exception
from mixpanel_export.decoding import JSONStreamDecoder
from mixpanel_export.schemas import ExportEvent
from mixpanel_export.sinks import OutputSink
from mixpanel_export.worker import EventWorker

logger = logging.getLogger(__name__)


class RouterState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass
class ExportStats:
    """
    Counters for one export call.

    ``records_read`` counts decoded JSON objects. Each of them ends up in
    exactly one of: emitted, invalid, failed (serialization), or lost with a
    fatal error.
    """

    records_read: int = 0
    records_dispatched: int = 0
    records_emitted: int = 0
    records_invalid: int = 0
    records_failed: int = 0
    records_missing_distinct_id: int = 0
    fields_overwritten: int = 0
    per_event: dict[str, int] = field(default_factory=dict)

    @property
    def event_types(self) -> int:
        return len(self.per_event)

    def summary(self) -> str:
        return format_export_summary(
            self.records_read,
            self.records_emitted,
            records_invalid=self.records_invalid,
            records_failed=self.records_failed,
            per_event=self.per_event,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _describe_validation_error(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'record'}: {err['msg']}"
        for err in e.errors()
    )


class EventRouter:
    """
    Routes one export stream to per-event-type workers.

    A router serves exactly one export call. The worker registry is owned by
    the task running run() and is discarded when the router closes.

    Args:
        product: Product name stamped on every output record
        sink: Shared output sink for all workers
        queue_maxsize: Per-event-type queue bound (0 = unbounded)
        require_distinct_id: Skip events without a distinct_id property
    """

    def __init__(
        self,
        product: str,
        sink: OutputSink,
        queue_maxsize: int = 1000,
        require_distinct_id: bool = False,
    ):
        self.product = product
        self.sink = sink
        self.queue_maxsize = queue_maxsize
        self.require_distinct_id = require_distinct_id

        self.state = RouterState.IDLE
        self.stats = ExportStats()
        self._workers: dict[str, EventWorker] = {}
        self._decoder = JSONStreamDecoder()

    @property
    def event_types(self) -> list[str]:
        """Event types with a live worker, in order of first sighting."""
        return list(self._workers)

    def _set_state(self, state: RouterState) -> None:
        logger.debug(
            "Router state change",
            extra={"state": f"{self.state.value}->{state.value}"},
        )
        self.state = state

    async def run(self, chunks: AsyncIterable[bytes]) -> ExportStats:
        """
        Consume the whole stream and return the call's statistics.

        Raises:
            StreamDecodeError: Malformed stream. Records accepted before the
                bad data have been delivered.
            TransportError: The source failed mid-stream.
            SinkWriteError: A worker could not write to the sink.
            asyncio.CancelledError: The call was cancelled; all workers were
                cancelled and awaited first.
        """
        if self.state is not RouterState.IDLE:
            raise RuntimeError(f"EventRouter cannot run twice (state={self.state.value})")

        logger.info(
            "Export stream started",
            extra={"queue_maxsize": self.queue_maxsize},
        )
        with log_operation(
            logger, "export_stream", level=logging.INFO, slow_threshold_ms=None
        ) as op:
            try:
                await self._run(chunks)
            finally:
                op.add_context(
                    records_read=self.stats.records_read,
                    records_emitted=self.stats.records_emitted,
                    records_invalid=self.stats.records_invalid,
                    records_failed=self.stats.records_failed,
                    event_types=self.stats.event_types,
                )
        return self.stats

    async def _run(self, chunks: AsyncIterable[bytes]) -> None:
        self._set_state(RouterState.STREAMING)
        failure: ExportError | None = None
        worker_error: BaseException | None = None
        try:
            try:
                await self._stream(chunks)
            except ExportError as e:
                failure = e
                log_exception(
                    logger,
                    e,
                    "Export stream aborted, draining accepted records",
                    include_traceback=False,
                    offset=self._decoder.offset,
                    records_read=self.stats.records_read,
                )

            self._set_state(RouterState.DRAINING)
            worker_error = await self._drain()
        except BaseException:
            await self._cancel_workers()
            raise
        finally:
            self._collect_worker_stats()
            self._workers.clear()
            self._set_state(RouterState.CLOSED)

        if failure is not None:
            raise failure
        if worker_error is not None:
            raise worker_error

    async def _stream(self, chunks: AsyncIterable[bytes]) -> None:
        try:
            async for chunk in chunks:
                for raw in self._decoder.feed(chunk):
                    await self.submit(raw)
            for raw in self._decoder.close():
                await self.submit(raw)
        finally:
            # Release the HTTP response as soon as reading stops
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    async def submit(self, raw: dict[str, Any]) -> bool:
        """
        Validate one decoded object and dispatch it to its event worker.

        Returns:
            True if the event was queued for output, False if it was skipped
            as invalid.

        Raises:
            RuntimeError: The router is not streaming.
            SinkWriteError: The target worker already died on a sink failure.
        """
        if self.state is not RouterState.STREAMING:
            raise RuntimeError(f"Cannot submit records while router is {self.state.value}")

        self.stats.records_read += 1
        try:
            event = ExportEvent.model_validate(raw)
        except ValidationError as e:
            self.stats.records_invalid += 1
            logger.warning(
                "Skipping invalid export record",
                extra={
                    "validation_errors": _describe_validation_error(e),
                    "records_invalid": self.stats.records_invalid,
                },
            )
            return False

        if event.distinct_id in (None, ""):
            self.stats.records_missing_distinct_id += 1
            if self.require_distinct_id:
                self.stats.records_invalid += 1
                logger.warning(
                    "Skipping export record without distinct_id",
                    extra={"event_type": event.event, "records_invalid": self.stats.records_invalid},
                )
                return False
            logger.debug("Export record has no distinct_id", extra={"event_type": event.event})

        worker = self._workers.get(event.event)
        if worker is None:
            worker = self._spawn_worker(event.event)
        await worker.submit(event)
        self.stats.records_dispatched += 1
        return True

    def _spawn_worker(self, event_type: str) -> EventWorker:
        worker = EventWorker(
            event_type=event_type,
            product=self.product,
            sink=self.sink,
            queue_maxsize=self.queue_maxsize,
        )
        worker.start()
        self._workers[event_type] = worker
        logger.debug(
            "Event worker created",
            extra={"event_type": event_type, "event_types": len(self._workers)},
        )
        return worker

    async def _drain(self) -> BaseException | None:
        """Close every queue, join every worker, return the first worker error."""
        workers = list(self._workers.values())
        for worker in workers:
            await worker.close()

        results = await asyncio.gather(*(w.task for w in workers), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        return errors[0] if errors else None

    async def _cancel_workers(self) -> None:
        tasks = [w.task for w in self._workers.values() if w.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("Event workers cancelled", extra={"event_types": len(tasks)})

    def _collect_worker_stats(self) -> None:
        for event_type, worker in self._workers.items():
            self.stats.records_emitted += worker.records_emitted
            self.stats.records_failed += worker.records_failed
            self.stats.fields_overwritten += worker.fields_overwritten
            self.stats.per_event[event_type] = worker.records_emitted


__all__ = ["EventRouter", "ExportStats", "RouterState"]
