"""
Per-event-type worker.

One EventWorker exists per distinct event type seen during an export call.
It owns a FIFO queue fed by the router, enriches each event with the
product and event name, and writes the serialized record to the shared
output sink.
"""

import asyncio
import logging

from core.errors.exceptions import SinkWriteError
from core.logging.context import set_log_context
from core.logging.utilities import log_exception
from core.utils.json_serializers import dumps_record
from mixpanel_export.schemas import ExportEvent, enrich
from mixpanel_export.sinks import OutputSink

logger = logging.getLogger(__name__)

# Queue sentinel: no more events will arrive
_CLOSED = object()


class EventWorker:
    """
    Consumes one event type's queue until it is closed and drained.

    Failure policy:
        - A record whose properties cannot be encoded as standard JSON
          (NaN, Infinity) is logged, counted in ``records_failed`` and
          skipped. The worker keeps going.
        - A sink failure ends the worker with SinkWriteError. The router
          notices on its next submit or when it drains.
    """

    def __init__(
        self,
        event_type: str,
        product: str,
        sink: OutputSink,
        queue_maxsize: int = 0,
    ):
        self.event_type = event_type
        self.product = product
        self.sink = sink
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_maxsize)
        self.task: asyncio.Task | None = None

        self.records_received = 0
        self.records_emitted = 0
        self.records_failed = 0
        self.fields_overwritten = 0
        self._closed = False

    @property
    def name(self) -> str:
        return f"event-worker:{self.event_type}"

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    def start(self) -> asyncio.Task:
        if self.task is not None:
            raise RuntimeError(f"{self.name} already started")
        self.task = asyncio.create_task(self.run(), name=self.name)
        return self.task

    async def submit(self, event: ExportEvent) -> None:
        """
        Enqueue an event, waiting while the queue is full.

        Raises:
            RuntimeError: The worker was closed or never started.
            SinkWriteError: The worker died on a sink failure.
        """
        if self._closed:
            raise RuntimeError(f"{self.name} is closed")
        if self.task is None:
            raise RuntimeError(f"{self.name} was not started")
        self._raise_if_dead()

        await self._put(event)
        self.records_received += 1

    async def close(self) -> None:
        """Signal that no more events will arrive. Safe to call on a dead worker."""
        if self._closed:
            return
        self._closed = True
        if self.is_running:
            await self._put(_CLOSED, watch=False)

    async def _put(self, item: object, watch: bool = True) -> None:
        if not self.queue.full():
            self.queue.put_nowait(item)
            return

        # Full queue: wait for space, but give up if the worker exits first so
        # a dead consumer cannot block the router forever.
        put_task = asyncio.create_task(self.queue.put(item))
        try:
            await asyncio.wait({put_task, self.task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not put_task.done():
                put_task.cancel()

        if put_task.done() and not put_task.cancelled():
            return
        if watch:
            self._raise_if_dead()

    def _raise_if_dead(self) -> None:
        if self.task is None or not self.task.done():
            return
        if self.task.cancelled():
            raise RuntimeError(f"{self.name} was cancelled")
        exc = self.task.exception()
        if exc is not None:
            raise exc
        raise RuntimeError(f"{self.name} exited before its queue was closed")

    async def run(self) -> None:
        # Runs in its own task, so this context stays local to the worker
        set_log_context(stage="worker", worker_id=self.name, event_type=self.event_type)
        logger.debug(
            "Event worker started",
            extra={"event_type": self.event_type, "queue_maxsize": self.queue.maxsize},
        )

        while True:
            item = await self.queue.get()
            if item is _CLOSED:
                break
            await self._process(item)

        logger.debug(
            "Event worker finished",
            extra={
                "event_type": self.event_type,
                "records_emitted": self.records_emitted,
                "records_failed": self.records_failed,
                "fields_overwritten": self.fields_overwritten,
            },
        )

    async def _process(self, event: ExportEvent) -> None:
        record, overwritten = enrich(event, self.product)
        if overwritten:
            self.fields_overwritten += len(overwritten)
            logger.debug(
                "Reserved fields overwritten in event properties",
                extra={"event_type": self.event_type, "overwritten_fields": overwritten},
            )

        try:
            payload = dumps_record(record)
        except (TypeError, ValueError) as e:
            self.records_failed += 1
            log_exception(
                logger,
                e,
                "Failed to serialize enriched record, skipping",
                include_traceback=False,
                event_type=self.event_type,
                records_failed=self.records_failed,
            )
            return

        try:
            await self.sink.write(payload)
        except Exception as e:
            raise SinkWriteError(
                f"Output sink failed writing {self.event_type!r} record",
                event_type=self.event_type,
                cause=e,
                context={"records_emitted": self.records_emitted},
            ) from e
        self.records_emitted += 1


__all__ = ["EventWorker"]
