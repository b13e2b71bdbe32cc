"""
Output sink abstractions for enriched export records.

Every event worker of one export call writes to the same sink, so a sink
must accept concurrent ``write`` calls and keep each record whole. Records
arrive already serialized: one UTF-8 JSON object terminated by ``\\n``.
"""

import asyncio
import logging
from typing import IO, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class OutputSink(Protocol):
    """
    Protocol for destinations of enriched records.

    Implementations must make each write atomic with respect to other
    writers: two concurrent calls never interleave their bytes.
    """

    async def write(self, record: bytes) -> None:
        """
        Write one serialized record.

        Args:
            record: Complete newline-terminated JSON record
        """
        ...


class QueueSink:
    """
    Sink that hands records to a caller-owned asyncio.Queue.

    The caller consumes from the queue while the export runs. A bounded
    queue pushes backpressure all the way to the HTTP read.
    """

    def __init__(self, queue: "asyncio.Queue[bytes]"):
        self.queue = queue
        self.records_written = 0

    async def write(self, record: bytes) -> None:
        await self.queue.put(record)
        self.records_written += 1


class StreamSink:
    """
    Sink that writes records to a binary file object.

    Blocking writes run in a thread so the event loop keeps reading the
    export stream. A lock keeps one record per write.

    Example:
        sink = StreamSink(sys.stdout.buffer)
        await client.export_date(date(2024, 1, 1), sink)
    """

    def __init__(self, stream: IO[bytes], flush: bool = True):
        self.stream = stream
        self.flush = flush
        self.records_written = 0
        self.bytes_written = 0
        self._lock = asyncio.Lock()

    async def write(self, record: bytes) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write_blocking, record)
            self.records_written += 1
            self.bytes_written += len(record)

    def _write_blocking(self, record: bytes) -> None:
        self.stream.write(record)
        if self.flush:
            self.stream.flush()


class CollectingSink:
    """Sink that keeps every record in memory, in arrival order."""

    def __init__(self) -> None:
        self.records: list[bytes] = []

    async def write(self, record: bytes) -> None:
        self.records.append(record)

    def lines(self) -> list[str]:
        return [record.decode("utf-8").rstrip("\n") for record in self.records]

    def __len__(self) -> int:
        return len(self.records)


def as_sink(target: "OutputSink | asyncio.Queue[bytes]") -> OutputSink:
    """Wrap a bare asyncio.Queue in a QueueSink; pass sinks through."""
    if isinstance(target, asyncio.Queue):
        return QueueSink(target)
    if not isinstance(target, OutputSink):
        raise TypeError(
            f"Export output must be an OutputSink or asyncio.Queue, got {type(target).__name__}"
        )
    return target


__all__ = [
    "OutputSink",
    "QueueSink",
    "StreamSink",
    "CollectingSink",
    "as_sink",
]
