"""Tests for the event router."""

import asyncio
import json
import random

import pytest

from core.errors.exceptions import SinkWriteError, StreamDecodeError, TransportError
from mixpanel_export.router import EventRouter, ExportStats, RouterState
from mixpanel_export.sinks import CollectingSink, QueueSink

SCENARIO = [
    {"event": "signup", "properties": {"distinct_id": "u1"}},
    {"event": "purchase", "properties": {"distinct_id": "u1", "amount": 10}},
    {"event": "signup", "properties": {"distinct_id": "u2"}},
]


def ndjson(records):
    return "".join(json.dumps(r) + "\n" for r in records).encode("utf-8")


async def chunked(data: bytes, size: int = 16):
    for i in range(0, len(data), size):
        yield data[i : i + size]


def outputs(sink: CollectingSink):
    return [json.loads(line) for line in sink.lines()]


class GatedSink(CollectingSink):
    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def write(self, record: bytes) -> None:
        await self.gate.wait()
        await super().write(record)


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_signup_purchase_scenario(self):
        sink = CollectingSink()
        router = EventRouter("app", sink)

        stats = await router.run(chunked(ndjson(SCENARIO)))

        records = outputs(sink)
        signups = [r for r in records if r["event"] == "signup"]
        purchases = [r for r in records if r["event"] == "purchase"]
        assert [r["distinct_id"] for r in signups] == ["u1", "u2"]
        assert all(r["product"] == "app" for r in records)
        assert purchases == [{"distinct_id": "u1", "amount": 10, "product": "app", "event": "purchase"}]

        assert stats.records_read == 3
        assert stats.records_emitted == 3
        assert stats.per_event == {"signup": 2, "purchase": 1}
        assert router.state is RouterState.CLOSED

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        sink = CollectingSink()
        stats = await EventRouter("app", sink).run(chunked(b""))

        assert sink.records == []
        assert stats == ExportStats()

    @pytest.mark.asyncio
    async def test_n_in_n_out_with_per_type_order(self):
        rng = random.Random(7)
        events = ["signup", "purchase", "login", "logout"]
        records = [
            {"event": rng.choice(events), "properties": {"distinct_id": "u", "seq": i}}
            for i in range(500)
        ]
        sink = CollectingSink()

        stats = await EventRouter("app", sink, queue_maxsize=3).run(chunked(ndjson(records), 37))

        out = outputs(sink)
        assert len(out) == 500
        assert sorted(r["seq"] for r in out) == list(range(500))
        for name in events:
            expected = [r["properties"]["seq"] for r in records if r["event"] == name]
            assert [r["seq"] for r in out if r["event"] == name] == expected
            assert stats.per_event.get(name, 0) == len(expected)
        assert stats.records_dispatched == 500

    @pytest.mark.asyncio
    async def test_reserved_fields_always_win(self):
        sink = CollectingSink()
        records = [{"event": "signup", "properties": {"product": "web", "event": "x", "distinct_id": "u"}}]

        stats = await EventRouter("app", sink).run(chunked(ndjson(records)))

        assert outputs(sink)[0]["product"] == "app"
        assert outputs(sink)[0]["event"] == "signup"
        assert stats.fields_overwritten == 2

    @pytest.mark.asyncio
    async def test_queue_sink(self):
        queue: asyncio.Queue = asyncio.Queue()
        await EventRouter("app", QueueSink(queue)).run(chunked(ndjson(SCENARIO)))

        assert queue.qsize() == 3


class TestInvalidRecords:
    @pytest.mark.asyncio
    async def test_missing_event_is_reported_and_skipped(self, caplog):
        records = [
            {"properties": {"distinct_id": "u1"}},
            {"event": "", "properties": {}},
            {"event": "signup", "properties": ["not", "a", "dict"]},
            {"event": "signup", "properties": {"distinct_id": "u2"}},
        ]
        sink = CollectingSink()

        stats = await EventRouter("app", sink).run(chunked(ndjson(records)))

        assert [r["distinct_id"] for r in outputs(sink)] == ["u2"]
        assert stats.records_read == 4
        assert stats.records_invalid == 3
        assert stats.records_emitted == 1
        warnings = [r for r in caplog.records if r.getMessage() == "Skipping invalid export record"]
        assert len(warnings) == 3
        assert "event" in warnings[0].validation_errors

    @pytest.mark.asyncio
    async def test_missing_distinct_id_counted_but_emitted(self):
        records = [{"event": "signup", "properties": {}}, {"event": "signup", "properties": {"distinct_id": ""}}]
        sink = CollectingSink()

        stats = await EventRouter("app", sink).run(chunked(ndjson(records)))

        assert len(sink) == 2
        assert stats.records_missing_distinct_id == 2
        assert stats.records_invalid == 0

    @pytest.mark.asyncio
    async def test_require_distinct_id_skips(self):
        records = [{"event": "signup", "properties": {}}, {"event": "signup", "properties": {"distinct_id": "u"}}]
        sink = CollectingSink()

        stats = await EventRouter("app", sink, require_distinct_id=True).run(chunked(ndjson(records)))

        assert len(sink) == 1
        assert stats.records_missing_distinct_id == 1
        assert stats.records_invalid == 1

    @pytest.mark.asyncio
    async def test_unserializable_record_isolated(self):
        data = (
            b'{"event":"signup","properties":{"v":1}}\n'
            b'{"event":"signup","properties":{"v":NaN}}\n'
            b'{"event":"signup","properties":{"v":3}}\n'
        )
        sink = CollectingSink()

        stats = await EventRouter("app", sink).run(chunked(data))

        assert [r["v"] for r in outputs(sink)] == [1, 3]
        assert stats.records_failed == 1
        assert stats.summary() == "read=3 emitted=2 failed=1 | signup=2"


class TestStreamFailures:
    @pytest.mark.asyncio
    async def test_decode_error_after_delivering_earlier_records(self, caplog):
        data = ndjson(SCENARIO) + b'{"event": broken}\n' + ndjson(SCENARIO)
        sink = CollectingSink()
        router = EventRouter("app", sink)

        with pytest.raises(StreamDecodeError) as exc_info:
            await router.run(chunked(data, 8))

        assert len(sink) == 3
        assert exc_info.value.offset == len(ndjson(SCENARIO))
        assert router.state is RouterState.CLOSED
        assert router.stats.records_emitted == 3
        aborted = [r for r in caplog.records if r.getMessage().startswith("Export stream aborted")]
        assert aborted[0].levelname == "ERROR"
        assert aborted[0].error_category == "permanent"

    @pytest.mark.asyncio
    async def test_truncated_tail_raises(self):
        data = ndjson(SCENARIO) + b'{"event":"signup","prop'
        sink = CollectingSink()

        with pytest.raises(StreamDecodeError, match="truncated"):
            await EventRouter("app", sink).run(chunked(data))

        assert len(sink) == 3

    @pytest.mark.asyncio
    async def test_transport_error_mid_stream(self):
        async def failing():
            yield ndjson(SCENARIO[:2])
            raise TransportError("connection reset")

        sink = CollectingSink()
        with pytest.raises(TransportError):
            await EventRouter("app", sink).run(failing())

        assert len(sink) == 2

    @pytest.mark.asyncio
    async def test_source_closed_when_reading_stops(self):
        closed = asyncio.Event()

        async def source():
            try:
                yield b'{"event":"a"}\n'
                yield b"garbage\n"
                yield b'{"event":"b"}\n'
            finally:
                closed.set()

        with pytest.raises(StreamDecodeError):
            await EventRouter("app", CollectingSink()).run(source())

        assert closed.is_set()

    @pytest.mark.asyncio
    async def test_worker_sink_failure_raises(self):
        class BrokenSink:
            async def write(self, record):
                raise OSError("broken pipe")

        router = EventRouter("app", BrokenSink())

        with pytest.raises(SinkWriteError) as exc_info:
            await router.run(chunked(ndjson(SCENARIO)))

        assert isinstance(exc_info.value.cause, OSError)
        assert router.state is RouterState.CLOSED

    @pytest.mark.asyncio
    async def test_dead_worker_with_full_queue_does_not_deadlock(self):
        class SlowThenBroken:
            def __init__(self):
                self.gate = asyncio.Event()

            async def write(self, record):
                await self.gate.wait()
                raise OSError("broken pipe")

        sink = SlowThenBroken()
        records = [{"event": "signup", "properties": {"n": i}} for i in range(50)]
        run = asyncio.create_task(EventRouter("app", sink, queue_maxsize=1).run(chunked(ndjson(records))))
        await asyncio.sleep(0.01)
        assert not run.done()

        sink.gate.set()
        with pytest.raises(SinkWriteError):
            await asyncio.wait_for(run, timeout=2)


class TestBackpressure:
    @pytest.mark.asyncio
    async def test_router_stops_reading_when_queue_full(self):
        pulled = 0

        async def source():
            nonlocal pulled
            for i in range(10):
                pulled += 1
                yield json.dumps({"event": "signup", "properties": {"n": i}}).encode() + b"\n"

        sink = GatedSink()
        router = EventRouter("app", sink, queue_maxsize=1)
        run = asyncio.create_task(router.run(source()))

        for _ in range(20):
            await asyncio.sleep(0)
        # One record held by the worker in the sink, one queued, one waiting to enqueue
        assert pulled == 3
        assert router.state is RouterState.STREAMING

        sink.gate.set()
        stats = await asyncio.wait_for(run, timeout=2)

        assert pulled == 10
        assert [r["n"] for r in outputs(sink)] == list(range(10))
        assert stats.records_emitted == 10


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_all_workers(self):
        sink = GatedSink()
        records = [
            {"event": name, "properties": {"n": i}}
            for i in range(5)
            for name in ("signup", "purchase", "login")
        ]
        router = EventRouter("app", sink, queue_maxsize=0)
        run = asyncio.create_task(router.run(chunked(ndjson(records))))
        await asyncio.sleep(0.01)

        worker_tasks = [t for t in asyncio.all_tasks() if t.get_name().startswith("event-worker:")]
        assert {t.get_name() for t in worker_tasks} == {
            "event-worker:signup",
            "event-worker:purchase",
            "event-worker:login",
        }

        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run

        assert all(t.done() for t in worker_tasks)
        assert all(t.cancelled() for t in worker_tasks)
        assert router.state is RouterState.CLOSED
        assert sink.records == []

    @pytest.mark.asyncio
    async def test_timeout_cancels_workers(self):
        sink = GatedSink()
        router = EventRouter("app", sink)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(router.run(chunked(ndjson(SCENARIO))), timeout=0.05)

        assert not [t for t in asyncio.all_tasks() if t.get_name().startswith("event-worker:")]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_cannot_run_twice(self):
        router = EventRouter("app", CollectingSink())
        await router.run(chunked(b""))

        with pytest.raises(RuntimeError, match="twice"):
            await router.run(chunked(b""))

    @pytest.mark.asyncio
    async def test_submit_requires_streaming(self):
        router = EventRouter("app", CollectingSink())
        with pytest.raises(RuntimeError, match="idle"):
            await router.submit({"event": "signup"})

        await router.run(chunked(b""))
        with pytest.raises(RuntimeError, match="closed"):
            await router.submit({"event": "signup"})

    @pytest.mark.asyncio
    async def test_state_transitions_logged(self, caplog):
        with caplog.at_level("DEBUG", logger="mixpanel_export.router"):
            await EventRouter("app", CollectingSink()).run(chunked(ndjson(SCENARIO)))

        transitions = [r.state for r in caplog.records if r.getMessage() == "Router state change"]
        assert transitions == ["idle->streaming", "streaming->draining", "draining->closed"]

    @pytest.mark.asyncio
    async def test_registry_discarded_after_close(self):
        router = EventRouter("app", CollectingSink())
        await router.run(chunked(ndjson(SCENARIO)))
        assert router.event_types == []

    def test_stats_to_dict(self):
        stats = ExportStats(records_read=2, per_event={"a": 2})
        assert stats.to_dict()["per_event"] == {"a": 2}
        assert stats.event_types == 1
