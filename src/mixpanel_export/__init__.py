"""
Mixpanel raw event export client.

Streams the raw export for a date range, routes each event to a worker for
its event type, and republishes the events enriched with ``product`` and
``event`` to an output sink.

Components:
    signing  - Query and MD5 request signature
    source   - HTTP GET of the export stream (aiohttp)
    decoding - Incremental JSON object decoder
    router   - Per-event-type fan-out with backpressure and draining
    worker   - Enrichment and serialization for one event type
    sinks    - Output destinations (queue, file/stdout, in-memory)
    client   - MixpanelExportClient tying it all together

Example:
    async with MixpanelExportClient("app", api_key, api_secret) as client:
        sink = CollectingSink()
        stats = await client.export_date(date(2024, 1, 1), sink)
"""

from mixpanel_export.client import MixpanelExportClient
from mixpanel_export.decoding import JSONStreamDecoder
from mixpanel_export.router import EventRouter, ExportStats, RouterState
from mixpanel_export.schemas import ExportEvent, enrich
from mixpanel_export.signing import Query, SignedQuery, compute_signature, sign
from mixpanel_export.sinks import CollectingSink, OutputSink, QueueSink, StreamSink
from mixpanel_export.source import ExportSource
from mixpanel_export.worker import EventWorker

__version__ = "0.1.0"

__all__ = [
    "MixpanelExportClient",
    "ExportSource",
    "EventRouter",
    "EventWorker",
    "ExportStats",
    "RouterState",
    "ExportEvent",
    "enrich",
    "Query",
    "SignedQuery",
    "sign",
    "compute_signature",
    "JSONStreamDecoder",
    "OutputSink",
    "QueueSink",
    "StreamSink",
    "CollectingSink",
]
