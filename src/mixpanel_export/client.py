"""Async client for the Mixpanel raw event export API."""

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from datetime import date, datetime

import aiohttp

from config.config import DEFAULT_BASE_URL, ExportConfig
from core.errors.exceptions import TransportError
from core.logging.context_managers import LogContext
from core.logging.setup import generate_export_id
from core.types import ErrorCategory
from mixpanel_export.router import EventRouter, ExportStats
from mixpanel_export.signing import SIGNATURE_PARAM, Query, sign
from mixpanel_export.sinks import OutputSink, as_sink
from mixpanel_export.source import DEFAULT_CHUNK_SIZE, ExportSource

logger = logging.getLogger(__name__)

# Set by the client after caller extras are applied
_PROTECTED_PARAMS = frozenset({"start", "end", SIGNATURE_PARAM})


def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


class MixpanelExportClient:
    """
    Streams raw events for a date range and republishes them enriched with
    ``product`` and ``event``.

    The client may be used as an async context manager, in which case it
    owns one aiohttp session for all of its export calls. Otherwise each
    call opens and closes its own session, unless one is passed in.

    Example:
        async with MixpanelExportClient("app", key, secret) as client:
            queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=100)
            stats = await client.export_date(date(2024, 1, 1), queue)
    """

    def __init__(
        self,
        product: str,
        api_key: str,
        api_secret: str,
        base_url: str = DEFAULT_BASE_URL,
        *,
        expire_seconds: int = 10000,
        connect_timeout_seconds: float = 30.0,
        read_timeout_seconds: float = 300.0,
        export_timeout_seconds: float | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        queue_maxsize: int = 1000,
        require_distinct_id: bool = False,
        session: aiohttp.ClientSession | None = None,
    ):
        self.config = ExportConfig(
            product=product,
            api_key=api_key,
            api_secret=api_secret,
            base_url=(base_url or DEFAULT_BASE_URL).rstrip("/"),
            expire_seconds=expire_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
            read_timeout_seconds=read_timeout_seconds,
            export_timeout_seconds=export_timeout_seconds,
            chunk_size=chunk_size,
            queue_maxsize=queue_maxsize,
            require_distinct_id=require_distinct_id,
        )
        self.config.validate()

        self._session = session
        self._owns_session = False
        self._closed = False

    @classmethod
    def from_config(
        cls, config: ExportConfig, session: aiohttp.ClientSession | None = None
    ) -> "MixpanelExportClient":
        return cls(
            config.product,
            config.api_key,
            config.api_secret,
            config.base_url,
            expire_seconds=config.expire_seconds,
            connect_timeout_seconds=config.connect_timeout_seconds,
            read_timeout_seconds=config.read_timeout_seconds,
            export_timeout_seconds=config.export_timeout_seconds,
            chunk_size=config.chunk_size,
            queue_maxsize=config.queue_maxsize,
            require_distinct_id=config.require_distinct_id,
            session=session,
        )

    @property
    def product(self) -> str:
        return self.config.product

    @property
    def base_url(self) -> str:
        return self.config.base_url

    async def __aenter__(self) -> "MixpanelExportClient":
        if self._closed:
            raise RuntimeError("MixpanelExportClient is closed")
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        self._closed = True
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None
            self._owns_session = False

    def make_args(self) -> Query:
        """
        Base query for an export request: format, api_key and expire.

        ``expire`` is a unix timestamp ``expire_seconds`` from now; the server
        rejects the signed query after that.
        """
        query = Query()
        query.set("format", "json")
        query.set("api_key", self.config.api_key)
        query.set("expire", int(time.time()) + self.config.expire_seconds)
        return query

    def build_query(
        self,
        start: date | str,
        end: date | str,
        extra_params: Mapping[str, str | Iterable[str]] | None = None,
    ) -> Query:
        start_day, end_day = _as_date(start), _as_date(end)
        if end_day < start_day:
            raise ValueError(f"end date {end_day} is before start date {start_day}")

        query = self.make_args()
        if extra_params:
            ignored = sorted(name for name in extra_params if name in _PROTECTED_PARAMS)
            if ignored:
                logger.warning(
                    "Ignoring extra params managed by the client",
                    extra={"extra_params": ignored},
                )
            query.update(
                {name: value for name, value in extra_params.items() if name not in _PROTECTED_PARAMS}
            )
        query.set("start", start_day.isoformat())
        query.set("end", end_day.isoformat())
        return query

    async def export_date(
        self,
        day: date | str,
        sink: "OutputSink | asyncio.Queue[bytes]",
        extra_params: Mapping[str, str | Iterable[str]] | None = None,
    ) -> ExportStats:
        """
        Export one calendar day of raw events into ``sink``.

        Args:
            day: Date to export (date or YYYY-MM-DD)
            sink: OutputSink, or an asyncio.Queue the caller reads from
            extra_params: Additional query parameters, e.g. ``{"event": ["signup"]}``

        Returns:
            ExportStats for the call

        Raises:
            TransportError: Request rejected or stream failed
            StreamDecodeError: Response was not a sequence of JSON objects
            SinkWriteError: Sink rejected a record
        """
        return await self.export_range(day, day, sink, extra_params)

    async def export_range(
        self,
        start: date | str,
        end: date | str,
        sink: "OutputSink | asyncio.Queue[bytes]",
        extra_params: Mapping[str, str | Iterable[str]] | None = None,
    ) -> ExportStats:
        """Export every day from ``start`` to ``end`` (inclusive) in one request."""
        if self._closed:
            raise RuntimeError("MixpanelExportClient is closed")

        query = self.build_query(start, end, extra_params)
        signed = sign(query, self.config.api_secret)
        output = as_sink(sink)

        source = ExportSource(
            self.config.base_url,
            session=self._session,
            connect_timeout_seconds=self.config.connect_timeout_seconds,
            read_timeout_seconds=self.config.read_timeout_seconds,
            chunk_size=self.config.chunk_size,
        )
        router = EventRouter(
            self.config.product,
            output,
            queue_maxsize=self.config.queue_maxsize,
            require_distinct_id=self.config.require_distinct_id,
        )

        with LogContext(export_id=generate_export_id(), stage="router", product=self.product):
            logger.info(
                "Starting export",
                extra={
                    "start_date": query.get("start"),
                    "end_date": query.get("end"),
                    "extra_params": sorted(extra_params) if extra_params else None,
                },
            )

            stats = await self._run(router, source.iter_chunks(signed))

            logger.info(
                f"Export complete: {stats.summary()}",
                extra={
                    "records_read": stats.records_read,
                    "records_emitted": stats.records_emitted,
                    "records_invalid": stats.records_invalid,
                    "records_failed": stats.records_failed,
                    "records_missing_distinct_id": stats.records_missing_distinct_id,
                    "fields_overwritten": stats.fields_overwritten,
                    "bytes_read": source.bytes_read,
                },
            )
        return stats

    async def _run(self, router: EventRouter, chunks) -> ExportStats:
        deadline = self.config.export_timeout_seconds
        if deadline is None:
            return await router.run(chunks)
        try:
            return await asyncio.wait_for(router.run(chunks), timeout=deadline)
        except TimeoutError as e:
            raise TransportError(
                f"Export did not finish within {deadline}s",
                category=ErrorCategory.TRANSIENT,
                cause=e,
                context={"records_read": router.stats.records_read},
            ) from e


__all__ = ["MixpanelExportClient"]
