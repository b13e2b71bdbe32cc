"""
HTTP record source for the Mixpanel raw export endpoint.

Opens ``GET <base_url>/2.0/export`` with a signed query and exposes the
response body as an async iterator of byte chunks. Decoding happens
downstream so that the body is never held in memory as a whole.
"""

import logging
from collections.abc import AsyncIterator

import aiohttp

from core.errors.exceptions import TransportError, classify_http_status
from core.types import ErrorCategory
from mixpanel_export.signing import SignedQuery

logger = logging.getLogger(__name__)

EXPORT_PATH = "/2.0/export"

# Response body kept on errors, enough for Mixpanel's {"error": ...} payloads
ERROR_BODY_LIMIT = 500

DEFAULT_CHUNK_SIZE = 64 * 1024


class ExportSource:
    """
    Streams the raw export response for one signed query.

    Uses the given aiohttp session, or creates one per request and closes it
    when the stream ends. Connect and socket-read timeouts apply to every
    request; there is no total timeout since a day of events can take a
    long time to transfer.
    """

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession | None = None,
        connect_timeout_seconds: float = 30.0,
        read_timeout_seconds: float = 300.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self.connect_timeout_seconds = connect_timeout_seconds
        self.read_timeout_seconds = read_timeout_seconds
        self.chunk_size = chunk_size
        self.bytes_read = 0

    @property
    def url(self) -> str:
        return f"{self.base_url}{EXPORT_PATH}"

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=None,
            sock_connect=self.connect_timeout_seconds,
            sock_read=self.read_timeout_seconds,
        )

    async def iter_chunks(self, query: SignedQuery) -> AsyncIterator[bytes]:
        """
        Yield the export response body in chunks of at most ``chunk_size``.

        The response (and an owned session) is released when iteration
        finishes, fails, or the generator is closed early.

        Raises:
            TransportError: Non-200 status, connection failure, socket read
                timeout, or a failure while the body is streaming.
        """
        session = self._session
        owns_session = session is None
        if owns_session:
            session = aiohttp.ClientSession()

        self.bytes_read = 0
        logger.debug(
            "Opening export stream",
            extra={"api_endpoint": self.url, "http_method": "GET", "chunk_size": self.chunk_size},
        )
        try:
            async with session.get(
                self.url, params=query.to_pairs(), timeout=self._timeout()
            ) as response:
                if response.status != 200:
                    raise await self._status_error(response)

                async for chunk in response.content.iter_chunked(self.chunk_size):
                    self.bytes_read += len(chunk)
                    yield chunk

            logger.debug(
                "Export stream finished",
                extra={"api_endpoint": self.url, "bytes_read": self.bytes_read},
            )
        except aiohttp.ClientError as e:
            raise TransportError(
                f"Export request failed: {e}",
                category=ErrorCategory.TRANSIENT,
                cause=e,
                context={"api_endpoint": self.url, "bytes_read": self.bytes_read},
            ) from e
        except TimeoutError as e:
            raise TransportError(
                f"Export stream timed out (no data for {self.read_timeout_seconds}s)",
                category=ErrorCategory.TRANSIENT,
                cause=e,
                context={"api_endpoint": self.url, "bytes_read": self.bytes_read},
            ) from e
        finally:
            if owns_session:
                await session.close()

    async def _status_error(self, response: aiohttp.ClientResponse) -> TransportError:
        try:
            body = (await response.text())[:ERROR_BODY_LIMIT]
        except (aiohttp.ClientError, UnicodeDecodeError) as e:
            body = f"<unreadable body: {e}>"

        category = classify_http_status(response.status)
        logger.warning(
            "Export request rejected",
            extra={
                "api_endpoint": self.url,
                "http_status": response.status,
                "error_category": category.value,
                "response_body": body,
            },
        )
        return TransportError(
            f"Export request failed with HTTP {response.status}",
            status_code=response.status,
            category=category,
            context={"api_endpoint": self.url, "response_body": body},
        )


__all__ = ["ExportSource", "EXPORT_PATH", "ERROR_BODY_LIMIT", "DEFAULT_CHUNK_SIZE"]
