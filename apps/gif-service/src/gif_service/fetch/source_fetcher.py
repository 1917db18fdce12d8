"""
Source fetcher for upstream videos.

Opens one streaming GET per conversion with httpx and hands the body to the
pipeline as a lazy, one-shot async iterator. Nothing is buffered to disk and
at most one chunk is held in memory at a time.

No retries: a single failed attempt fails the conversion.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx

from gif_service.config.settings import ServiceSettings
from gif_service.logging_config import get_logger
from gif_service.models.errors import UpstreamError, classify_fetch_error

logger = get_logger(__name__)


def build_http_client(settings: ServiceSettings) -> httpx.AsyncClient:
    """Create the shared upstream HTTP client.

    Args:
        settings: Service settings with timeouts and pool limits

    Returns:
        Configured httpx.AsyncClient (caller owns and closes it)
    """
    timeout = httpx.Timeout(
        connect=settings.connect_timeout_s,
        read=settings.read_timeout_s,
        write=settings.write_timeout_s,
        pool=settings.pool_timeout_s,
    )
    limits = httpx.Limits(max_connections=settings.max_upstream_connections)
    return httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        follow_redirects=settings.follow_redirects,
        headers={"User-Agent": "fastgif/0.1"},
    )


class SourceStream:
    """Body of an open upstream response.

    Attributes:
        url: Source URL
        status_code: Upstream HTTP status
        content_type: Upstream Content-Type header, if any
        bytes_read: Body bytes handed out so far
    """

    def __init__(self, url: str, response: httpx.Response, chunk_size: int) -> None:
        self.url = url
        self._response = response
        self._chunk_size = chunk_size
        self._consumed = False
        self._closed = False
        self.bytes_read = 0

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def content_type(self) -> str | None:
        return self._response.headers.get("content-type")

    @property
    def content_length(self) -> int | None:
        value = self._response.headers.get("content-length")
        return int(value) if value and value.isdigit() else None

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield body chunks of at most chunk_size bytes.

        Can be iterated only once.

        Raises:
            RuntimeError: If iterated twice or after close
            httpx.HTTPError: On transport failure mid-body
        """
        if self._consumed:
            raise RuntimeError(f"Source stream for {self.url} was already consumed")
        if self._closed:
            raise RuntimeError(f"Source stream for {self.url} is closed")
        self._consumed = True

        async for chunk in self._response.aiter_bytes(self._chunk_size):
            self.bytes_read += len(chunk)
            yield chunk

    async def aclose(self) -> None:
        """Release the upstream connection (idempotent)."""
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class SourceFetcher:
    """Opens streaming reads of upstream videos.

    The fetcher does not own the HTTP client; the application lifespan does.
    """

    def __init__(self, client: httpx.AsyncClient, chunk_size: int = 65_536) -> None:
        self._client = client
        self._chunk_size = chunk_size

    async def open(self, url: str) -> SourceStream:
        """Send the GET and return the body stream once a 2xx status arrived.

        Args:
            url: Validated source URL

        Returns:
            SourceStream positioned at the start of the body

        Raises:
            UpstreamUnavailable: Connection or DNS failure
            UpstreamError: Non-2xx status
            UpstreamTimeout: Timeout while connecting or waiting for headers
        """
        request = self._client.build_request("GET", url)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            error = classify_fetch_error(e)
            logger.warning("upstream_open_failed", url=url, error=error.message)
            raise error from e

        if not response.is_success:
            await response.aclose()
            logger.warning("upstream_rejected", url=url, status_code=response.status_code)
            raise UpstreamError(response.status_code)

        logger.info(
            "upstream_opened",
            url=url,
            status_code=response.status_code,
            content_type=response.headers.get("content-type"),
            content_length=response.headers.get("content-length"),
        )
        return SourceStream(url, response, self._chunk_size)
