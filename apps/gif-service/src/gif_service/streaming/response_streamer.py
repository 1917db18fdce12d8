"""
Response streamer: the HTTP body of a conversion.

An ASGI response that runs the pipeline coordinator with itself as the byte
sink. Headers are committed lazily:

- First encode chunk: 200 + image/gif headers are sent, then every chunk is
  relayed as it arrives (more_body=True), never buffered.
- Failure before the first byte: the result's status with a short plain-text
  diagnostic replaces the image.
- Failure after the first byte: no valid framing is left to signal it, so
  StreamAbortedError is raised and the ASGI server drops the connection.
- Client disconnect: detected from receive() or from a failing send(), and
  reported to the coordinator as an IO failure on the encode->client link.
  Nothing more is sent to a client that is gone.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

from starlette.background import BackgroundTask
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from gif_service.logging_config import bind_request_context, get_logger
from gif_service.models.errors import ClientDisconnected, StreamAbortedError
from gif_service.models.request import ConversionRequest
from gif_service.models.result import PipelineResult, PipeLink
from gif_service.pipeline.coordinator import PipelineCoordinator

logger = get_logger(__name__)

GIF_MEDIA_TYPE = "image/gif"


class ResponseSink:
    """ByteSink that writes encode output into the ASGI send channel.

    Attributes:
        started: True once http.response.start was sent
        disconnected: True once the client is known to be gone
        bytes_sent: Body bytes handed to the server
    """

    def __init__(self, send: Send, start_message: Message) -> None:
        self._send = send
        self._start_message = start_message
        self.started = False
        self.disconnected = False
        self.bytes_sent = 0

    async def start(self) -> None:
        if self.started:
            return
        await self._checked_send(self._start_message)
        self.started = True

    async def write(self, chunk: bytes) -> None:
        if self.disconnected:
            raise ClientDisconnected()
        await self.start()
        await self._checked_send(
            {"type": "http.response.body", "body": chunk, "more_body": True}
        )
        self.bytes_sent += len(chunk)

    async def finish(self) -> None:
        await self.start()
        await self._checked_send({"type": "http.response.body", "body": b"", "more_body": False})

    async def _checked_send(self, message: Message) -> None:
        try:
            await self._send(message)
        except OSError as e:
            # uvicorn raises ClientDisconnected (an OSError) once the peer is gone
            self.disconnected = True
            raise ClientDisconnected(str(e) or "client disconnected") from e


class ResponseStreamer(Response):
    """Streamed GIF response driven by a PipelineCoordinator."""

    media_type = GIF_MEDIA_TYPE

    def __init__(
        self,
        coordinator: PipelineCoordinator,
        conversion: ConversionRequest,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        background: BackgroundTask | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.conversion = conversion
        self.status_code = status_code
        self.background = background
        self.result: PipelineResult | None = None
        self._log = bind_request_context(logger, conversion.request_id, conversion.source_url)

        merged = {"x-request-id": conversion.request_id}
        merged.update(headers or {})
        self.init_headers(merged)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        sink = ResponseSink(
            send,
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            },
        )
        watcher = asyncio.create_task(self._watch_disconnect(receive, sink))
        try:
            result = await self.coordinator.run(self.conversion, sink)
        finally:
            watcher.cancel()
            await asyncio.wait({watcher})

        self.result = result
        await self._complete(result, sink, send)

        if self.background is not None:
            await self.background()

    async def _watch_disconnect(self, receive: Receive, sink: ResponseSink) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                sink.disconnected = True
                self.coordinator.abort(PipeLink.ENCODE_TO_CLIENT, ClientDisconnected())
                return

    async def _complete(self, result: PipelineResult, sink: ResponseSink, send: Send) -> None:
        if result.ok:
            try:
                await sink.finish()
            except ClientDisconnected:
                self._log.info("client_gone_at_finish", bytes_sent=sink.bytes_sent)
                return
            self._log.info("response_complete", bytes_sent=sink.bytes_sent)
            return

        if sink.disconnected:
            self._log.info("client_gone", bytes_sent=sink.bytes_sent, reason=result.reason)
            return

        if sink.started:
            self._log.warning(
                "response_aborted_after_flush",
                bytes_sent=sink.bytes_sent,
                outcome=result.outcome.value,
                reason=result.reason,
            )
            raise StreamAbortedError(
                f"Conversion failed after {sink.bytes_sent} bytes were sent: {result.reason}"
            )

        body = f"Failed to process video: {result.reason}\n".encode("utf-8")
        self._log.warning(
            "response_error", status_code=result.http_status, reason=result.reason
        )
        try:
            await send(
                {
                    "type": "http.response.start",
                    "status": result.http_status,
                    "headers": [
                        (b"content-type", b"text/plain; charset=utf-8"),
                        (b"content-length", str(len(body)).encode("latin-1")),
                        (b"x-request-id", self.conversion.request_id.encode("latin-1")),
                    ],
                }
            )
            await send({"type": "http.response.body", "body": body, "more_body": False})
        except OSError as e:
            self._log.info("client_gone_before_error_response", error=str(e))
