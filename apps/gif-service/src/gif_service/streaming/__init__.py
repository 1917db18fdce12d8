"""
HTTP response streaming for conversions.

Components:
- ResponseStreamer: ASGI response that runs the pipeline and streams GIF bytes
- ResponseSink: ByteSink writing into the ASGI send channel
"""

from __future__ import annotations

from gif_service.streaming.response_streamer import (
    GIF_MEDIA_TYPE,
    ResponseSink,
    ResponseStreamer,
)

__all__ = [
    "GIF_MEDIA_TYPE",
    "ResponseSink",
    "ResponseStreamer",
]
