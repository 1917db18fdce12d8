"""
Byte-copy primitives for the three pipe links.

Every copy moves at most one transfer buffer at a time and suspends on the
destination (StreamWriter.drain() or an awaited sink write) before reading
more, so the slowest consumer throttles the whole chain. When its source is
exhausted a copy closes its destination's write end; that is how end-of-input
reaches the next stage.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class ByteSink(Protocol):
    """Destination of the final link (the HTTP response body)."""

    async def write(self, chunk: bytes) -> None:
        ...


@dataclass
class LinkStats:
    """Progress of one link."""

    bytes_copied: int = 0
    chunks: int = 0
    eof: bool = False

    def add(self, chunk: bytes) -> None:
        self.bytes_copied += len(chunk)
        self.chunks += 1


async def close_writer(writer: asyncio.StreamWriter) -> None:
    """Close a stage's stdin and wait until the pipe is released."""
    if writer.is_closing():
        return
    writer.close()
    await writer.wait_closed()


async def copy_source_to_stage(
    chunks: AsyncIterable[bytes],
    writer: asyncio.StreamWriter,
    stats: LinkStats,
) -> int:
    """Link a: upstream body -> first stage stdin.

    Returns:
        Bytes copied
    """
    async for chunk in chunks:
        if not chunk:
            continue
        writer.write(chunk)
        await writer.drain()
        stats.add(chunk)
    stats.eof = True
    await close_writer(writer)
    return stats.bytes_copied


async def copy_stage_to_stage(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    stats: LinkStats,
    chunk_size: int = 65_536,
    close_on_eof: bool = True,
) -> int:
    """Link b: stage stdout -> next stage stdin.

    Args:
        close_on_eof: Close the writer at EOF. Pass False when the caller
            decides whether EOF is a clean end of input.

    Returns:
        Bytes copied
    """
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            break
        writer.write(chunk)
        await writer.drain()
        stats.add(chunk)
    stats.eof = True
    if close_on_eof:
        await close_writer(writer)
    return stats.bytes_copied


async def copy_stage_to_sink(
    reader: asyncio.StreamReader,
    sink: ByteSink,
    stats: LinkStats,
    chunk_size: int = 65_536,
) -> int:
    """Link c: final stage stdout -> response sink.

    The sink has no write end to close; the response streamer finishes the
    body once the whole pipeline is done.

    Returns:
        Bytes copied
    """
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            break
        await sink.write(chunk)
        stats.add(chunk)
    stats.eof = True
    return stats.bytes_copied
