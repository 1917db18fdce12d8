"""
Pytest fixtures for gif-service tests.

Includes fixtures for:
- Service settings
- Stand-in stages (small Python scripts run with sys.executable)
- Fake upstream fetcher and source streams
- Byte sinks (recording, stalled, failing)
- FastAPI test client with dependency overrides
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable, Generator, Iterable
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from gif_service.api.convert import get_source_fetcher, get_stage_executor
from gif_service.config.settings import ServiceSettings, get_settings, reset_settings
from gif_service.main import create_app
from gif_service.models.errors import ClientDisconnected, FetchError
from gif_service.models.request import ConversionRequest
from gif_service.pipeline.stage_executor import StageExecutor
from gif_service.pipeline.stages import DECODE_STAGE, ENCODE_STAGE, StageSpec

# =============================================================================
# Stand-in stage scripts
# =============================================================================

_COPY_LOOP = """
while True:
    chunk = sys.stdin.buffer.read1(65536)
    if not chunk:
        break
    sys.stdout.buffer.write(chunk)
    sys.stdout.buffer.flush()
"""

STAGE_SCRIPTS: dict[str, str] = {
    # stdin -> stdout unchanged
    "copy": "import sys\n" + _COPY_LOOP,
    # GIF header, then stdin -> stdout
    "gif": "import sys\nsys.stdout.buffer.write(b'GIF89a')\nsys.stdout.buffer.flush()\n"
    + _COPY_LOOP,
    # exits 1 without reading stdin
    "fail": "import sys\nsys.stderr.write('stage exploded\\n')\nsys.exit(1)\n",
    # sends a GIF header, consumes stdin, then exits 3
    "gif_then_fail": (
        "import sys\n"
        "sys.stdout.buffer.write(b'GIF89a')\n"
        "sys.stdout.buffer.flush()\n"
        "sys.stdin.buffer.read()\n"
        "sys.exit(3)\n"
    ),
    # consumes stdin, writes nothing, exits 0
    "silent": "import sys\nsys.stdin.buffer.read()\n",
    # reads one chunk, emits partial frames, exits 1 with stdin still open
    "frames_then_fail": (
        "import sys\n"
        "sys.stdin.buffer.read1(65536)\n"
        "sys.stdout.buffer.write(b'frames')\n"
        "sys.stdout.buffer.flush()\n"
        "sys.exit(1)\n"
    ),
    # writes nothing until end of input, then a GIF header and the input
    "gif_at_eof": (
        "import sys\n"
        "data = sys.stdin.buffer.read()\n"
        "sys.stdout.buffer.write(b'GIF89a' + data)\n"
    ),
}


@pytest.fixture
def python_stage() -> Callable[..., StageSpec]:
    """Build a StageSpec running one of STAGE_SCRIPTS with the current interpreter.

    Usage:
        def test_something(python_stage):
            decode = python_stage(DECODE_STAGE, "copy")
    """

    def _make(name: str, script: str, final: bool = False) -> StageSpec:
        return StageSpec(
            name=name,
            executable=sys.executable,
            args=("-c", STAGE_SCRIPTS[script]),
            final=final,
        )

    return _make


@pytest.fixture
def passthrough_specs(python_stage) -> tuple[StageSpec, StageSpec]:
    """Decode copies its input, encode prefixes a GIF header."""
    return (
        python_stage(DECODE_STAGE, "copy"),
        python_stage(ENCODE_STAGE, "gif", final=True),
    )


@pytest.fixture
def missing_executable_spec() -> StageSpec:
    """A stage whose executable does not exist."""
    return StageSpec(name=ENCODE_STAGE, executable="/nonexistent/fastgif-encoder", final=True)


@pytest.fixture
def executor() -> StageExecutor:
    """StageExecutor logging stderr with a short tail."""
    return StageExecutor(stderr_mode="log", stderr_tail_lines=5, stream_limit=65_536)


# =============================================================================
# Settings and requests
# =============================================================================


@pytest.fixture
def settings() -> Generator[ServiceSettings, None, None]:
    """Default settings, independent of the process environment."""
    reset_settings()
    yield ServiceSettings(port=3000, log_level="INFO", max_concurrent_conversions=0)
    reset_settings()


@pytest.fixture
def conversion() -> ConversionRequest:
    """Request for a video on the default upstream."""
    return ConversionRequest(
        source_url="https://video.twimg.com/tweet_video/abc123.mp4",
        request_id="test-request-1",
    )


@pytest.fixture
def video_bytes() -> bytes:
    """Deterministic stand-in video payload (256 KiB)."""
    return bytes(range(256)) * 1024


# =============================================================================
# Fake upstream
# =============================================================================


class FakeSourceStream:
    """In-memory replacement for SourceStream."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks = chunks
        self.bytes_read = 0
        self.closed = False

    async def iter_chunks(self):
        for chunk in self._chunks:
            self.bytes_read += len(chunk)
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class PausingSourceStream(FakeSourceStream):
    """FakeSourceStream that stalls for `pause` seconds between chunks."""

    def __init__(self, chunks: Iterable[bytes], pause: float) -> None:
        super().__init__(chunks)
        self.pause = pause

    async def iter_chunks(self):
        for index, chunk in enumerate(self._chunks):
            if index:
                await asyncio.sleep(self.pause)
            self.bytes_read += len(chunk)
            yield chunk


class FakeFetcher:
    """Replacement for SourceFetcher serving one canned source or error."""

    def __init__(
        self,
        source: FakeSourceStream | None = None,
        error: FetchError | None = None,
    ) -> None:
        self.source = source
        self.error = error
        self.opened: list[str] = []

    async def open(self, url: str) -> FakeSourceStream:
        self.opened.append(url)
        if self.error is not None:
            raise self.error
        assert self.source is not None
        return self.source


def chunked(data: bytes, size: int = 16_384) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


def endless_source(chunk_size: int = 65_536, limit: int = 256 * 1024 * 1024):
    """Generator producing far more data than any pipe can hold."""
    chunk = b"\x00" * chunk_size
    produced = 0
    while produced < limit:
        produced += chunk_size
        yield chunk


@pytest.fixture
def make_fetcher() -> Callable[..., FakeFetcher]:
    """Factory for FakeFetcher instances.

    Usage:
        fetcher = make_fetcher(data=b"...")
        fetcher = make_fetcher(error=UpstreamError(404))
        fetcher = make_fetcher(endless=True)
        fetcher = make_fetcher(data=b"...", pause=5.0)
    """

    def _make(
        data: bytes | None = None,
        error: FetchError | None = None,
        endless: bool = False,
        pause: float | None = None,
    ) -> FakeFetcher:
        if error is not None:
            return FakeFetcher(error=error)
        if pause is not None:
            return FakeFetcher(source=PausingSourceStream(chunked(data or b""), pause))
        if endless:
            return FakeFetcher(source=FakeSourceStream(endless_source()))
        return FakeFetcher(source=FakeSourceStream(chunked(data or b"")))

    return _make


# =============================================================================
# Sinks
# =============================================================================


class RecordingSink:
    """ByteSink keeping every chunk it receives."""

    def __init__(self) -> None:
        self.chunks: list[bytes] = []

    async def write(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


class StalledSink:
    """ByteSink whose first write never completes until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.bytes_offered = 0

    async def write(self, chunk: bytes) -> None:
        self.bytes_offered += len(chunk)
        await self.release.wait()


class FailingSink:
    """ByteSink for a client that is already gone."""

    def __init__(self) -> None:
        self.attempts = 0

    async def write(self, chunk: bytes) -> None:
        self.attempts += 1
        raise ClientDisconnected("connection reset by peer")


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def stalled_sink() -> StalledSink:
    return StalledSink()


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


# =============================================================================
# FastAPI Test Client
# =============================================================================


@pytest.fixture
def make_client(settings, executor, passthrough_specs) -> Generator[Callable[..., TestClient], None, None]:
    """Build a TestClient whose fetcher and stages are replaced.

    Usage:
        def test_something(make_client, make_fetcher):
            client = make_client(make_fetcher(data=b"..."))
            response = client.get("/tweet_video/abc.mp4")
    """
    patches = []

    def _make(fetcher: FakeFetcher, specs: tuple[StageSpec, StageSpec] | None = None) -> TestClient:
        app = create_app(settings)
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_source_fetcher] = lambda: fetcher
        app.dependency_overrides[get_stage_executor] = lambda: executor

        stage_patch = patch(
            "gif_service.api.convert.build_stage_specs",
            return_value=specs or passthrough_specs,
        )
        stage_patch.start()
        patches.append(stage_patch)
        return TestClient(app)

    yield _make

    for stage_patch in patches:
        stage_patch.stop()
