"""Error taxonomy for the conversion pipeline.

Failures are grouped by where they happen:
- Fetch errors: the upstream video could not be opened
- Stage errors: an external stage could not start or exited non-zero
- IO errors: a pipe link broke independent of process exit

The coordinator turns these into a PipelineResult; the exceptions themselves
never reach the HTTP layer, except StreamAbortedError which is raised on
purpose to drop a committed response.
"""

from __future__ import annotations

from enum import Enum

import httpx


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # Fetch errors
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"

    # Stage errors
    SPAWN_FAILED = "SPAWN_FAILED"
    STAGE_FAILED = "STAGE_FAILED"

    # Link errors
    IO_FAILED = "IO_FAILED"
    CLIENT_DISCONNECTED = "CLIENT_DISCONNECTED"

    @property
    def default_message(self) -> str:
        """Get default human-readable message for this error code."""
        return ERROR_MESSAGES.get(self, f"Error: {self.value}")


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.UPSTREAM_UNAVAILABLE: "Source video host could not be reached",
    ErrorCode.UPSTREAM_ERROR: "Source video request was rejected",
    ErrorCode.UPSTREAM_TIMEOUT: "Source video request timed out",
    ErrorCode.SPAWN_FAILED: "Conversion stage could not be started",
    ErrorCode.STAGE_FAILED: "Conversion stage exited with an error",
    ErrorCode.IO_FAILED: "Data transfer between stages failed",
    ErrorCode.CLIENT_DISCONNECTED: "Client disconnected",
}


class ConversionError(Exception):
    """Base class for conversion pipeline failures."""

    code: ErrorCode = ErrorCode.IO_FAILED
    http_status: int = 500

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.code.default_message
        super().__init__(self.message)


class FetchError(ConversionError):
    """The source video could not be opened."""

    http_status = 502


class UpstreamUnavailable(FetchError):
    """Connection or DNS failure reaching the source host."""

    code = ErrorCode.UPSTREAM_UNAVAILABLE


class UpstreamError(FetchError):
    """The source host answered with a non-2xx status."""

    code = ErrorCode.UPSTREAM_ERROR

    def __init__(self, status_code: int, message: str | None = None) -> None:
        self.status_code = status_code
        super().__init__(message or f"Upstream responded with HTTP {status_code}")
        # A missing or forbidden source is the client's problem, not ours
        self.http_status = 404 if 400 <= status_code < 500 else 502


class UpstreamTimeout(FetchError):
    """Connect, read or pool timeout while opening the source."""

    code = ErrorCode.UPSTREAM_TIMEOUT
    http_status = 504


class SpawnFailed(ConversionError):
    """A stage process could not be created."""

    code = ErrorCode.SPAWN_FAILED
    http_status = 503

    def __init__(self, stage: str, reason: str) -> None:
        self.stage = stage
        self.reason = reason
        super().__init__(f"Failed to spawn {stage} stage: {reason}")


class StageFailed(ConversionError):
    """A stage started but exited with a non-zero status."""

    code = ErrorCode.STAGE_FAILED

    def __init__(self, stage: str, exit_status: int, detail: str | None = None) -> None:
        self.stage = stage
        self.exit_status = exit_status
        message = f"{stage} stage failed with exit code {exit_status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class IOFailed(ConversionError):
    """A pipe link broke independent of process exit."""

    code = ErrorCode.IO_FAILED

    def __init__(self, link: str, cause: BaseException | str) -> None:
        self.link = getattr(link, "value", link)
        self.cause = cause
        if isinstance(cause, BaseException):
            detail = str(cause) or type(cause).__name__
        else:
            detail = cause
        super().__init__(f"Pipe {self.link} failed: {detail}")


class ClientDisconnected(ConnectionError):
    """The HTTP client went away while the response was streaming."""

    def __init__(self, message: str = "client disconnected") -> None:
        super().__init__(message)


class StreamAbortedError(RuntimeError):
    """Raised after the first byte was flushed to make the server drop the connection."""


def classify_fetch_error(exception: Exception) -> FetchError:
    """Map an httpx exception raised while opening the source to a FetchError.

    Args:
        exception: Exception from httpx (or the OS)

    Returns:
        The corresponding FetchError
    """
    if isinstance(exception, FetchError):
        return exception
    if isinstance(exception, httpx.TimeoutException):
        return UpstreamTimeout(f"Upstream timed out: {type(exception).__name__}")
    if isinstance(exception, httpx.HTTPStatusError):
        return UpstreamError(exception.response.status_code)
    if isinstance(exception, (httpx.TransportError, OSError)):
        message = str(exception) if str(exception) else type(exception).__name__
        return UpstreamUnavailable(f"Upstream unavailable: {message}")
    message = str(exception) if str(exception) else type(exception).__name__
    return UpstreamUnavailable(f"Upstream request failed: {message}")
