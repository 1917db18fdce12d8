"""
Pipeline state and result models.

- PipeLink: the three byte-copy edges of a conversion
- PipelineState: coordinator state machine
- PipelineResult: terminal outcome of one conversion attempt
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from gif_service.models.errors import (
    ClientDisconnected,
    ErrorCode,
    FetchError,
    IOFailed,
    SpawnFailed,
    StageFailed,
)


class PipeLink(str, Enum):
    """Byte-copy edges between fetch, stages and client."""

    SOURCE_TO_DECODE = "source->decode"
    DECODE_TO_ENCODE = "decode->encode"
    ENCODE_TO_CLIENT = "encode->client"


class PipelineState(str, Enum):
    """Coordinator states.

    Transitions:
        idle -> fetching: request accepted.
        fetching -> done: source could not be opened.
        fetching -> piping: source open, both stages launched.
        piping -> draining: first failure observed, tearing down.
        piping/draining -> done: all links and both waits finished.
    """

    IDLE = "idle"
    FETCHING = "fetching"
    PIPING = "piping"
    DRAINING = "draining"
    DONE = "done"


class PipelineOutcome(str, Enum):
    """Terminal outcome kinds."""

    SUCCESS = "success"
    FETCH_FAILED = "fetch_failed"
    STAGE_FAILED = "stage_failed"
    IO_FAILED = "io_failed"


# Status codes for failures on each link, before any byte was flushed
_LINK_HTTP_STATUS: dict[PipeLink, int] = {
    PipeLink.SOURCE_TO_DECODE: 502,
    PipeLink.DECODE_TO_ENCODE: 500,
    PipeLink.ENCODE_TO_CLIENT: 499,
}


@dataclass(frozen=True)
class PipelineResult:
    """Terminal outcome of one conversion.

    Attributes:
        outcome: Which kind of terminal state was reached.
        error_code: Error code for failures, None on success.
        reason: Human-readable diagnostic, empty on success.
        stage_index: Index of the failed stage (0 decode, 1 encode).
        stage_name: Name of the failed stage.
        exit_status: Exit status of the failed stage; None if it never ran.
        link: Pipe link that failed for IO failures.
        status_code: HTTP status chosen by the failing layer, if any.
        bytes_sent: Bytes already flushed to the client.
    """

    outcome: PipelineOutcome
    error_code: ErrorCode | None = None
    reason: str = ""
    stage_index: int | None = None
    stage_name: str | None = None
    exit_status: int | None = None
    link: PipeLink | None = None
    status_code: int | None = None
    bytes_sent: int = 0

    @classmethod
    def success(cls, bytes_sent: int = 0) -> "PipelineResult":
        return cls(outcome=PipelineOutcome.SUCCESS, bytes_sent=bytes_sent)

    @classmethod
    def fetch_failed(cls, error: FetchError) -> "PipelineResult":
        return cls(
            outcome=PipelineOutcome.FETCH_FAILED,
            error_code=error.code,
            reason=error.message,
            status_code=error.http_status,
        )

    @classmethod
    def spawn_failed(cls, stage_index: int, error: SpawnFailed) -> "PipelineResult":
        return cls(
            outcome=PipelineOutcome.STAGE_FAILED,
            error_code=error.code,
            reason=error.message,
            stage_index=stage_index,
            stage_name=error.stage,
            status_code=error.http_status,
        )

    @classmethod
    def stage_failed(cls, stage_index: int, error: StageFailed) -> "PipelineResult":
        return cls(
            outcome=PipelineOutcome.STAGE_FAILED,
            error_code=error.code,
            reason=error.message,
            stage_index=stage_index,
            stage_name=error.stage,
            exit_status=error.exit_status,
            status_code=error.http_status,
        )

    @classmethod
    def io_failed(cls, error: IOFailed) -> "PipelineResult":
        link = PipeLink(error.link)
        error_code = (
            ErrorCode.CLIENT_DISCONNECTED
            if isinstance(error.cause, ClientDisconnected)
            else error.code
        )
        return cls(
            outcome=PipelineOutcome.IO_FAILED,
            error_code=error_code,
            reason=error.message,
            link=link,
            status_code=_LINK_HTTP_STATUS[link],
        )

    @property
    def ok(self) -> bool:
        """True for a successful conversion."""
        return self.outcome is PipelineOutcome.SUCCESS

    @property
    def committed(self) -> bool:
        """True when body bytes were already flushed to the client."""
        return self.bytes_sent > 0

    @property
    def http_status(self) -> int:
        """Status to answer with when nothing has been flushed yet."""
        if self.ok:
            return 200
        return self.status_code or 500

    def with_bytes_sent(self, bytes_sent: int) -> "PipelineResult":
        """Copy of this result with the flushed byte count filled in."""
        return replace(self, bytes_sent=bytes_sent)
