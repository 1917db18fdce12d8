"""Unit tests for PipelineResult and pipeline enums."""

from __future__ import annotations

import pytest

from gif_service.models.errors import (
    ClientDisconnected,
    ErrorCode,
    IOFailed,
    SpawnFailed,
    StageFailed,
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from gif_service.models.result import (
    PipelineOutcome,
    PipelineResult,
    PipelineState,
    PipeLink,
)


class TestPipelineEnums:
    """Tests for PipeLink and PipelineState."""

    def test_link_values(self) -> None:
        """Test links are named after their endpoints."""
        assert [link.value for link in PipeLink] == [
            "source->decode",
            "decode->encode",
            "encode->client",
        ]

    def test_states_in_order(self) -> None:
        """Test the state machine declares every state once."""
        assert [state.value for state in PipelineState] == [
            "idle",
            "fetching",
            "piping",
            "draining",
            "done",
        ]


class TestPipelineResultFactories:
    """Tests for PipelineResult constructors."""

    def test_success(self) -> None:
        """Test a successful result answers 200 and has no error."""
        result = PipelineResult.success(bytes_sent=10)
        assert result.ok
        assert result.error_code is None
        assert result.http_status == 200
        assert result.committed

    def test_empty_success_is_not_committed(self) -> None:
        """Test zero output bytes is still success."""
        result = PipelineResult.success()
        assert result.ok
        assert not result.committed

    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (UpstreamError(404), 404),
            (UpstreamError(503), 502),
            (UpstreamUnavailable(), 502),
            (UpstreamTimeout(), 504),
        ],
    )
    def test_fetch_failed_status(self, error, status: int) -> None:
        """Test fetch failures keep the status chosen by the error."""
        result = PipelineResult.fetch_failed(error)
        assert result.outcome is PipelineOutcome.FETCH_FAILED
        assert result.error_code is error.code
        assert result.http_status == status

    def test_spawn_failed(self) -> None:
        """Test spawn failures are stage failures without an exit status."""
        result = PipelineResult.spawn_failed(1, SpawnFailed("encode", "not found"))
        assert result.outcome is PipelineOutcome.STAGE_FAILED
        assert result.error_code is ErrorCode.SPAWN_FAILED
        assert result.stage_index == 1
        assert result.stage_name == "encode"
        assert result.exit_status is None
        assert result.http_status == 503

    def test_stage_failed(self) -> None:
        """Test non-zero exits answer 500 and record the status."""
        result = PipelineResult.stage_failed(0, StageFailed("decode", 1, "bad input"))
        assert result.outcome is PipelineOutcome.STAGE_FAILED
        assert result.error_code is ErrorCode.STAGE_FAILED
        assert result.stage_index == 0
        assert result.exit_status == 1
        assert "bad input" in result.reason
        assert result.http_status == 500

    @pytest.mark.parametrize(
        ("link", "status"),
        [
            (PipeLink.SOURCE_TO_DECODE, 502),
            (PipeLink.DECODE_TO_ENCODE, 500),
            (PipeLink.ENCODE_TO_CLIENT, 499),
        ],
    )
    def test_io_failed_status_per_link(self, link: PipeLink, status: int) -> None:
        """Test each link maps to its own status."""
        result = PipelineResult.io_failed(IOFailed(link, BrokenPipeError()))
        assert result.outcome is PipelineOutcome.IO_FAILED
        assert result.error_code is ErrorCode.IO_FAILED
        assert result.link is link
        assert result.http_status == status

    def test_io_failed_client_disconnect_code(self) -> None:
        """Test a client disconnect is labelled as such."""
        result = PipelineResult.io_failed(
            IOFailed(PipeLink.ENCODE_TO_CLIENT, ClientDisconnected())
        )
        assert result.error_code is ErrorCode.CLIENT_DISCONNECTED
        assert result.link is PipeLink.ENCODE_TO_CLIENT


def test_with_bytes_sent_returns_copy() -> None:
    """Test with_bytes_sent leaves the original untouched."""
    result = PipelineResult.stage_failed(1, StageFailed("encode", 2))
    updated = result.with_bytes_sent(128)
    assert updated.bytes_sent == 128
    assert updated.committed
    assert result.bytes_sent == 0
    assert updated.reason == result.reason
