"""
Data models for gif service.

This module provides data models for:
- Requests: ConversionRequest
- Results: PipelineResult, PipelineOutcome, PipelineState, PipeLink
- Errors: ConversionError taxonomy and ErrorCode
"""

from __future__ import annotations

from gif_service.models.errors import (
    ClientDisconnected,
    ConversionError,
    ErrorCode,
    FetchError,
    IOFailed,
    SpawnFailed,
    StageFailed,
    StreamAbortedError,
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from gif_service.models.request import ConversionRequest
from gif_service.models.result import (
    PipelineOutcome,
    PipelineResult,
    PipelineState,
    PipeLink,
)

__all__ = [
    "ClientDisconnected",
    "ConversionError",
    "ConversionRequest",
    "ErrorCode",
    "FetchError",
    "IOFailed",
    "PipeLink",
    "PipelineOutcome",
    "PipelineResult",
    "PipelineState",
    "SpawnFailed",
    "StageFailed",
    "StreamAbortedError",
    "UpstreamError",
    "UpstreamTimeout",
    "UpstreamUnavailable",
]
