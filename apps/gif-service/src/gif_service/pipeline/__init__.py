"""
Conversion pipeline module.

This module wires the upstream fetch into two external stages and the
stages into the HTTP response.

Components:
- StageSpec: Fixed decode (ffmpeg) and encode (gifski) command templates
- StageExecutor / StageHandle: Child process launch and lifecycle
- PipelineCoordinator: Concurrent links, exit waits and failure aggregation
- Relay primitives: Backpressure-aware byte copies per link
"""

from __future__ import annotations

from gif_service.pipeline.coordinator import PipelineCoordinator
from gif_service.pipeline.relay import ByteSink, LinkStats
from gif_service.pipeline.stage_executor import StageExecutor, StageHandle
from gif_service.pipeline.stages import (
    DECODE_STAGE,
    ENCODE_STAGE,
    StageSpec,
    build_stage_specs,
    decode_stage_spec,
    encode_stage_spec,
)

__all__ = [
    "ByteSink",
    "DECODE_STAGE",
    "ENCODE_STAGE",
    "LinkStats",
    "PipelineCoordinator",
    "StageExecutor",
    "StageHandle",
    "StageSpec",
    "build_stage_specs",
    "decode_stage_spec",
    "encode_stage_spec",
]
