"""
Metrics module for Prometheus observability.

Components:
- Conversion, pipe and stage collectors with recording helpers
- render_latest: exposition payload for the /metrics endpoint
"""

from __future__ import annotations

from gif_service.metrics.prometheus import (
    conversion_finished,
    conversion_started,
    record_relayed_bytes,
    record_stage_exit,
    render_latest,
)

__all__ = [
    "conversion_finished",
    "conversion_started",
    "record_relayed_bytes",
    "record_stage_exit",
    "render_latest",
]
