"""
Conversion request model.

A ConversionRequest is built by the router from the inbound path and is
consumed exactly once by the pipeline coordinator.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from urllib.parse import urlsplit
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Single path segment: an id with an optional extension, e.g. "Abc_12-x.mp4"
VIDEO_PATH_PATTERN = re.compile(r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9]+)?$")


class ConversionRequest(BaseModel):
    """Validated, immutable request to convert one source video."""

    model_config = ConfigDict(frozen=True)

    source_url: str = Field(..., description="Fully-qualified https URL of the source video")
    request_id: str = Field(
        default_factory=lambda: str(uuid4()), description="Correlation ID for tracing"
    )
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Acceptance time"
    )

    @field_validator("source_url")
    @classmethod
    def validate_source_url(cls, v: str) -> str:
        """Source URL must be absolute https with a host."""
        parts = urlsplit(v)
        if parts.scheme != "https":
            raise ValueError(f"source_url must use https, got {v}")
        if not parts.hostname:
            raise ValueError(f"source_url has no host: {v}")
        return v

    @property
    def source_host(self) -> str:
        """Host part of the source URL."""
        return urlsplit(self.source_url).hostname or ""

    @classmethod
    def from_path(
        cls,
        path: str,
        base_url: str,
        allowed_hosts: list[str],
        request_id: str | None = None,
    ) -> "ConversionRequest":
        """Build a request from an inbound path segment.

        Args:
            path: Video path segment from the route (e.g. "abc123.mp4")
            base_url: Upstream base URL ending with "/"
            allowed_hosts: Hosts the resulting URL may point at
            request_id: Correlation ID to reuse (optional)

        Returns:
            ConversionRequest for the upstream video

        Raises:
            ValueError: If the path or resulting host is not acceptable
        """
        if not VIDEO_PATH_PATTERN.match(path):
            raise ValueError(f"invalid video path: {path!r}")

        kwargs = {"source_url": f"{base_url}{path}"}
        if request_id:
            kwargs["request_id"] = request_id
        request = cls(**kwargs)

        if request.source_host not in allowed_hosts:
            raise ValueError(f"source host {request.source_host!r} is not allowed")
        return request
