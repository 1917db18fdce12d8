"""
Upstream fetch module.

Components:
- SourceFetcher: Opens a streaming GET of the source video
- SourceStream: Lazy, one-shot body iterator of an open response
- build_http_client: Shared httpx client factory
"""

from __future__ import annotations

from gif_service.fetch.source_fetcher import SourceFetcher, SourceStream, build_http_client

__all__ = [
    "SourceFetcher",
    "SourceStream",
    "build_http_client",
]
