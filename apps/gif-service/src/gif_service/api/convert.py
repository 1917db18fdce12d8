"""
Conversion API endpoints.

Maps an inbound video path to a validated upstream URL and answers with a
streamed GIF produced by the conversion pipeline.
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from gif_service.config.settings import ServiceSettings, get_settings
from gif_service.fetch.source_fetcher import SourceFetcher
from gif_service.logging_config import get_logger
from gif_service.models.request import ConversionRequest
from gif_service.pipeline.coordinator import PipelineCoordinator
from gif_service.pipeline.stage_executor import StageExecutor
from gif_service.pipeline.stages import build_stage_specs
from gif_service.streaming.response_streamer import ResponseStreamer

router = APIRouter()
logger = get_logger(__name__)

# Client-supplied correlation ids longer than this are ignored
_MAX_REQUEST_ID_LENGTH = 128


def get_source_fetcher(request: Request) -> SourceFetcher:
    """Shared SourceFetcher created by the application lifespan."""
    fetcher = getattr(request.app.state, "source_fetcher", None)
    if fetcher is None:
        raise RuntimeError("SourceFetcher not initialized; is the lifespan running?")
    return fetcher


def get_stage_executor(request: Request) -> StageExecutor:
    """Shared StageExecutor created by the application lifespan."""
    executor = getattr(request.app.state, "stage_executor", None)
    if executor is None:
        raise RuntimeError("StageExecutor not initialized; is the lifespan running?")
    return executor


def get_conversion_limiter(request: Request) -> asyncio.Semaphore | None:
    """Global conversion limit, or None when unlimited."""
    return getattr(request.app.state, "conversion_limiter", None)


@router.get("/tweet_video/{path}", response_class=Response)
async def convert_tweet_video(
    path: str,
    request: Request,
    settings: ServiceSettings = Depends(get_settings),
    fetcher: SourceFetcher = Depends(get_source_fetcher),
    executor: StageExecutor = Depends(get_stage_executor),
    limiter: asyncio.Semaphore | None = Depends(get_conversion_limiter),
) -> Response:
    """
    Convert a tweet video to an animated GIF.

    Args:
        path: Video file name under the upstream base URL (e.g. "abc123.mp4")

    Returns:
        ResponseStreamer streaming image/gif bytes as they are encoded

    Raises:
        HTTPException: 400 if the path does not map to an allowed source URL
    """
    request_id = request.headers.get("x-request-id")
    if request_id and len(request_id) > _MAX_REQUEST_ID_LENGTH:
        request_id = None

    try:
        conversion = ConversionRequest.from_path(
            path,
            base_url=settings.upstream_base_url,
            allowed_hosts=settings.allowed_hosts,
            request_id=request_id,
        )
    except ValueError as e:
        logger.warning("video_path_rejected", path=path, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    logger.info(
        "conversion_accepted",
        path=path,
        request_id=conversion.request_id,
        source_url=conversion.source_url,
    )

    coordinator = PipelineCoordinator(
        fetcher=fetcher,
        executor=executor,
        stage_specs=build_stage_specs(settings),
        chunk_size=settings.chunk_size,
        limiter=limiter,
    )
    return ResponseStreamer(
        coordinator,
        conversion,
        headers={
            "cache-control": settings.cache_control,
            "x-powered-by": "fastgif",
        },
    )
