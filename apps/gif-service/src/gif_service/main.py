"""
FastGIF gif service - FastAPI Application

Fetches tweet videos and streams them back as animated GIFs, converted on the
fly by ffmpeg and gifski.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from gif_service.api import convert
from gif_service.config.settings import ServiceSettings, get_settings
from gif_service.fetch.source_fetcher import SourceFetcher, build_http_client
from gif_service.logging_config import get_logger, setup_logging
from gif_service.metrics.prometheus import render_latest
from gif_service.pipeline.stage_executor import StageExecutor

logger = get_logger(__name__)


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Settings to use; defaults to the environment-loaded singleton

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        logger.info("service_starting", host=settings.host, port=settings.port)
        client = build_http_client(settings)
        app.state.http_client = client
        app.state.source_fetcher = SourceFetcher(client, chunk_size=settings.chunk_size)
        app.state.stage_executor = StageExecutor(
            stderr_mode=settings.stage_stderr,
            stderr_tail_lines=settings.stderr_tail_lines,
            stream_limit=settings.chunk_size,
        )
        app.state.conversion_limiter = (
            asyncio.Semaphore(settings.max_concurrent_conversions)
            if settings.concurrency_limited
            else None
        )
        try:
            yield
        finally:
            await client.aclose()
            logger.info("service_stopped")

    app = FastAPI(
        title="FastGIF API",
        description="Streams tweet videos back as animated GIFs",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Include routers
    app.include_router(convert.router, tags=["convert"])

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException) -> Response:
        """Plain-text 404 for unknown routes, default handling otherwise."""
        if exc.status_code == 404:
            return PlainTextResponse(f"404 Not Found: {request.url}", status_code=404)
        return await http_exception_handler(request, exc)

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse({"status": "ok", "service": "gif-service"})

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        payload, content_type = render_latest()
        return Response(content=payload, media_type=content_type)

    @app.get("/")
    async def root() -> JSONResponse:
        """Root endpoint."""
        return JSONResponse(
            {
                "service": "fastgif",
                "version": "0.1.0",
                "status": "running",
            }
        )

    return app


app = create_app()
