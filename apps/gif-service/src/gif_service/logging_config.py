"""
Structured logging configuration for gif service.

Uses structlog on top of stdlib logging so that every conversion carries its
request_id (and source URL) through fetch, stage and relay log lines.

Usage:
  LOG_LEVEL is taken from FASTGIF_LOG_LEVEL, FASTGIF_LOG_JSON=1 switches to
  JSON lines for log shipping.

Example:
  FASTGIF_LOG_LEVEL=DEBUG python -m gif_service
"""

import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Default: INFO
        json_logs: Render JSON lines instead of key=value console output
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
        force=True,  # Override any existing config
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        BoundLogger instance
    """
    return structlog.get_logger(name)


def bind_request_context(
    logger: structlog.stdlib.BoundLogger,
    request_id: str,
    source_url: str | None = None,
) -> structlog.stdlib.BoundLogger:
    """
    Bind conversion request context to logger.

    Args:
        logger: Base logger instance
        request_id: Correlation id of the conversion
        source_url: Upstream video URL (optional)

    Returns:
        BoundLogger with context bound

    Example:
        >>> logger = bind_request_context(get_logger(__name__), "req-1")
        >>> logger.info("stage_launched", stage="decode")  # includes request_id
    """
    context = {"request_id": request_id}
    if source_url:
        context["source_url"] = source_url

    return logger.bind(**context)
