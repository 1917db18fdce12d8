"""Main entry point for gif service.

Starts the FastAPI server with uvicorn.
"""

import uvicorn

from gif_service.config.settings import get_settings
from gif_service.logging_config import get_logger
from gif_service.main import create_app

logger = get_logger(__name__)


def main() -> None:
    """Main entry point for gif service."""
    settings = get_settings()

    app = create_app(settings)
    logger.info("server_starting", url=f"http://{settings.host}:{settings.port}")

    # Run with uvicorn
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )

    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()
