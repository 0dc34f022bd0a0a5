"""
Relay main entry point.
Serves the HTTP API and runs the job workers and cron scheduler in-process.
"""

import uvicorn
from loguru import logger

from relay.api import create_app
from relay.container import build_container
from relay.logs import configure_logging
from relay.settings import load_settings


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)

    logger.info("Starting Relay...")
    container = build_container(settings)
    app = create_app(container)

    try:
        # Workers, scheduler and database are started by the app lifespan
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        logger.info("Relay stopped")


if __name__ == "__main__":
    main()
