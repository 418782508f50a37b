import logging
import os

import uvicorn

from config import load_settings, setup_logging

logger = logging.getLogger(__name__)


def run_harvester():
    settings = load_settings()
    setup_logging(settings)

    logger.info(f"starting API on {settings.api_host}:{settings.api_port}")
    try:
        uvicorn.run("api.main:app", host=settings.api_host, port=settings.api_port, log_config=None)
    except KeyboardInterrupt:
        logger.info("shutdown signal received")
    finally:
        logger.info("harvester stopped")


if __name__ == "__main__":
    # run from the script directory so relative storage paths resolve
    os.chdir(os.path.dirname(os.path.abspath(__file__)))
    run_harvester()
