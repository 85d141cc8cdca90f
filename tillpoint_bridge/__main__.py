"""
TillPoint Bridge — Process entry point.

    python -m tillpoint_bridge
"""

import logging
import os
import sys

import uvicorn
from pydantic import ValidationError

from tillpoint_bridge.core.config import get_settings
from tillpoint_bridge.core.logging import configure_logging

logger = logging.getLogger("tillpoint_bridge")


def main() -> None:
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    try:
        settings = get_settings()
    except ValidationError as exc:
        if any(error["loc"] == ("API_KEY",) for error in exc.errors()):
            logger.error("ERROR: API_KEY environment variable is not set.")
        else:
            logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    configure_logging(settings.LOG_LEVEL)

    from tillpoint_bridge.main import app

    logger.info("Server running on port %d", settings.PORT)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
