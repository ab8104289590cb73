"""
Project-wide loguru logger. Sinks come from settings; import `logger` from here.
"""

import sys

from loguru import logger

from settings import get_settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logger() -> None:
    """Replace every sink with stderr at LOG_LEVEL plus, if LOG_FILE is set, a JSON file."""
    settings = get_settings()
    logger.remove()

    logger.add(sys.stderr, level=settings.log_level, format=CONSOLE_FORMAT, colorize=True)

    if not settings.log_file:
        return
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)
    # match/swipe audit trail, kept at debug
    logger.add(str(settings.log_file), level="DEBUG", rotation="10 MB", retention="14 days", serialize=True)


setup_logger()

__all__ = ["logger", "setup_logger"]
