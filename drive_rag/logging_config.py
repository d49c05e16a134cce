"""
Logging configuration using Loguru.
Console gets everything from INFO up; warnings and errors also go to
rotating files under logs/.
"""

import sys

from loguru import logger

from .config import paths

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"

FILE_SINKS = {
    "drive_rag_{time:YYYY-MM-DD}.log": "WARNING",
    "errors_{time:YYYY-MM-DD}.log": "ERROR",
}


def setup_logging(console_level: str = "INFO"):
    """Replace Loguru's default sink with the console and file sinks."""
    logger.remove()

    logger.add(
        sys.stderr,
        level=console_level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        colorize=True,
    )

    try:
        paths.logs_dir.mkdir(exist_ok=True)
        for file_name, level in FILE_SINKS.items():
            logger.add(
                paths.logs_dir / file_name,
                level=level,
                format=FILE_FORMAT,
                rotation="10 MB",
                retention="30 days",
                compression="zip",
            )
    except OSError:
        logger.warning("Could not set up file logging due to permissions.")


setup_logging()

__all__ = ["logger", "setup_logging"]
