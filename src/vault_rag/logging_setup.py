"""Loguru sink configuration for command-line use."""

import sys

from loguru import logger


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Replace loguru's default sink.

    Args:
        level: Minimum level for stderr output
        log_file: Optional file receiving DEBUG and above, rotated at 10 MB
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format="<level>{message}</level>")
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=5, enqueue=True)
