"""
Logging Setup

loguru sinks for the daemon: human readable console output plus an
append-only transaction log with ISO timestamps.
"""

import sys
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSS!UTC}Z - {level} - {message}"


def configure_logging(level: str = "INFO", log_file: Optional[str] = "transactions.log"):
    """
    Replace loguru's default handler with console + file sinks

    Args:
        level: Minimum level for both sinks
        log_file: Transaction log path (None disables the file sink)
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    if log_file:
        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            rotation="50 MB",
            retention=10,
            encoding="utf-8",
            enqueue=True,
        )
        logger.debug(f"Logging to {log_file}")
