"""
Mitthi - Logging setup.

Author: orpheus497
Version: 1.0.0

Library modules only create module-level loggers; handlers are attached
here, once, by the command-line entry point. Room codes, keys and
plaintext are never logged.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .constants import LOG_BACKUP_COUNT, LOG_DATE_FORMAT, LOG_FORMAT, LOG_MAX_BYTES

PACKAGE_LOGGER = "mitthi"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Log level name
        log_file: Rotating log file path (no file logging if None)
        console: Log to stderr through rich

    Returns:
        The configured ``mitthi`` logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level.upper())

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            log_time_format=LOG_DATE_FORMAT,
        )
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    logger.propagate = False
    return logger
