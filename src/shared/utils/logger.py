"""
Centralized logging configuration for the application.
"""

import logging
import os
import sys
from typing import Optional

# Log format that includes timestamp, log level, module name, and message
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(level_name: Optional[str], environment: str) -> int:
    """
    Resolve a textual log level, falling back to DEBUG in development
    and INFO everywhere else.

    Args:
        level_name: Level name such as "info" or "WARNING", or None
        environment: Deployment environment name

    Returns:
        A logging module level constant
    """
    if level_name:
        level = logging.getLevelName(level_name.upper())
        if isinstance(level, int):
            return level
    return logging.DEBUG if environment == "development" else logging.INFO


def setup_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    stream: bool = True,
) -> logging.Logger:
    """
    Set up a logger with consistent formatting and configuration.

    Args:
        name: Name of the logger (typically __name__)
        level: Logging level (default: INFO)
        log_file: Optional path to log file. If None, logs only to stdout
        stream: Whether to log to stdout (default: True)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if stream:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        logger.addHandler(stdout_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


logger = setup_logger(
    "dog_places_brussels",
    level=resolve_level(
        os.getenv("LOG_LEVEL"), os.getenv("APP_ENV", "development").lower()
    ),
    log_file=os.getenv("LOG_FILE"),
)
