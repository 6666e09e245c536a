"""Logging configuration for the grouping engine"""

import logging
import os
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str, log_level: Optional[str] = None) -> logging.Logger:
    """
    Setup and configure logger for the application.

    Args:
        name: Logger name (usually __name__)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Falls back to the LOG_LEVEL environment variable.

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Add handler if not already added
    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger


def set_log_level(log_level: str) -> None:
    """Change the level of every logger created under the src package (used by --verbose)."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    for name, existing in logging.Logger.manager.loggerDict.items():
        if isinstance(existing, logging.Logger) and (name == 'src' or name.startswith('src.')):
            existing.setLevel(level)
            for handler in existing.handlers:
                handler.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get or create a logger instance."""
    return setup_logger(name)
