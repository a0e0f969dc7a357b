"""Logging configuration for the cpc package."""
import logging
import sys
from typing import Optional

from .config import Config


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Set up a logger with the specified name and log level.

    Args:
        name: The name of the logger
        level: The logging level (default: DEBUG when CPC_DEBUG is set, else Config.LOG_LEVEL)

    Returns:
        Configured logger instance
    """
    if level is None:
        level = logging.DEBUG if Config.DEBUG else logging.getLevelName(Config.LOG_LEVEL)
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Don't add handlers if they're already configured
    if not logger.handlers:
        # stderr keeps stdout free for command output
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)

        formatter = logging.Formatter(
            Config.LOG_FORMAT,
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)

        logger.addHandler(handler)

    return logger
