"""Logging configuration for the visual scanner.

Console logging with timestamps, module names, level colors on a terminal
and an optional plain-text log file.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record: logging.LogRecord) -> str:
        if hasattr(sys.stdout, "isatty") and sys.stdout.isatty():
            # Work on a copy so file handlers sharing the record stay plain
            record = logging.makeLogRecord(record.__dict__)
            levelname = record.levelname
            if levelname in self.COLORS:
                record.levelname = (
                    f"{self.COLORS[levelname]}{self.BOLD}{levelname}{self.RESET}"
                )
                record.name = f"{self.BOLD}{record.name}{self.RESET}"

        return super().format(record)


def setup_logging(
    name: str = "visual_scanner",
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Set up a logger with the scanner's formatting.

    Args:
        name: Logger name (usually module name or 'visual_scanner' for root)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               If None, reads LOG_LEVEL via Config.
        log_file: Optional file path to also log to a file.

    Returns:
        Configured logger instance.

    Example:
        >>> logger = setup_logging(__name__)
        >>> logger.info("Scanner started")
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    if level is None:
        try:
            from visual_scanner.config import get_config

            level = get_config().log_level
        except (ValueError, OSError):
            level = "INFO"

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logger.level)

    # Format: 2025-11-04 15:30:45 | INFO | visual_scanner.engine | Message
    fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_fmt = "%Y-%m-%d %H:%M:%S"

    console_handler.setFormatter(ColoredFormatter(fmt, datefmt=date_fmt))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logger.level)
        file_handler.setFormatter(logging.Formatter(fmt, datefmt=date_fmt))
        logger.addHandler(file_handler)

    # Prevent duplicate messages through the root logger
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get logger for a specific module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance.
    """
    return setup_logging(name)
