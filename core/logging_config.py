"""
Logging configuration for Maps Scraper.
Provides structured logging with proper formatting.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Sequence

# Log level from environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        original = record.levelname
        color = self.COLORS.get(original, self.RESET)
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # File handlers share the record
            record.levelname = original


def setup_logging(
    name: str = "maps_scraper",
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    packages: Sequence[str] = ("core", "browser")
) -> logging.Logger:
    """
    Setup and return a configured logger.

    Args:
        name: Logger name, also used for the log file names (default: maps_scraper)
        log_dir: Directory for rotating log files (default: LOG_DIR env or ./logs)
        level: Log level name (default: LOG_LEVEL env or INFO)
        packages: Package loggers that share the same handlers

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    log_level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    logger.setLevel(log_level)

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_format = ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    log_path = Path(log_dir or os.getenv("LOG_DIR", "./logs"))
    log_path.mkdir(parents=True, exist_ok=True)

    # File handler with rotation
    file_handler = RotatingFileHandler(
        log_path / f"{name}.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_format = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    # Error file handler (errors and above)
    error_handler = RotatingFileHandler(
        log_path / f"{name}_errors.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)
    logger.addHandler(error_handler)

    for package in packages:
        package_logger = logging.getLogger(package)
        package_logger.setLevel(log_level)
        package_logger.propagate = False
        for handler in logger.handlers:
            package_logger.addHandler(handler)

    return logger


def log_scrape_event(query: str, event: str, details: str = None):
    """Log a scrape session milestone."""
    logger = logging.getLogger("maps_scraper.session")
    logger.info(f"Scrape [{query}] {event}: {details}" if details else f"Scrape [{query}] {event}")


def log_captcha_event(kind: str, outcome: str, error: str = None):
    """Log a CAPTCHA handling outcome."""
    logger = logging.getLogger("maps_scraper.captcha")
    if error:
        logger.warning(f"CAPTCHA {kind} {outcome}: {error}")
    else:
        logger.info(f"CAPTCHA {kind} {outcome}")
