"""Logging configuration for the ledger API and batch jobs.

Provides dual output (stdout + file) with configurable level via LOG_LEVEL.
Default: INFO. Set LOG_LEVEL=WARNING for production, DEBUG for verbose output.
"""

import logging
import sys
from pathlib import Path

from hoa_ledger.config import get_settings

# Map string level names to logging constants
LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_log_level() -> int:
    """Get logging level from settings (LOG_LEVEL).

    Returns:
        Logging level constant (default: INFO)
    """
    level_str = get_settings().log_level.upper()
    return LOG_LEVEL_MAP.get(level_str, logging.INFO)


def setup_logging(log_file: str | None = None) -> logging.Logger:
    """
    Configure root logger for the API server and batch jobs.

    Args:
        log_file: Path to log file (default: LOG_FILE setting)

    Returns:
        The "hoa_ledger" logger

    Behavior:
        - Sets up all loggers to output to both stdout and file
        - ISO format timestamps for consistency
    """
    log_path = Path(log_file or get_settings().log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # ISO format: [YYYY-MM-DD HH:MM:SS]
    formatter = logging.Formatter(
        fmt="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_level = get_log_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Telegram client is chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger("hoa_ledger")


__all__ = ["setup_logging", "get_log_level"]
