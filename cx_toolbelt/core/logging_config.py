"""
Logging Configuration Module.

This module provides centralized logging configuration for the toolbelt.
Console output goes to stderr so it never mixes with command output on stdout.

Features:
- Configurable log levels per module
- Console and optional file logging
- Simple, detailed and JSON formats
- Request logging for API calls at DEBUG
"""

import logging
from pathlib import Path
from typing import Optional

# Define log formats
SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

LOG_FILENAME = "cx.log"

# Module-specific log levels
MODULE_LOG_LEVELS = {
    "cx_toolbelt": "DEBUG",
    "cx_toolbelt.api": "DEBUG",
    "cx_toolbelt.workflow": "DEBUG",
    # Third-party libraries (reduce noise)
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "watchdog": "WARNING",
}


def _format_string(fmt: str) -> str:
    if fmt == "json":
        return JSON_FORMAT
    if fmt == "detailed":
        return DETAILED_FORMAT
    return SIMPLE_FORMAT


def setup_logging(
    log_level: str = "WARNING",
    log_format: str = "simple",
    enable_file: bool = False,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure logging for the toolbelt.

    Args:
        log_level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format name (simple, detailed, json)
        enable_file: Whether to also log DEBUG records to a file
        log_dir: Directory for the log file, required when enable_file is set
    """
    level = log_level.upper()
    formatter = logging.Formatter(_format_string(log_format), datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels, filter at handler level

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if enable_file and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / LOG_FILENAME)
        file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.debug(
        "Logging configured: level=%s, format=%s, file_logging=%s", level, log_format, enable_file and log_dir is not None
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)
