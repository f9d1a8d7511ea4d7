"""Logging setup for the raid signup bot."""

import logging
import sys
from pathlib import Path
from typing import Optional

AUDIT_LOGGER = "raidbot.audit"


def _file_handler(path: str, level: int, formatter: logging.Formatter) -> logging.FileHandler:
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logger(
    name: str = "raidbot",
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    audit_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up logger with console and file handlers.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        log_format: Log message format
        audit_file: Separate file for signup audit entries (optional)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, level.upper())
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    # Remove existing handlers
    logger.handlers.clear()

    # Default format
    if log_format is None:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    formatter = logging.Formatter(log_format)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (if specified)
    if log_file:
        logger.addHandler(_file_handler(log_file, numeric_level, formatter))

    # Audit entries also land in the main log through propagation
    audit_logger = logging.getLogger(AUDIT_LOGGER)
    audit_logger.handlers.clear()
    if audit_file:
        audit_logger.addHandler(
            _file_handler(audit_file, logging.INFO, logging.Formatter("%(asctime)s %(message)s"))
        )

    # discord.py logs through its own hierarchy; only its warnings are kept
    discord_logger = logging.getLogger("discord")
    discord_logger.setLevel(logging.WARNING)
    discord_logger.handlers.clear()
    for handler in logger.handlers:
        discord_logger.addHandler(handler)

    return logger
