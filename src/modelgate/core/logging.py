"""
Logging configuration.

Structured logging for debugging and audit trail.
"""

import logging
import sys
from pathlib import Path


def setup_logging(
    level: int = logging.INFO,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure root logger with console and optional file output."""
    logger = logging.getLogger("modelgate")
    logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger."""
    return logging.getLogger(f"modelgate.{name}")


def mask_key(key: str | None) -> str:
    """Mask an API key for log output."""
    if not key:
        return "<none>"
    if len(key) <= 12:
        return key[:2] + "***"
    return f"{key[:6]}...{key[-4:]}"
