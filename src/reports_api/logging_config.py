"""
Centralized logging configuration for the reports backend

Usage:
    from src.reports_api.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Pool created")
    logger.error("Procedure failed", exc_info=True)
"""
import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the whole process.
    Call this once at startup (main.run does).

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR). Defaults to INFO.
    """
    global _configured

    if _configured:
        return

    if level is None:
        level = "INFO"

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    # passlib logs a trapped bcrypt version probe at WARNING on every import
    logging.getLogger("passlib").setLevel(logging.ERROR)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    _configured = True

    logging.getLogger().info(f"Logging configured at {level} level")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Usually __name__ of the calling module
    """
    return logging.getLogger(name)
