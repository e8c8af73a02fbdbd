"""
Logging Configuration

Centralized logging configuration for the GeoFeed project.
Standard library logging provides the handlers; structlog sits on top of it
so every module emits structured, timestamped events.

Usage:
    from logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Fetched flights", count=412)
    logger.warning("Layer refresh failed", layer="satellites", error="timeout")
"""

import logging
import os
import sys
from typing import Optional

import structlog

# Default logging format
LOG_FORMAT = "%(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: Optional[int] = None, log_file: Optional[str] = None,
                      json_output: Optional[bool] = None) -> None:
    """
    Configure logging for the entire application.

    Parameters
    ----------
    level : int, optional
        Logging level (e.g., logging.DEBUG, logging.INFO). Defaults to the
        LOG_LEVEL environment variable, or INFO.
    log_file : str, optional
        Path to log file. If None, logs only to console.
    json_output : bool, optional
        Render events as JSON lines instead of the console renderer.
        Defaults to LOG_FORMAT=json in the environment.
    """
    if level is None:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "").lower() == "json"

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Parameters
    ----------
    name : str
        Name of the logger (typically __name__)

    Returns
    -------
    structlog.stdlib.BoundLogger
        Structured logger bound to the stdlib logger of that name
    """
    return structlog.get_logger(name)


# Configure default logging on module import
configure_logging()
