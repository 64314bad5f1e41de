"""
esupgrade Logging Configuration
===============================
Centralized logging configuration using loguru.

Provides:
  - configure_logging(): Setup function called once by the CLI
  - JSON log format when LOG_FORMAT=json environment variable is set
  - Interception of stdlib logging (aiohttp, pymongo) into loguru

Usage:
    from esupgrade.core.logging_config import configure_logging

    # At application startup:
    configure_logging(level="INFO", json_format=False)

    # In modules:
    from loguru import logger
    logger.info("Message")
"""

from __future__ import annotations

import os
import sys
from typing import Optional

from loguru import logger

# Track if logging has been configured
_CONFIGURED = False


def configure_logging(
    level: Optional[str] = "INFO",
    json_format: Optional[bool] = None,
    *,
    sink: Optional[str] = None,
) -> None:
    """
    Configure loguru logging for esupgrade.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: If True, use JSON format. If None, check LOG_FORMAT env var.
        sink: Optional file path for log output. If None, logs to stderr.

    Environment:
        LOG_FORMAT: Set to "json" to enable JSON formatted logs.
        LOG_LEVEL: Override log level if not specified.
    """
    global _CONFIGURED

    if json_format is None:
        json_format = os.environ.get("LOG_FORMAT", "").lower() == "json"

    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")

    logger.remove()

    log_sink = sink if sink else sys.stderr

    if json_format:
        # serialize=True lets loguru emit one JSON object per record
        logger.add(
            log_sink,
            level=level.upper(),
            serialize=True,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )
    else:
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
        logger.add(
            log_sink,
            level=level.upper(),
            format=format_str,
            colorize=sink is None,
            enqueue=True,
            backtrace=True,
            diagnose=True,
        )

    _intercept_standard_logging(level)

    _CONFIGURED = True
    logger.debug(f"Logging configured: level={level}, json_format={json_format}")


def _intercept_standard_logging(level: str) -> None:
    """
    Intercept standard library logging and redirect to loguru.

    aiohttp and pymongo log through the stdlib; their records end up in
    the same sink as ours.
    """
    import logging

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                log_level = logger.level(record.levelname).name
            except ValueError:
                log_level = record.levelno

            frame, depth = logging.currentframe(), 2
            while frame and frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back  # type: ignore
                depth += 1

            logger.opt(depth=depth, exception=record.exc_info).log(
                log_level, record.getMessage()
            )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # pymongo's topology/heartbeat chatter is only useful when debugging
    noisy_level = "DEBUG" if level.upper() == "DEBUG" else "WARNING"
    for logger_name in ["pymongo", "aiohttp.access"]:
        logging.getLogger(logger_name).setLevel(noisy_level)


def is_configured() -> bool:
    return _CONFIGURED


__all__ = ["configure_logging", "is_configured", "logger"]
