"""Logging setup for the bot process."""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)-8s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_level: str | None = None) -> logging.Logger:
    """Configure the ``sprintbot`` logger with a console handler.

    Level comes from the argument, then ``LOG_LEVEL``, then INFO. Calling this
    again replaces the handler instead of stacking another one.
    """
    log_level = log_level or os.getenv("LOG_LEVEL", "INFO")

    logger = logging.getLogger("sprintbot")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)
    return logger
