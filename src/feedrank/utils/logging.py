"""Logging setup shared by every feedrank module."""

import logging
import os
import sys
from typing import Optional

LOG_LEVEL_ENV = "FEEDRANK_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("apscheduler",)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure root logging to stdout (and optionally a file).

    Args:
        level: Level name; defaults to ``$FEEDRANK_LOG_LEVEL`` or ``INFO``.
        log_file: Optional path of an extra file handler.
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {name}")

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=resolved, format=LOG_FORMAT, handlers=handlers, force=True)
    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(max(resolved, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    if not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name)
