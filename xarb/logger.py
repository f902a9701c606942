from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from typing import Dict

_loggers: Dict[str, logging.Logger] = {}

_formatter = logging.Formatter(
    "[%(asctime)s][%(levelname)s][%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def get_logger(name: str) -> logging.Logger:
    """Return a cached logger with console output and, when LOG_DIR is set,
    a daily-rotating file handler (7 days kept).

    Level comes from LOG_LEVEL (default INFO).
    """
    if name in _loggers:
        return _loggers[name]
    logger = logging.getLogger(name)
    if logger.hasHandlers():
        logger.handlers.clear()
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logger.setLevel(level)

    console = logging.StreamHandler()
    console.setFormatter(_formatter)
    logger.addHandler(console)

    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        fh = TimedRotatingFileHandler(
            os.path.join(log_dir, "xarb.log"), when="midnight", backupCount=7, encoding="utf-8"
        )
        fh.setFormatter(_formatter)
        logger.addHandler(fh)

    logger.propagate = True
    _loggers[name] = logger
    return logger
