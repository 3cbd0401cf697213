"""
Logging utilities.

Every module logs through ``logging.getLogger(__name__)``; records propagate
to the ``companyrag`` package logger, which owns the only handler.
"""

import logging
import sys

PACKAGE_LOGGER = "companyrag"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _ensure_handler() -> logging.Logger:
    root = logging.getLogger(PACKAGE_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        if root.level == logging.NOTSET:
            root.setLevel(logging.INFO)
    return root


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    """
    Get a logger whose output reaches stderr.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger under the configured package logger
    """
    _ensure_handler()
    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """
    Set the log level for every companyrag logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    _ensure_handler().setLevel(level)
