"""Shared utilities: logging and configuration."""

from .config import Config, Settings, load_settings
from .logging import get_logger, set_log_level

__all__ = [
    "Config",
    "Settings",
    "load_settings",
    "get_logger",
    "set_log_level",
]
