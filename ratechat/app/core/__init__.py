"""Core utilities for the chat service."""

from ratechat.app.core.config import SEND_MESSAGE, Settings, settings
from ratechat.app.core.logging import get_logger, setup_logging

__all__ = [
    "SEND_MESSAGE",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
