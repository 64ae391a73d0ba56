"""Utility modules."""

from .logger import setup_logger, init_app_logger, get_app_logger, preview
from .formatter import markdown_to_chat, split_for_chat, truncate_for_chat

__all__ = [
    "setup_logger",
    "preview",
    "init_app_logger",
    "get_app_logger",
    "markdown_to_chat",
    "split_for_chat",
    "truncate_for_chat",
]
