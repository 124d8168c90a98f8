"""Configuration module for the chat service."""

from .settings import Settings, get_settings
from .logging import configure_logging, JSONFormatter, SanitizingFilter, TextFormatter

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "JSONFormatter",
    "SanitizingFilter",
    "TextFormatter",
]
