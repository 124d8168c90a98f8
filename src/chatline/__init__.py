"""Chatline - authenticated AI chat with persisted history and live updates."""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .errors import (
    AuthError,
    ChatlineError,
    GatewayError,
    InvalidCredential,
    MissingCredential,
    StoreError,
)

__all__ = [
    "Settings",
    "get_settings",
    "AuthError",
    "ChatlineError",
    "GatewayError",
    "InvalidCredential",
    "MissingCredential",
    "StoreError",
]
