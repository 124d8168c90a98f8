"""Chatline utility modules."""

from chatline.utils.validation import (
    is_valid_email,
    normalize_email,
    sanitize_log_message,
)

__all__ = [
    "is_valid_email",
    "normalize_email",
    "sanitize_log_message",
]
