"""Input validation and log sanitisation helpers."""

from __future__ import annotations

import re

_REDACTED = "[REDACTED]"

_SENSITIVE_PATTERNS = [
    # Authorization header values
    (re.compile(r"(Bearer\s+)[A-Za-z0-9\-_\.=]+", re.IGNORECASE), r"\1" + _REDACTED),
    # Bare JWTs (header.payload.signature)
    (
        re.compile(r"\beyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+"),
        _REDACTED,
    ),
    # OpenAI-style API keys
    (re.compile(r"\bsk-[A-Za-z0-9\-_]{16,}"), _REDACTED),
    # key=value secrets in query strings or reprs
    (
        re.compile(
            r"((?:api[_-]?key|token|password|secret)[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+",
            re.IGNORECASE,
        ),
        r"\1" + _REDACTED,
    ),
]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def sanitize_log_message(message: str) -> str:
    """Redact credentials from a log message.

    Args:
        message: Raw log text.

    Returns:
        The message with tokens, API keys and passwords replaced.
    """
    for pattern, replacement in _SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def normalize_email(email: str) -> str:
    """Lower-case and strip an email address."""
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    """Loose syntactic check for an email address."""
    return bool(_EMAIL_RE.match(email))
