"""Exception hierarchy for the chat service.

Every error carries a stable ``error_code`` (the taxonomy name surfaced to
clients) and the HTTP ``status_code`` it maps to. Transport code never
inspects messages; it only reads these two attributes.
"""

from __future__ import annotations

from typing import Any


class ChatlineError(Exception):
    """Base class for all chatline errors."""

    error_code = "InternalError"
    status_code = 500

    def __init__(self, message: str = "", details: dict[str, Any] | None = None):
        self.message = message or self.__class__.__doc__ or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class AuthError(ChatlineError):
    """Authentication failed."""

    error_code = "Unauthorized"
    status_code = 401


class MissingCredential(AuthError):
    """Authentication token missing."""


class InvalidCredential(AuthError):
    """Invalid or expired token."""


class BadRequestError(ChatlineError):
    """Malformed request."""

    error_code = "BadRequest"
    status_code = 400


class ConflictError(ChatlineError):
    """Resource already exists."""

    error_code = "Conflict"
    status_code = 409


class StoreError(ChatlineError):
    """Persistence unreachable or write rejected."""

    error_code = "StoreFailure"
    status_code = 500


class GatewayError(ChatlineError):
    """Upstream AI call failed."""

    error_code = "GatewayFailure"
    status_code = 500


class UpstreamUnavailable(GatewayError):
    """AI backend unreachable or timed out."""


class UpstreamRejected(GatewayError):
    """AI backend returned an error status."""


class NotInitializedError(ChatlineError):
    """Service components have not been initialised."""

    error_code = "ServiceUnavailable"
    status_code = 503
