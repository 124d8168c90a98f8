"""Authentication: bearer-token validation and the user credential store."""

from .token_auth import (
    TokenValidator,
    create_access_token,
    extract_bearer_token,
    verify_token,
)
from .users import UserStore

__all__ = [
    "TokenValidator",
    "UserStore",
    "create_access_token",
    "extract_bearer_token",
    "verify_token",
]
