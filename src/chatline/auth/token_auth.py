"""Bearer-token verification and issuance.

Tokens are HS256 JWTs whose ``sub`` claim is the user id. The signing
key is read once at construction; verification touches no other state
and is safe to call from any number of concurrent requests.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from chatline.errors import InvalidCredential, MissingCredential

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "bearer"


def create_access_token(
    user_id: str,
    secret_key: str,
    expires_minutes: int = 60,
    algorithm: str = "HS256",
) -> str:
    """Create a signed access token for ``user_id``.

    Args:
        user_id: Identity the token grants.
        secret_key: Signing key.
        expires_minutes: Lifetime of the token. Zero or negative values
            produce an already-expired token.
        algorithm: JWT algorithm.

    Returns:
        Encoded JWT.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def verify_token(token: str, secret_key: str, algorithm: str = "HS256") -> str:
    """Verify a raw token and return the embedded user id.

    Raises:
        InvalidCredential: Bad signature, malformed payload, or expired.
    """
    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise InvalidCredential("Token has expired") from e
    except jwt.PyJWTError as e:
        raise InvalidCredential("Invalid or expired token") from e

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise InvalidCredential("Token does not identify a user")
    return user_id


def extract_bearer_token(raw_header: Optional[str]) -> str:
    """Pull the token out of an ``Authorization: Bearer <token>`` value.

    Raises:
        MissingCredential: Header absent or not in bearer form.
    """
    if not raw_header:
        raise MissingCredential("Authentication token missing")
    parts = raw_header.strip().split()
    if len(parts) != 2 or parts[0].lower() != _BEARER_PREFIX:
        raise MissingCredential("Authorization header must be 'Bearer <token>'")
    return parts[1]


class TokenValidator:
    """Validates bearer credentials against a process-wide signing key."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expires_minutes: int = 60,
    ):
        if not secret_key:
            raise ValueError("A signing key is required")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.expires_minutes = expires_minutes

    def validate(self, raw_header: Optional[str]) -> str:
        """Validate an Authorization header value.

        Returns:
            The user id embedded in the token.

        Raises:
            MissingCredential: Header absent or malformed.
            InvalidCredential: Signature, payload or expiry check failed.
        """
        token = extract_bearer_token(raw_header)
        return self.validate_token(token)

    def validate_token(self, token: str) -> str:
        """Validate a bare token (e.g. from a WebSocket query string)."""
        if not token:
            raise MissingCredential("Authentication token missing")
        try:
            return verify_token(token, self._secret_key, self.algorithm)
        except InvalidCredential:
            logger.info("Rejected invalid bearer token")
            raise

    def issue(self, user_id: str, expires_minutes: Optional[int] = None) -> str:
        """Issue a token signed with this validator's key."""
        return create_access_token(
            user_id,
            self._secret_key,
            expires_minutes=self.expires_minutes
            if expires_minutes is None
            else expires_minutes,
            algorithm=self.algorithm,
        )
