"""User credential store backing registration and login."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import bcrypt

from chatline.errors import BadRequestError, ConflictError, StoreError
from chatline.utils.validation import is_valid_email, normalize_email

if TYPE_CHECKING:
    from chatline.state.backends import DatabaseBackend

logger = logging.getLogger(__name__)

_BCRYPT_ROUNDS = 10
# bcrypt only considers the first 72 bytes
_MAX_PASSWORD_BYTES = 72


class UserStore:
    """Registers users and checks their passwords."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
    """

    def __init__(self, backend: "DatabaseBackend", bcrypt_rounds: int = _BCRYPT_ROUNDS):
        self.backend = backend
        self.bcrypt_rounds = bcrypt_rounds
        try:
            self.backend.executescript(self.SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"Could not initialise user store: {e}") from e

    @staticmethod
    def _check_input(email: str, password: str) -> str:
        if not email or not password:
            raise BadRequestError("Email and password are required")
        email = normalize_email(email)
        if not is_valid_email(email):
            raise BadRequestError("Email address is not valid")
        if len(password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            raise BadRequestError(
                f"Password must not exceed {_MAX_PASSWORD_BYTES} bytes"
            )
        return email

    def register(self, email: str, password: str) -> str:
        """Create a user.

        Returns:
            The new user id.

        Raises:
            BadRequestError: Missing or malformed email/password.
            ConflictError: Email already registered.
            StoreError: Persistence failure.
        """
        email = self._check_input(email, password)
        password_hash = bcrypt.hashpw(
            password.encode("utf-8"), bcrypt.gensalt(rounds=self.bcrypt_rounds)
        ).decode("utf-8")
        user_id = uuid.uuid4().hex

        query = """
            INSERT INTO users (id, email, password_hash, created_at)
            VALUES (?, ?, ?, ?)
        """
        try:
            self.backend.execute(
                self.backend.adapt_query(query),
                (user_id, email, password_hash, datetime.now(timezone.utc).isoformat()),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError("User already exists") from e
        except sqlite3.Error as e:
            logger.error("Failed to register user: %s", e)
            raise StoreError("Could not create user") from e

        logger.info("Registered user %s", user_id)
        return user_id

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Check credentials.

        Returns:
            The user id if the password matches, otherwise None.
        """
        email = self._check_input(email, password)
        query = "SELECT id, password_hash FROM users WHERE email = ?"
        try:
            row = self.backend.fetchone(self.backend.adapt_query(query), (email,))
        except sqlite3.Error as e:
            raise StoreError("Could not read user") from e
        if not row:
            return None
        if bcrypt.checkpw(password.encode("utf-8"), row["password_hash"].encode("utf-8")):
            return row["id"]
        return None
