"""Durable, per-user ordered message log."""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from chatline.errors import BadRequestError, StoreError

from .models import Message, MessageRole

if TYPE_CHECKING:
    from chatline.state.backends import DatabaseBackend

logger = logging.getLogger(__name__)

# Fixed-width so lexical order in SQL equals chronological order.
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"
_TICK = timedelta(microseconds=1)


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


class MessageStore:
    """Stores chat messages, always scoped to the owning user.

    Every query and write takes the caller's user id as a parameter; there
    is no method that reads across users. Ordering within a
    user is ``timestamp`` then insertion sequence.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS messages (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            user_id TEXT NOT NULL,
            sender TEXT NOT NULL CHECK (sender IN ('user', 'ai')),
            text TEXT NOT NULL,
            timestamp TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_messages_user_order
        ON messages(user_id, timestamp, seq);
    """

    def __init__(self, backend: "DatabaseBackend"):
        """Initialize with database backend.

        Args:
            backend: Database backend instance.
        """
        self.backend = backend
        self._clock_lock = threading.Lock()
        self._init_schema()
        self._last_timestamp = self._load_last_timestamp()

    def _init_schema(self) -> None:
        try:
            self.backend.executescript(self.SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"Could not initialise message store: {e}") from e

    def _load_last_timestamp(self) -> datetime | None:
        try:
            row = self.backend.fetchone(
                self.backend.adapt_query("SELECT MAX(timestamp) AS ts FROM messages")
            )
        except sqlite3.Error as e:
            raise StoreError(f"Could not read message store: {e}") from e
        if row and row["ts"]:
            return datetime.fromisoformat(row["ts"])
        return None

    def _next_timestamp(self) -> datetime:
        """Return a UTC timestamp strictly later than any previously issued."""
        with self._clock_lock:
            now = datetime.now(timezone.utc)
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + _TICK
            self._last_timestamp = now
            return now

    @staticmethod
    def _require_user(user_id: str) -> str:
        if not isinstance(user_id, str) or not user_id.strip():
            raise BadRequestError("A user id is required")
        return user_id

    def append(self, user_id: str, role: MessageRole | str, text: str) -> Message:
        """Persist a message for ``user_id``.

        Args:
            user_id: Owner of the message (the authenticated caller).
            role: ``user`` or ``ai``.
            text: Message body.

        Returns:
            The stored Message with its assigned id and timestamp.

        Raises:
            StoreError: If the write fails for any reason.
        """
        user_id = self._require_user(user_id)
        try:
            role = MessageRole(role)
        except ValueError as e:
            raise BadRequestError(f"Unknown sender: {role!r}") from e

        message_id = str(uuid.uuid4())
        query = """
            INSERT INTO messages (id, user_id, sender, text, timestamp)
            VALUES (?, ?, ?, ?, ?)
        """
        # Timestamp assignment and insert happen under one transaction so
        # insertion order never disagrees with timestamp order.
        try:
            with self.backend.transaction():
                timestamp = self._next_timestamp()
                self.backend.execute(
                    self.backend.adapt_query(query),
                    (
                        message_id,
                        user_id,
                        role.value,
                        text,
                        _format_timestamp(timestamp),
                    ),
                )
        except sqlite3.Error as e:
            logger.error("Failed to persist message for user %s: %s", user_id, e)
            raise StoreError("Could not save message") from e

        logger.debug("Stored %s message %s for user %s", role.value, message_id, user_id)
        return Message(
            id=message_id,
            user_id=user_id,
            role=role,
            text=text,
            timestamp=timestamp,
        )

    def list_by_user(self, user_id: str) -> list[Message]:
        """Get a user's messages, oldest first.

        Args:
            user_id: The owner whose history is requested.

        Returns:
            List of Messages; empty when the user has no history.

        Raises:
            StoreError: If the read fails.
        """
        user_id = self._require_user(user_id)
        query = """
            SELECT id, user_id, sender, text, timestamp FROM messages
            WHERE user_id = ?
            ORDER BY timestamp ASC, seq ASC
        """
        try:
            rows = self.backend.fetchall(self.backend.adapt_query(query), (user_id,))
        except sqlite3.Error as e:
            logger.error("Failed to fetch messages for user %s: %s", user_id, e)
            raise StoreError("Could not fetch messages") from e
        return [Message.from_db_row(row) for row in rows]

    def count_by_user(self, user_id: str) -> int:
        """Get the number of messages a user owns."""
        user_id = self._require_user(user_id)
        query = "SELECT COUNT(*) AS count FROM messages WHERE user_id = ?"
        try:
            row = self.backend.fetchone(self.backend.adapt_query(query), (user_id,))
        except sqlite3.Error as e:
            raise StoreError("Could not count messages") from e
        return row["count"] if row else 0
