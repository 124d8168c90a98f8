"""Database backends.

The rest of the service talks to storage through :class:`DatabaseBackend`
so that stores only ever see ``execute``/``fetchone``/``fetchall`` and a
``transaction`` context. Queries are written with ``?`` placeholders and
passed through :meth:`DatabaseBackend.adapt_query`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

logger = logging.getLogger(__name__)


class DatabaseBackend(ABC):
    """Abstract database backend."""

    backend_type = "abstract"

    @abstractmethod
    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement, returning the last inserted row id."""

    @abstractmethod
    def executescript(self, script: str) -> None:
        """Execute a multi-statement script (schema setup)."""

    @abstractmethod
    def fetchone(self, query: str, params: Sequence[Any] = ()) -> dict | None:
        """Fetch a single row as a dict."""

    @abstractmethod
    def fetchall(self, query: str, params: Sequence[Any] = ()) -> list[dict]:
        """Fetch all rows as dicts."""

    @abstractmethod
    def transaction(self):
        """Context manager grouping statements into one atomic unit."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""

    def adapt_query(self, query: str) -> str:
        """Translate ``?`` placeholders to the backend's paramstyle."""
        return query


class SQLiteBackend(DatabaseBackend):
    """SQLite backend sharing one connection across threads.

    All access is serialised through a re-entrant lock, so concurrent
    request handlers never interleave statements on the connection.
    """

    backend_type = "sqlite"

    def __init__(self, db_path: str = "chatline.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._in_transaction = False

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        with self._lock:
            cursor = self._get_conn().execute(query, tuple(params))
            return cursor.lastrowid or 0

    def executescript(self, script: str) -> None:
        with self._lock:
            self._get_conn().executescript(script)

    def fetchone(self, query: str, params: Sequence[Any] = ()) -> dict | None:
        with self._lock:
            row = self._get_conn().execute(query, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def fetchall(self, query: str, params: Sequence[Any] = ()) -> list[dict]:
        with self._lock:
            rows = self._get_conn().execute(query, tuple(params)).fetchall()
        return [dict(row) for row in rows]

    @contextmanager
    def transaction(self) -> Iterator[SQLiteBackend]:
        """Run the enclosed statements atomically.

        Nested use joins the outer transaction.
        """
        with self._lock:
            if self._in_transaction:
                yield self
                return
            conn = self._get_conn()
            conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield self
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
            finally:
                self._in_transaction = False

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("Closed SQLite connection to %s", self.db_path)


def create_backend(database_url: str) -> DatabaseBackend:
    """Create a backend from a ``sqlite:///`` URL."""
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        raise ValueError(f"Unsupported database URL: {database_url}")
    return SQLiteBackend(db_path=database_url[len(prefix) :])
