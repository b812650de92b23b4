"""
SQLite-backed key-value engine.

Stores the whole global state keyspace in one table of a single SQLite file:

    kv:
        - key BLOB PRIMARY KEY   (compared with memcmp, i.e. byte order)
        - value BLOB NOT NULL
        - WITHOUT ROWID

Invariants:
    - One connection per transaction, closed when the transaction ends
    - Write transactions use BEGIN IMMEDIATE so writers serialize
    - Read transactions see one consistent snapshot (WAL mode)
    - sqlite3 errors surface as EngineError, never as sqlite3.Error

How to change safely:
    - Schema changes must keep byte ordering of the key column
    - Test with large keyspaces before changing PRAGMAs
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Optional

from .base import EngineClosedError, EngineError, ReadOnlyTransactionError

logger = logging.getLogger(__name__)


class SqliteTransaction:
    """Transaction handle bound to one SQLite connection."""

    def __init__(self, conn: sqlite3.Connection, writable: bool) -> None:
        self._conn = conn
        self._writable = writable

    def get(self, key: bytes) -> Optional[bytes]:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (bytes(key),)).fetchone()
        if row is None:
            return None
        return bytes(row[0])

    def set(self, key: bytes, value: bytes) -> None:
        if not self._writable:
            raise ReadOnlyTransactionError("set() inside a read-only transaction")
        self._conn.execute(
            "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
            (bytes(key), bytes(value)),
        )

    def delete(self, key: bytes) -> None:
        if not self._writable:
            raise ReadOnlyTransactionError("delete() inside a read-only transaction")
        self._conn.execute("DELETE FROM kv WHERE key = ?", (bytes(key),))

    def iterate(
        self,
        lower: Optional[bytes] = None,
        upper: Optional[bytes] = None,
        reverse: bool = False,
        fetch_values: bool = True,
    ) -> Iterator[tuple[bytes, Optional[bytes]]]:
        columns = "key, value" if fetch_values else "key"
        clauses = []
        params: list[bytes] = []
        if lower is not None:
            clauses.append("key >= ?")
            params.append(bytes(lower))
        if upper is not None:
            clauses.append("key < ?")
            params.append(bytes(upper))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = "DESC" if reverse else "ASC"

        try:
            cursor = self._conn.execute(
                f"SELECT {columns} FROM kv {where} ORDER BY key {order}", params
            )
            for row in cursor:
                yield bytes(row[0]), (bytes(row[1]) if fetch_values else None)
        except sqlite3.Error as e:
            raise EngineError(f"Iteration failed: {e}") from e


class SqliteEngine:
    """Single-file SQLite implementation of KVEngine.

    Thread safety:
        Each transaction opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> engine = SqliteEngine("/var/lib/globalstate/global_state.db")
        >>> engine.open()
        >>> with engine.update() as txn:
        ...     txn.set(b"\\x00key", b"value")
    """

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the engine.

        Args:
            path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        """Create the database file and schema if they don't exist."""
        if self._open:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EngineError(f"Cannot create data directory {self.path.parent}: {e}") from e

        self._open = True
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS kv ("
                    " key BLOB PRIMARY KEY,"
                    " value BLOB NOT NULL"
                    ") WITHOUT ROWID"
                )
        except EngineError:
            self._open = False
            raise
        logger.info(f"Opened global state database: {self.path}")

    def close(self) -> None:
        if self._open:
            self._open = False
            logger.info(f"Closed global state database: {self.path}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a configured connection.

        Raises:
            EngineClosedError: If the engine is not open
            EngineError: If SQLite cannot open or configure the file
        """
        if not self._open:
            raise EngineClosedError("Engine is not open")

        try:
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise EngineError(f"Cannot open {self.path}: {e}") from e

        try:
            try:
                conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
                conn.execute(f"PRAGMA cache_size = {int(self.cache_size_pages)}")
                if self.wal_mode:
                    conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
            except sqlite3.Error as e:
                raise EngineError(f"Cannot configure {self.path}: {e}") from e
            yield conn
        except sqlite3.Error as e:
            raise EngineError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, writable: bool) -> Iterator[SqliteTransaction]:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE" if writable else "BEGIN")
            try:
                yield SqliteTransaction(conn, writable)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def view(self) -> AbstractContextManager[SqliteTransaction]:
        return self._transaction(writable=False)

    def update(self) -> AbstractContextManager[SqliteTransaction]:
        return self._transaction(writable=True)
