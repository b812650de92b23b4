"""
In-memory key-value engine for testing.

This module provides a simple in-memory engine for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Same ordering and transaction guarantees as SqliteEngine
    - Transactions are serialized by a single re-entrant lock

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the KVEngine protocol
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Dict, List, Optional, Tuple

from .base import EngineClosedError, ReadOnlyTransactionError

logger = logging.getLogger(__name__)

_MISSING = object()


class InMemoryTransaction:
    """Transaction over InMemoryEngine state.

    Writes apply immediately and are recorded in an undo log, which is
    replayed backwards if the transaction fails.
    """

    def __init__(self, engine: InMemoryEngine, writable: bool) -> None:
        self._engine = engine
        self._writable = writable
        self._undo: List[Tuple[bytes, object]] = []

    def get(self, key: bytes) -> Optional[bytes]:
        return self._engine._data.get(bytes(key))

    def set(self, key: bytes, value: bytes) -> None:
        if not self._writable:
            raise ReadOnlyTransactionError("set() inside a read-only transaction")
        key = bytes(key)
        self._undo.append((key, self._engine._data.get(key, _MISSING)))
        self._engine._put(key, bytes(value))

    def delete(self, key: bytes) -> None:
        if not self._writable:
            raise ReadOnlyTransactionError("delete() inside a read-only transaction")
        key = bytes(key)
        previous = self._engine._data.get(key, _MISSING)
        if previous is _MISSING:
            return
        self._undo.append((key, previous))
        self._engine._remove(key)

    def iterate(
        self,
        lower: Optional[bytes] = None,
        upper: Optional[bytes] = None,
        reverse: bool = False,
        fetch_values: bool = True,
    ) -> Iterator[Tuple[bytes, Optional[bytes]]]:
        keys = self._engine._keys
        start = 0 if lower is None else bisect.bisect_left(keys, bytes(lower))
        stop = len(keys) if upper is None else bisect.bisect_left(keys, bytes(upper))
        # Snapshot the range so writes in the same transaction don't shift it
        selected = keys[start:stop]
        if reverse:
            selected.reverse()
        for key in selected:
            yield key, (self._engine._data[key] if fetch_values else None)

    def _rollback(self) -> None:
        for key, previous in reversed(self._undo):
            if previous is _MISSING:
                self._engine._remove(key)
            else:
                self._engine._put(key, previous)  # type: ignore[arg-type]
        self._undo.clear()


class InMemoryEngine:
    """In-memory implementation of KVEngine for testing.

    Thread safety:
        Every transaction holds an RLock for its whole duration.

    Example:
        >>> engine = InMemoryEngine()
        >>> engine.open()
        >>> with engine.update() as txn:
        ...     txn.set(b"\\x00key", b"value")
    """

    def __init__(self) -> None:
        self._data: Dict[bytes, bytes] = {}
        self._keys: List[bytes] = []
        self._lock = threading.RLock()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True
        logger.debug("InMemoryEngine opened")

    def close(self) -> None:
        """Close and clear all data."""
        self._open = False
        with self._lock:
            self._data.clear()
            self._keys.clear()
        logger.debug("InMemoryEngine closed")

    def _put(self, key: bytes, value: bytes) -> None:
        if key not in self._data:
            bisect.insort(self._keys, key)
        self._data[key] = value

    def _remove(self, key: bytes) -> None:
        if key in self._data:
            del self._data[key]
            del self._keys[bisect.bisect_left(self._keys, key)]

    @contextmanager
    def _transaction(self, writable: bool) -> Iterator[InMemoryTransaction]:
        if not self._open:
            raise EngineClosedError("Engine is not open")
        with self._lock:
            txn = InMemoryTransaction(self, writable)
            try:
                yield txn
            except BaseException:
                txn._rollback()
                raise

    def view(self) -> AbstractContextManager[InMemoryTransaction]:
        return self._transaction(writable=False)

    def update(self) -> AbstractContextManager[InMemoryTransaction]:
        return self._transaction(writable=True)

    # =========================================================================
    # Testing helpers
    # =========================================================================

    def __len__(self) -> int:
        return len(self._data)

    def dump(self) -> Dict[bytes, bytes]:
        """Return a copy of all stored pairs."""
        with self._lock:
            return dict(self._data)
