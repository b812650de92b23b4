"""
Base protocol and types for the embedded key-value engine.

The engine is the single shared, mutable resource on the owning node. It
provides transactions over a flat, byte-ordered keyspace:

    with engine.view() as txn:       # read-only transaction
        value = txn.get(key)
    with engine.update() as txn:     # read-write transaction
        txn.set(key, value)

Invariants:
    - Keys are ordered by unsigned byte comparison
    - A transaction either commits completely or not at all
    - get() returns None for a missing key; it never raises for not-found
    - iterate() yields keys in order (descending when reverse=True)

How to change safely:
    - Protocol changes require updating all implementations
    - Implementations translate their native errors into EngineError
"""

from __future__ import annotations

from abc import abstractmethod
from contextlib import AbstractContextManager
from typing import (
    TYPE_CHECKING,
    Iterator,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)
import logging

if TYPE_CHECKING:
    from ..config import StorageConfig

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Base exception for engine failures (I/O, corruption, locking)."""
    pass


class EngineClosedError(EngineError):
    """Engine used before open() or after close()."""
    pass


class ReadOnlyTransactionError(EngineError):
    """Write attempted inside a view() transaction."""
    pass


@runtime_checkable
class KVTransaction(Protocol):
    """A transaction handle, valid only inside its context manager."""

    @abstractmethod
    def get(self, key: bytes) -> Optional[bytes]:
        """Return the value for key, or None if the key is absent."""
        ...

    @abstractmethod
    def set(self, key: bytes, value: bytes) -> None:
        """Store value under key, replacing any existing value."""
        ...

    @abstractmethod
    def delete(self, key: bytes) -> None:
        """Remove key. Removing an absent key is not an error."""
        ...

    @abstractmethod
    def iterate(
        self,
        lower: Optional[bytes] = None,
        upper: Optional[bytes] = None,
        reverse: bool = False,
        fetch_values: bool = True,
    ) -> Iterator[Tuple[bytes, Optional[bytes]]]:
        """Iterate over keys in [lower, upper).

        Args:
            lower: Inclusive lower bound (None = unbounded)
            upper: Exclusive upper bound (None = unbounded)
            reverse: Yield keys in descending order
            fetch_values: When False, yielded values are None

        Yields:
            (key, value) pairs in key order
        """
        ...


@runtime_checkable
class KVEngine(Protocol):
    """Protocol for embedded transactional key-value engines.

    Concurrency contract:
        - Readers never observe a partially applied write transaction
        - Write transactions serialize among themselves
        - The engine does its own locking; callers add none
    """

    @abstractmethod
    def open(self) -> None:
        """Open the engine, creating storage if needed.

        Raises:
            EngineError: If storage cannot be opened
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Release resources. Safe to call more than once."""
        ...

    @abstractmethod
    def view(self) -> AbstractContextManager[KVTransaction]:
        """Start a read-only transaction."""
        ...

    @abstractmethod
    def update(self) -> AbstractContextManager[KVTransaction]:
        """Start a read-write transaction, committed on clean exit."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the engine is open."""
        ...


def create_engine(config: "StorageConfig") -> KVEngine:
    """Factory function to create an engine from configuration.

    Args:
        config: Storage configuration

    Returns:
        Appropriate KVEngine implementation (not yet opened)

    Raises:
        ValueError: If the engine kind is not supported
    """
    from ..config import EngineKind
    from .memory import InMemoryEngine
    from .sqlite import SqliteEngine

    if config.engine == EngineKind.SQLITE:
        return SqliteEngine(
            path=config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            cache_size_pages=config.cache_size_pages,
        )
    elif config.engine == EngineKind.MEMORY:
        return InMemoryEngine()
    else:
        raise ValueError(f"Unsupported storage engine: {config.engine}")
