"""
Embedded key-value engine abstraction for the global state service.

This module provides a pluggable engine interface supporting:
- SQLite (single file, production)
- In-memory (testing and local development)

Only the owning node opens an engine; every other node forwards its
operations to the owner and never touches storage.

Invariants:
    - Keys are ordered by unsigned byte comparison
    - Transactions are atomic; readers never see partial writes
    - Not-found is a None result, never an exception

How to change safely:
    - New engines must implement the KVEngine protocol
    - Verify byte ordering with keys containing 0x00 and 0xff
"""

from .base import (
    EngineClosedError,
    EngineError,
    KVEngine,
    KVTransaction,
    ReadOnlyTransactionError,
    create_engine,
)
from .memory import InMemoryEngine
from .sqlite import SqliteEngine

__all__ = [
    # Protocol and errors
    "KVEngine",
    "KVTransaction",
    "EngineError",
    "EngineClosedError",
    "ReadOnlyTransactionError",
    # Factory
    "create_engine",
    # Implementations
    "SqliteEngine",
    "InMemoryEngine",
]
