"""
Local store adapter for the global state keyspace.

Executes the five primitives against the embedded engine on the owning node.
Each primitive runs in exactly one engine transaction:

    get        read transaction    missing key -> b""
    batch_get  read transaction    b"" per missing key, input order kept
    put        write transaction   unconditional overwrite
    delete     write transaction   missing key is not an error
    seek       read transaction    bounded, directional prefix scan

Invariants:
    - Not-found is never an error for get-like operations
    - Engine failures surface as StorageError naming the operation
    - A failing batch_get returns nothing (no partial results)
    - seek never returns a key outside valid_prefix or more than limit keys

How to change safely:
    - Keep seek semantics identical to what remote peers expect; the remote
      path and the local path must return the same bytes
    - Never retry inside this layer
"""

from __future__ import annotations

import logging
from contextlib import closing
from typing import Optional, Sequence

from .engine import EngineError, KVEngine
from .errors import StorageError
from .wire import Operation

logger = logging.getLogger(__name__)


def prefix_successor(prefix: bytes) -> Optional[bytes]:
    """Smallest byte string greater than every string starting with prefix.

    Returns None when no such string exists (empty or all-0xff prefix).
    """
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes([trimmed[-1] + 1])


def key_matches_prefix(key: bytes, valid_prefix: bytes, max_key_len: int) -> bool:
    """Whether key, compared up to max_key_len bytes, matches valid_prefix.

    max_key_len <= 0 compares the whole prefix.
    """
    n = len(valid_prefix)
    if max_key_len > 0:
        n = min(n, max_key_len)
    return key[:n] == valid_prefix[:n]


class LocalStore:
    """Global state primitives over a local KVEngine.

    Thread safety:
        Holds no state besides the engine; all isolation comes from
        engine transactions.

    Example:
        >>> store = LocalStore(engine)
        >>> await store.put(b"\\x00\\x01\\x02", b"x")
        >>> await store.get(b"\\x00\\x01\\x02")
        b'x'
    """

    def __init__(self, engine: KVEngine) -> None:
        """Initialize the store.

        Args:
            engine: An opened engine
        """
        self.engine = engine

    async def get(self, key: bytes) -> bytes:
        """Get a value.

        Args:
            key: Full key bytes

        Returns:
            The stored value, or b"" if the key is absent

        Raises:
            StorageError: If the engine fails
        """
        try:
            with self.engine.view() as txn:
                value = txn.get(key)
        except EngineError as e:
            raise StorageError(
                f"{Operation.GET.value}: Error copying value into new slice: {e}",
                Operation.GET.value,
            ) from e
        return value if value is not None else b""

    async def batch_get(self, keys: Sequence[bytes]) -> list[bytes]:
        """Get many values in one read transaction.

        Args:
            keys: Keys to look up

        Returns:
            Values positionally aligned with keys, b"" where absent

        Raises:
            StorageError: If the engine fails; no partial results
        """
        values: list[bytes] = []
        try:
            with self.engine.view() as txn:
                for key in keys:
                    value = txn.get(key)
                    values.append(value if value is not None else b"")
        except EngineError as e:
            raise StorageError(
                f"{Operation.BATCH_GET.value}: Error copying value into new slice: {e}",
                Operation.BATCH_GET.value,
            ) from e
        return values

    async def put(self, key: bytes, value: bytes) -> None:
        """Store a value, overwriting any existing one.

        Raises:
            StorageError: If the engine fails
        """
        try:
            with self.engine.update() as txn:
                txn.set(key, value)
        except EngineError as e:
            raise StorageError(f"{Operation.PUT.value}: {e}", Operation.PUT.value) from e

        logger.debug("Put global state key", extra={"key_prefix": key[:1].hex(), "size": len(value)})

    async def delete(self, key: bytes) -> None:
        """Delete a key. Deleting an absent key succeeds.

        Raises:
            StorageError: If the engine fails
        """
        try:
            with self.engine.update() as txn:
                txn.delete(key)
        except EngineError as e:
            raise StorageError(f"{Operation.DELETE.value}: {e}", Operation.DELETE.value) from e

    async def seek(
        self,
        start_key: bytes,
        valid_prefix: bytes,
        max_key_len: int,
        limit: int,
        reverse: bool,
        fetch_values: bool,
    ) -> tuple[list[bytes], list[bytes]]:
        """Bounded prefix scan.

        Forward scans start at the first key >= start_key. Reverse scans start
        at the greatest key that is <= start_key or extends start_key, as if
        start_key were padded with 0xff bytes.

        The scan continues while each key, compared up to max_key_len bytes,
        matches valid_prefix, and stops after limit keys. max_key_len never
        truncates returned keys.

        Args:
            start_key: Where to position the iterator
            valid_prefix: Prefix every returned key must match
            max_key_len: Comparison bound in bytes (<= 0 means unbounded)
            limit: Maximum number of keys (<= 0 returns nothing)
            reverse: Iterate in descending key order
            fetch_values: Whether to return values

        Returns:
            (keys, values); values is empty when fetch_values is False

        Raises:
            StorageError: If the engine fails
        """
        keys: list[bytes] = []
        values: list[bytes] = []
        if limit <= 0:
            return keys, values

        if reverse:
            bounds = {"upper": prefix_successor(start_key)}
        else:
            bounds = {"lower": start_key}

        try:
            with self.engine.view() as txn:
                with closing(
                    txn.iterate(reverse=reverse, fetch_values=fetch_values, **bounds)
                ) as it:
                    for key, value in it:
                        if not key_matches_prefix(key, valid_prefix, max_key_len):
                            break
                        keys.append(key)
                        if fetch_values:
                            values.append(value if value is not None else b"")
                        if len(keys) >= limit:
                            break
        except EngineError as e:
            raise StorageError(
                f"{Operation.SEEK.value}: Error getting paginated keys and values: {e}",
                Operation.SEEK.value,
            ) from e

        logger.debug(
            "Seek global state",
            extra={
                "start_key": start_key.hex(),
                "reverse": reverse,
                "found": len(keys),
            },
        )
        return keys, values
