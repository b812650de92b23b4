"""
Dispatch layer for the global state keyspace.

GlobalState is the one place that decides whether a primitive runs against
the local store or is forwarded to the remote owner. Everything else in the
service is owner-agnostic.

    caller -> GlobalState -> LocalStore                      (this node owns the data)
    caller -> GlobalState -> RemoteProxyClient -> owner's handlers
                          -> owner's GlobalState -> owner's LocalStore

Invariants:
    - The decision depends only on GlobalStateConfig, fixed at construction
    - Remote failures are re-raised as DispatchError naming the operation,
      with the original error as __cause__
    - Local failures propagate unchanged (they already name the operation)
    - Results have the same shape and bytes on both paths

How to change safely:
    - Never add a second place that checks for a remote owner
    - New primitives must be added here, to LocalStore, to
      RemoteProxyClient and to the HTTP handlers together
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .config import GlobalStateConfig
from .errors import DispatchError, GlobalStateError
from .remote import RemoteProxyClient
from .store import LocalStore
from .wire import Operation

logger = logging.getLogger(__name__)


class GlobalState:
    """Fleet-wide key-value namespace, local or proxied.

    Attributes:
        config: Ownership configuration
        local: Local store (required when this node is the owner)
        remote: Remote client (required when a remote owner is configured)

    Example:
        >>> gs = GlobalState(GlobalStateConfig(), local=LocalStore(engine))
        >>> await gs.put(b"\\x00\\x01\\x02", b"x")
        >>> await gs.batch_get([b"\\x00\\x01\\x02", b"\\x09\\x09\\x09"])
        [b'x', b'']
    """

    def __init__(
        self,
        config: GlobalStateConfig,
        local: Optional[LocalStore] = None,
        remote: Optional[RemoteProxyClient] = None,
    ) -> None:
        """Initialize the dispatch layer.

        Args:
            config: Ownership configuration
            local: Local store, used when config has no remote owner
            remote: Remote client; built from config when omitted

        Raises:
            ValueError: If the backend for the configured mode is missing
        """
        self.config = config
        self._remote_mode = config.is_remote
        if self._remote_mode:
            self.remote = remote or RemoteProxyClient(config)
            self.local = None
        else:
            if local is None:
                raise ValueError("GlobalState without a remote owner requires a LocalStore")
            self.local = local
            self.remote = None

        logger.info(
            "Global state dispatch configured",
            extra={
                "mode": "remote" if self._remote_mode else "local",
                "remote_node": config.remote_node or None,
            },
        )

    @property
    def is_remote(self) -> bool:
        """Whether primitives are forwarded to a remote owner."""
        return self._remote_mode

    async def close(self) -> None:
        """Release the remote client, if any."""
        if self.remote is not None:
            await self.remote.close()

    def _wrap(self, operation: Operation, error: GlobalStateError) -> DispatchError:
        return DispatchError(operation.value, error)

    async def put(self, key: bytes, value: bytes) -> None:
        """Store value under key on the owner."""
        if self._remote_mode:
            try:
                await self.remote.put(key, value)
            except GlobalStateError as e:
                raise self._wrap(Operation.PUT, e) from e
            return
        await self.local.put(key, value)

    async def get(self, key: bytes) -> bytes:
        """Value under key on the owner, or b"" if absent."""
        if self._remote_mode:
            try:
                return await self.remote.get(key)
            except GlobalStateError as e:
                raise self._wrap(Operation.GET, e) from e
        return await self.local.get(key)

    async def batch_get(self, keys: Sequence[bytes]) -> list[bytes]:
        """Values aligned with keys, b"" where absent."""
        if self._remote_mode:
            try:
                return await self.remote.batch_get(keys)
            except GlobalStateError as e:
                raise self._wrap(Operation.BATCH_GET, e) from e
        return await self.local.batch_get(keys)

    async def delete(self, key: bytes) -> None:
        """Delete key on the owner; absent keys are not an error."""
        if self._remote_mode:
            try:
                await self.remote.delete(key)
            except GlobalStateError as e:
                raise self._wrap(Operation.DELETE, e) from e
            return
        await self.local.delete(key)

    async def seek(
        self,
        start_key: bytes,
        valid_prefix: bytes,
        max_key_len: int,
        limit: int,
        reverse: bool = False,
        fetch_values: bool = False,
    ) -> tuple[list[bytes], list[bytes]]:
        """Bounded prefix scan on the owner. See LocalStore.seek."""
        if self._remote_mode:
            try:
                return await self.remote.seek(
                    start_key, valid_prefix, max_key_len, limit, reverse, fetch_values
                )
            except GlobalStateError as e:
                raise self._wrap(Operation.SEEK, e) from e
        return await self.local.seek(
            start_key, valid_prefix, max_key_len, limit, reverse, fetch_values
        )
