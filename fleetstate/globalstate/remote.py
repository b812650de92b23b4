"""
Remote proxy client for the global state keyspace.

Makes a primitive executed on this node behave as if executed on the owner:
the arguments are wrapped in a request envelope, POSTed to the owner's route
with the shared secret as a query parameter, and the response envelope is
unwrapped into the same shape the local store returns.

Invariants:
    - Exactly one HTTP request per primitive, never retried here
    - Transport failures and non-2xx answers raise RemoteUnavailableError
    - An undecodable 2xx body raises RemoteResponseError
    - The configured timeout bounds every call (0 disables it)
    - The shared secret never appears in logs or error messages

How to change safely:
    - Keep request fields in sync with wire.py and the owner's handlers
    - Retry policy belongs to callers, not to this client
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Type, TypeVar

import httpx

from .config import GlobalStateConfig
from .errors import MalformedRequestError, RemoteResponseError, RemoteUnavailableError
from .wire import (
    SHARED_SECRET_PARAM,
    BatchGetRequest,
    BatchGetResponse,
    DeleteRequest,
    DeleteResponse,
    Envelope,
    GetRequest,
    GetResponse,
    PutRequest,
    PutResponse,
    SeekRequest,
    SeekResponse,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Envelope)


class RemoteProxyClient:
    """HTTP client that forwards primitives to the owning node.

    Example:
        >>> config = GlobalStateConfig(remote_node="http://owner:17001", shared_secret="s3cret")
        >>> async with RemoteProxyClient(config) as remote:
        ...     await remote.put(b"\\x00\\x01\\x02", b"x")
        ...     await remote.get(b"\\x00\\x01\\x02")
        b'x'
    """

    def __init__(
        self,
        config: GlobalStateConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Ownership configuration; remote_node must be set
            http_client: Optional pre-built client (tests, shared pools).
                The caller keeps ownership of an injected client.

        Raises:
            ValueError: If no remote node is configured
        """
        if not config.is_remote:
            raise ValueError("RemoteProxyClient requires GlobalStateConfig.remote_node")
        self.config = config
        timeout = config.remote_timeout_seconds or None
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @property
    def address(self) -> str:
        return self.config.remote_node

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> RemoteProxyClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _call(self, request: Envelope, response_type: Type[R]) -> R:
        """POST one envelope and decode the answer."""
        operation = request.operation
        url = f"{self.config.remote_node}{operation.path}"

        try:
            response = await self._client.post(
                url,
                params={SHARED_SECRET_PARAM: self.config.shared_secret},
                content=request.to_json(),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"{operation.value}: Error processing remote request",
                extra={"remote_node": self.address, "error": type(e).__name__},
            )
            raise RemoteUnavailableError(
                f"{operation.value}: Error processing remote request: {type(e).__name__}: {e}",
                address=self.address,
                operation=operation.value,
            ) from e

        if not response.is_success:
            detail = _error_detail(response)
            logger.warning(
                f"{operation.value}: Remote node answered {response.status_code}",
                extra={"remote_node": self.address, "status_code": response.status_code},
            )
            raise RemoteUnavailableError(
                f"{operation.value}: Remote node answered {response.status_code}: {detail}",
                address=self.address,
                operation=operation.value,
                status_code=response.status_code,
            )

        try:
            return response_type.from_json(response.content)
        except MalformedRequestError as e:
            raise RemoteResponseError(
                f"{operation.value}: Problem decoding remote response: {e.message}",
                operation=operation.value,
            ) from e

    async def put(self, key: bytes, value: bytes) -> None:
        await self._call(PutRequest(key=key, value=value), PutResponse)

    async def get(self, key: bytes) -> bytes:
        res = await self._call(GetRequest(key=key), GetResponse)
        return res.value

    async def batch_get(self, keys: Sequence[bytes]) -> list[bytes]:
        res = await self._call(BatchGetRequest(key_list=list(keys)), BatchGetResponse)
        return res.value_list

    async def delete(self, key: bytes) -> None:
        await self._call(DeleteRequest(key=key), DeleteResponse)

    async def seek(
        self,
        start_key: bytes,
        valid_prefix: bytes,
        max_key_len: int,
        limit: int,
        reverse: bool,
        fetch_values: bool,
    ) -> tuple[list[bytes], list[bytes]]:
        res = await self._call(
            SeekRequest(
                start_prefix=start_key,
                valid_for_prefix=valid_prefix,
                max_key_len=max_key_len,
                num_to_fetch=limit,
                reverse=reverse,
                fetch_values=fetch_values,
            ),
            SeekResponse,
        )
        return res.keys_found, res.vals_found


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from an owner's error answer."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return response.text[:200]
