"""
Error types for the global state service.

This module defines all exception types raised by the service:
- GlobalStateError: Base exception
- InvalidInputError: Key construction or validation failures
- MalformedRequestError: Request envelope cannot be decoded
- StorageError: Local engine failures
- RemoteUnavailableError: Owner node unreachable or answered non-2xx
- RemoteResponseError: Owner answered with an undecodable body
- DispatchError: A forwarded primitive failed
- MalformedRecordError: A stored value does not match its record kind

Invariants:
    - All errors inherit from GlobalStateError
    - Absent records are never errors
    - Error messages never include the shared secret
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class GlobalStateError(Exception):
    """Base exception for all global state errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "GLOBAL_STATE_ERROR"
        self.details = details or {}


class InvalidInputError(GlobalStateError):
    """A key field failed validation or normalization.

    Raised when:
    - A phone number does not parse to an international number
    - A username is empty
    - A fixed-width field has the wrong length
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        code: str = "INVALID_INPUT",
    ) -> None:
        super().__init__(message, code=code, details={"field": field_name})
        self.field_name = field_name


class MalformedRequestError(InvalidInputError):
    """A request or response envelope could not be decoded."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(message, field_name=field_name, code="MALFORMED_REQUEST")


class StorageError(GlobalStateError):
    """The local key-value engine failed.

    Not raised for missing keys.
    """

    def __init__(self, message: str, operation: str) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation


class RemoteUnavailableError(GlobalStateError):
    """The remote owner could not serve the request.

    Raised when:
    - The connection fails or times out
    - The owner answers with a non-2xx status
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="REMOTE_UNAVAILABLE",
            details={
                "address": address,
                "operation": operation,
                "status_code": status_code,
            },
        )
        self.address = address
        self.operation = operation
        self.status_code = status_code


class RemoteResponseError(GlobalStateError):
    """The remote owner answered 2xx but the body did not decode."""

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="REMOTE_RESPONSE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation


class DispatchError(GlobalStateError):
    """A primitive forwarded to the remote owner failed.

    The original error is available as ``__cause__`` and ``cause``.
    """

    def __init__(self, operation: str, cause: GlobalStateError) -> None:
        message = cause.message
        if not message.startswith(f"{operation}:"):
            message = f"{operation}: {message}"
        super().__init__(
            message,
            code="DISPATCH_ERROR",
            details={**cause.details, "operation": operation, "cause_code": cause.code},
        )
        self.operation = operation
        self.cause = cause


class MalformedRecordError(GlobalStateError):
    """A stored value does not have the shape its record kind requires.

    Raised by the typed record accessors, e.g. for a presence-marker key
    holding something other than the marker.
    """

    def __init__(self, message: str, key: Optional[bytes] = None) -> None:
        super().__init__(
            message,
            code="MALFORMED_RECORD",
            details={"key": key.hex() if key is not None else None},
        )
        self.key = key
