"""
Request/response envelopes exchanged between fleet nodes.

Every operation is a POST of a JSON document to the owner's route, with the
shared secret in the ``shared_secret`` query parameter. Field names match the
long-standing wire format so mixed fleets interoperate:

    Put       {"Key", "Value"}                                 -> {}
    Get       {"Key"}                                          -> {"Value"}
    BatchGet  {"KeyList"}                                      -> {"ValueList"}
    Delete    {"Key"}                                          -> {}
    Seek      {"StartPrefix", "ValidForPrefix", "MaxKeyLen",
               "NumToFetch", "Reverse", "FetchValues"}         -> {"KeysFound", "ValsFound"}

Invariants:
    - Byte fields are standard (not URL-safe) base64 strings
    - null or a missing field decodes to its zero value (b"", [], 0, False)
    - A field of the wrong JSON type is a MalformedRequestError
    - Encoding is deterministic

How to change safely:
    - Never rename fields; add new optional fields with zero-value defaults
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Type, TypeVar

from .errors import MalformedRequestError

SHARED_SECRET_PARAM = "shared_secret"
ROUTE_PREFIX = "/api/v1/global-state"


class Operation(Enum):
    """The five primitives, valued by their diagnostic name."""

    PUT = "GlobalStatePut"
    GET = "GlobalStateGet"
    BATCH_GET = "GlobalStateBatchGet"
    DELETE = "GlobalStateDelete"
    SEEK = "GlobalStateSeek"

    @property
    def path(self) -> str:
        """Route on the owning node."""
        return _PATHS[self]

    @property
    def handler_name(self) -> str:
        """Name used in handler error messages."""
        return f"{self.value}Remote"


_PATHS = {
    Operation.PUT: f"{ROUTE_PREFIX}/put",
    Operation.GET: f"{ROUTE_PREFIX}/get",
    Operation.BATCH_GET: f"{ROUTE_PREFIX}/batch-get",
    Operation.DELETE: f"{ROUTE_PREFIX}/delete",
    Operation.SEEK: f"{ROUTE_PREFIX}/seek",
}


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(value: Any, name: str) -> bytes:
    """Decode one base64 field; None decodes to b""."""
    if value is None:
        return b""
    if not isinstance(value, str):
        raise MalformedRequestError(
            f"Field {name} must be a base64 string, got {type(value).__name__}", name
        )
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedRequestError(f"Field {name} is not valid base64: {e}", name) from e


def decode_bytes_list(value: Any, name: str) -> List[bytes]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedRequestError(
            f"Field {name} must be a list, got {type(value).__name__}", name
        )
    return [decode_bytes(item, f"{name}[{i}]") for i, item in enumerate(value)]


def decode_int(value: Any, name: str) -> int:
    if value is None:
        return 0
    # bool is an int subclass but not a JSON number
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedRequestError(
            f"Field {name} must be an integer, got {type(value).__name__}", name
        )
    return value


def decode_bool(value: Any, name: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise MalformedRequestError(
            f"Field {name} must be a boolean, got {type(value).__name__}", name
        )
    return value


def _get(data: Dict[str, Any], name: str) -> Any:
    """Look up a field, preferring an exact match over a case-insensitive one."""
    if name in data:
        return data[name]
    lowered = name.lower()
    for key, value in data.items():
        if key.lower() == lowered:
            return value
    return None


def parse_document(body: bytes | str) -> Dict[str, Any]:
    """Parse a JSON object.

    Raises:
        MalformedRequestError: If the body is not a JSON object
    """
    try:
        doc = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedRequestError(f"Invalid JSON body: {e}") from e
    if not isinstance(doc, dict):
        raise MalformedRequestError(f"Expected a JSON object, got {type(doc).__name__}")
    return doc


E = TypeVar("E", bound="Envelope")


class Envelope:
    """Base class for wire documents."""

    operation: ClassVar[Operation]

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_dict(cls: Type[E], data: Dict[str, Any]) -> E:
        raise NotImplementedError

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_json(cls: Type[E], body: bytes | str) -> E:
        return cls.from_dict(parse_document(body))


@dataclass
class PutRequest(Envelope):
    operation: ClassVar[Operation] = Operation.PUT

    key: bytes = b""
    value: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {"Key": encode_bytes(self.key), "Value": encode_bytes(self.value)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PutRequest:
        return cls(
            key=decode_bytes(_get(data, "Key"), "Key"),
            value=decode_bytes(_get(data, "Value"), "Value"),
        )


@dataclass
class PutResponse(Envelope):
    operation: ClassVar[Operation] = Operation.PUT

    def to_dict(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PutResponse:
        return cls()


@dataclass
class GetRequest(Envelope):
    operation: ClassVar[Operation] = Operation.GET

    key: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {"Key": encode_bytes(self.key)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GetRequest:
        return cls(key=decode_bytes(_get(data, "Key"), "Key"))


@dataclass
class GetResponse(Envelope):
    operation: ClassVar[Operation] = Operation.GET

    value: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {"Value": encode_bytes(self.value)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GetResponse:
        return cls(value=decode_bytes(_get(data, "Value"), "Value"))


@dataclass
class BatchGetRequest(Envelope):
    operation: ClassVar[Operation] = Operation.BATCH_GET

    key_list: List[bytes] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"KeyList": [encode_bytes(k) for k in self.key_list]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BatchGetRequest:
        return cls(key_list=decode_bytes_list(_get(data, "KeyList"), "KeyList"))


@dataclass
class BatchGetResponse(Envelope):
    operation: ClassVar[Operation] = Operation.BATCH_GET

    value_list: List[bytes] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"ValueList": [encode_bytes(v) for v in self.value_list]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BatchGetResponse:
        return cls(value_list=decode_bytes_list(_get(data, "ValueList"), "ValueList"))


@dataclass
class DeleteRequest(Envelope):
    operation: ClassVar[Operation] = Operation.DELETE

    key: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {"Key": encode_bytes(self.key)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DeleteRequest:
        return cls(key=decode_bytes(_get(data, "Key"), "Key"))


@dataclass
class DeleteResponse(Envelope):
    operation: ClassVar[Operation] = Operation.DELETE

    def to_dict(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DeleteResponse:
        return cls()


@dataclass
class SeekRequest(Envelope):
    operation: ClassVar[Operation] = Operation.SEEK

    start_prefix: bytes = b""
    valid_for_prefix: bytes = b""
    max_key_len: int = 0
    num_to_fetch: int = 0
    reverse: bool = False
    fetch_values: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "StartPrefix": encode_bytes(self.start_prefix),
            "ValidForPrefix": encode_bytes(self.valid_for_prefix),
            "MaxKeyLen": self.max_key_len,
            "NumToFetch": self.num_to_fetch,
            "Reverse": self.reverse,
            "FetchValues": self.fetch_values,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SeekRequest:
        return cls(
            start_prefix=decode_bytes(_get(data, "StartPrefix"), "StartPrefix"),
            valid_for_prefix=decode_bytes(_get(data, "ValidForPrefix"), "ValidForPrefix"),
            max_key_len=decode_int(_get(data, "MaxKeyLen"), "MaxKeyLen"),
            num_to_fetch=decode_int(_get(data, "NumToFetch"), "NumToFetch"),
            reverse=decode_bool(_get(data, "Reverse"), "Reverse"),
            fetch_values=decode_bool(_get(data, "FetchValues"), "FetchValues"),
        )


@dataclass
class SeekResponse(Envelope):
    operation: ClassVar[Operation] = Operation.SEEK

    keys_found: List[bytes] = field(default_factory=list)
    vals_found: List[bytes] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "KeysFound": [encode_bytes(k) for k in self.keys_found],
            "ValsFound": [encode_bytes(v) for v in self.vals_found],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SeekResponse:
        return cls(
            keys_found=decode_bytes_list(_get(data, "KeysFound"), "KeysFound"),
            vals_found=decode_bytes_list(_get(data, "ValsFound"), "ValsFound"),
        )
