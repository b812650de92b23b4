"""
Key codec for the global state keyspace.

Every record kind lives in one flat, byte-ordered keyspace. A key is the
kind's prefix byte followed by zero or more fixed-width binary fields and at
most one trailing variable-length field:

    USER_METADATA           <0x00, public_key [33]>                  -> UserMetadata
    FEED_ENTRY              <0x01, tstamp_nanos u64be, post_hash [32]> -> presence marker
    PHONE_METADATA          <0x02, E.164 phone number [var]>         -> PhoneNumberMetadata
    VERIFIED_MAP            <0x03>                                   -> username -> public key map
    PINNED_FEED_ENTRY       <0x04, tstamp_nanos u64be, post_hash [32]> -> presence marker
    VERIFICATION_AUDIT_LOG  <0x05, lowercase username [var]>         -> VerificationAuditLog
    GRAYLIST                <0x06, public_key [33]>                  -> presence marker
    BLACKLIST               <0x07, public_key [33]>                  -> presence marker
    READ_CURSOR             <0x08, user_pk [33], contact_pk [33]>    -> tstamp_nanos u64be

Invariants:
    - Prefix bytes are unique and never reused (enforced by @unique)
    - Integers are big-endian so byte order equals numeric order
    - All normalization (phone formatting, username case folding) happens
      inside encode(), so no caller can build an unnormalized key
    - encode() is pure: same logical fields, same bytes

How to change safely:
    - Add new kinds with a new, never used byte (next free: 0x09)
    - Never change the layout of an existing kind
    - Keep variable-length fields last
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any

import phonenumbers

from .errors import InvalidInputError

PUBLIC_KEY_LEN = 33
POST_HASH_LEN = 32
UINT64_LEN = 8

_UINT64_MAX = (1 << 64) - 1


@unique
class RecordKind(Enum):
    """Record kinds multiplexed into the keyspace, valued by prefix byte."""

    USER_METADATA = 0
    FEED_ENTRY = 1
    PHONE_METADATA = 2
    VERIFIED_MAP = 3
    PINNED_FEED_ENTRY = 4
    VERIFICATION_AUDIT_LOG = 5
    GRAYLIST = 6
    BLACKLIST = 7
    READ_CURSOR = 8

    @property
    def prefix(self) -> bytes:
        """The kind's prefix byte(s)."""
        return bytes([self.value])


class FieldType(Enum):
    """Binary encodings for key fields."""

    BYTES = "bytes"
    UINT64 = "uint64"
    PHONE = "phone"
    USERNAME = "username"


@dataclass(frozen=True)
class FieldSpec:
    """Layout of one key field.

    Attributes:
        name: Field name used in error messages
        type: Encoding of the field
        width: Fixed width in bytes, or None for the trailing variable field
    """

    name: str
    type: FieldType
    width: int | None = None


_PUBLIC_KEY = FieldSpec("public_key", FieldType.BYTES, PUBLIC_KEY_LEN)
_TSTAMP = FieldSpec("tstamp_nanos", FieldType.UINT64, UINT64_LEN)
_POST_HASH = FieldSpec("post_hash", FieldType.BYTES, POST_HASH_LEN)

KEY_LAYOUTS: dict[RecordKind, tuple[FieldSpec, ...]] = {
    RecordKind.USER_METADATA: (_PUBLIC_KEY,),
    RecordKind.FEED_ENTRY: (_TSTAMP, _POST_HASH),
    RecordKind.PHONE_METADATA: (FieldSpec("phone_number", FieldType.PHONE),),
    RecordKind.VERIFIED_MAP: (),
    RecordKind.PINNED_FEED_ENTRY: (_TSTAMP, _POST_HASH),
    RecordKind.VERIFICATION_AUDIT_LOG: (FieldSpec("username", FieldType.USERNAME),),
    RecordKind.GRAYLIST: (_PUBLIC_KEY,),
    RecordKind.BLACKLIST: (_PUBLIC_KEY,),
    RecordKind.READ_CURSOR: (
        FieldSpec("user_public_key", FieldType.BYTES, PUBLIC_KEY_LEN),
        FieldSpec("contact_public_key", FieldType.BYTES, PUBLIC_KEY_LEN),
    ),
}


def _check_layouts() -> None:
    for kind, layout in KEY_LAYOUTS.items():
        for spec in layout[:-1]:
            if spec.width is None:
                raise AssertionError(f"{kind.name}: variable-length field {spec.name} is not last")
    missing = set(RecordKind) - set(KEY_LAYOUTS)
    if missing:
        raise AssertionError(f"No key layout for {sorted(k.name for k in missing)}")


_check_layouts()


def encode_uint64(value: int) -> bytes:
    """Encode an unsigned 64-bit integer big-endian."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"Expected integer, got {type(value).__name__}")
    if value < 0 or value > _UINT64_MAX:
        raise InvalidInputError(f"Value {value} does not fit in uint64")
    return value.to_bytes(UINT64_LEN, "big")


def decode_uint64(data: bytes) -> int:
    """Decode a big-endian unsigned 64-bit integer."""
    if len(data) != UINT64_LEN:
        raise InvalidInputError(f"Expected {UINT64_LEN} bytes, got {len(data)}")
    return int.from_bytes(data, "big")


def normalize_phone_number(phone_number: str) -> str:
    """Parse a phone number and format it as E.164.

    The number must carry its international prefix; no default region is
    assumed.

    Raises:
        InvalidInputError: If the number does not parse
    """
    if not isinstance(phone_number, str) or not phone_number.strip():
        raise InvalidInputError("Phone number is empty", field_name="phone_number")
    try:
        parsed = phonenumbers.parse(phone_number, None)
    except phonenumbers.NumberParseException as e:
        raise InvalidInputError(
            f"Problem parsing phone number {phone_number!r}: {e}",
            field_name="phone_number",
        ) from e
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def normalize_username(username: str) -> str:
    """Case-fold a username for key construction."""
    if not isinstance(username, str) or not username:
        raise InvalidInputError("Username is empty", field_name="username")
    return username.lower()


def _encode_field(kind: RecordKind, spec: FieldSpec, value: Any) -> bytes:
    if spec.type == FieldType.UINT64:
        try:
            return encode_uint64(value)
        except InvalidInputError as e:
            raise InvalidInputError(f"{kind.name}.{spec.name}: {e.message}", spec.name) from e
    if spec.type == FieldType.PHONE:
        return normalize_phone_number(value).encode("utf-8")
    if spec.type == FieldType.USERNAME:
        return normalize_username(value).encode("utf-8")

    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise InvalidInputError(
            f"{kind.name}.{spec.name}: expected bytes, got {type(value).__name__}",
            spec.name,
        )
    data = bytes(value)
    if spec.width is not None and len(data) != spec.width:
        raise InvalidInputError(
            f"{kind.name}.{spec.name}: expected {spec.width} bytes, got {len(data)}",
            spec.name,
        )
    return data


def encode(kind: RecordKind, *fields: Any) -> bytes:
    """Encode a logical record key.

    Args:
        kind: Record kind
        *fields: Natural key fields in layout order

    Returns:
        The key bytes: prefix followed by each encoded field

    Raises:
        InvalidInputError: If a field is missing, mistyped, the wrong width,
            or fails normalization
    """
    layout = KEY_LAYOUTS[kind]
    if len(fields) != len(layout):
        raise InvalidInputError(
            f"{kind.name} key takes {len(layout)} field(s), got {len(fields)}"
        )
    parts = [kind.prefix]
    for spec, value in zip(layout, fields):
        parts.append(_encode_field(kind, spec, value))
    return b"".join(parts)


def kind_prefix(kind: RecordKind) -> bytes:
    """Prefix shared by every key of a kind, for seeks."""
    return kind.prefix


def user_metadata_key(public_key: bytes) -> bytes:
    return encode(RecordKind.USER_METADATA, public_key)


def feed_entry_key(tstamp_nanos: int, post_hash: bytes) -> bytes:
    return encode(RecordKind.FEED_ENTRY, tstamp_nanos, post_hash)


def pinned_feed_entry_key(tstamp_nanos: int, post_hash: bytes) -> bytes:
    return encode(RecordKind.PINNED_FEED_ENTRY, tstamp_nanos, post_hash)


def phone_metadata_key(phone_number: str) -> bytes:
    """Key for a phone number's metadata.

    Differently punctuated forms of the same number map to the same key.
    """
    return encode(RecordKind.PHONE_METADATA, phone_number)


def verified_map_key() -> bytes:
    return encode(RecordKind.VERIFIED_MAP)


def verification_audit_log_key(username: str) -> bytes:
    return encode(RecordKind.VERIFICATION_AUDIT_LOG, username)


def graylist_key(public_key: bytes) -> bytes:
    return encode(RecordKind.GRAYLIST, public_key)


def blacklist_key(public_key: bytes) -> bytes:
    return encode(RecordKind.BLACKLIST, public_key)


def read_cursor_key(user_public_key: bytes, contact_public_key: bytes) -> bytes:
    """Key for the last time a user read a contact's messages.

    The user key always comes first; the key is not symmetric.
    """
    return encode(RecordKind.READ_CURSOR, user_public_key, contact_public_key)


def split_feed_entry_key(key: bytes) -> tuple[int, bytes]:
    """Split a feed or pinned-feed key into (tstamp_nanos, post_hash).

    Raises:
        InvalidInputError: If the key is not a feed-shaped key
    """
    expected = 1 + UINT64_LEN + POST_HASH_LEN
    if len(key) != expected or key[:1] not in (
        RecordKind.FEED_ENTRY.prefix,
        RecordKind.PINNED_FEED_ENTRY.prefix,
    ):
        raise InvalidInputError(f"Not a feed entry key: {key.hex()}")
    return decode_uint64(key[1 : 1 + UINT64_LEN]), key[1 + UINT64_LEN :]
