"""
Typed record accessors over the global state keyspace.

Callers that know what a key means use these helpers instead of building
keys and decoding values by hand. Each accessor builds its key with keys.py
and goes through GlobalState, so it works the same on the owner and on
forwarding nodes.

Value shapes per kind:
    USER_METADATA, PHONE_METADATA,
    VERIFICATION_AUDIT_LOG, VERIFIED_MAP   JSON object
    FEED_ENTRY, PINNED_FEED_ENTRY,
    GRAYLIST, BLACKLIST                    presence marker b"\\x01"
    READ_CURSOR                            uint64 big-endian

Invariants:
    - An absent record reads as None (or False for flags), never an error
    - A presence-marker key holding anything but the marker raises
      MalformedRecordError instead of being treated as set
    - Clearing a flag deletes the key; it never writes a "false" value

How to change safely:
    - Add new JSON fields with defaults; old records must still decode
    - Never change a kind's value shape in place; take a new kind byte
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from . import keys
from .dispatch import GlobalState
from .errors import MalformedRecordError, MalformedRequestError
from .keys import RecordKind
from .wire import decode_bytes, encode_bytes

logger = logging.getLogger(__name__)

PRESENCE_MARKER = b"\x01"


class Presence(Enum):
    """Tri-state result of reading a presence-marker key."""

    ABSENT = "absent"
    PRESENT = "present"
    OTHER = "other"


def presence_of(value: bytes) -> Presence:
    """Classify a raw value read from a presence-marker key."""
    if value == b"":
        return Presence.ABSENT
    if value == PRESENCE_MARKER:
        return Presence.PRESENT
    return Presence.OTHER


# =============================================================================
# JSON payloads
# =============================================================================

P = TypeVar("P", bound="Payload")


class Payload:
    """Base class for JSON-encoded record values."""

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_dict(cls: Type[P], data: Dict[str, Any]) -> P:
        raise NotImplementedError

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls: Type[P], data: bytes, key: Optional[bytes] = None) -> P:
        """Decode a stored value.

        Raises:
            MalformedRecordError: If the value is not a valid payload
        """
        doc = _load_object(data, key)
        try:
            return cls.from_dict(doc)
        except (MalformedRequestError, KeyError, TypeError, ValueError) as e:
            raise MalformedRecordError(f"Cannot decode {cls.__name__}: {e}", key) from e


def _load_object(data: bytes, key: Optional[bytes]) -> Dict[str, Any]:
    try:
        doc = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedRecordError(f"Stored value is not JSON: {e}", key) from e
    if not isinstance(doc, dict):
        raise MalformedRecordError(
            f"Stored value must be a JSON object, got {type(doc).__name__}", key
        )
    return doc


_REQUIRED = object()


def _check_type(name: str, value: Any, expected: type) -> Any:
    # bool is an int subclass; JSON true must not pass as a number
    if (expected is int and isinstance(value, bool)) or not isinstance(value, expected):
        raise TypeError(f"{name}: expected {expected.__name__}, got {type(value).__name__}")
    return value


def _field(data: Dict[str, Any], name: str, expected: type, default: Any = _REQUIRED) -> Any:
    """Read one payload field, checking its JSON type. null reads as the default."""
    value = data.get(name)
    if value is None:
        if default is _REQUIRED:
            raise KeyError(name)
        return default
    return _check_type(name, value, expected)


@dataclass
class UserMetadata(Payload):
    """Everything the node tracks about a user's public key."""

    public_key: bytes
    remove_everywhere: bool = False
    remove_from_leaderboard: bool = False
    email: str = ""
    phone_number: str = ""
    phone_number_country_code: str = ""
    # contact public key (base58check) -> number of messages read
    message_read_state_by_contact: Dict[str, int] = field(default_factory=dict)
    notification_last_seen_index: int = 0
    satoshis_burned_so_far: int = 0
    has_burned_enough_satoshis_to_create_profile: bool = False
    blocked_public_keys: List[str] = field(default_factory=list)
    whitelist_posts: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "public_key": encode_bytes(self.public_key),
            "remove_everywhere": self.remove_everywhere,
            "remove_from_leaderboard": self.remove_from_leaderboard,
            "email": self.email,
            "phone_number": self.phone_number,
            "phone_number_country_code": self.phone_number_country_code,
            "message_read_state_by_contact": dict(self.message_read_state_by_contact),
            "notification_last_seen_index": self.notification_last_seen_index,
            "satoshis_burned_so_far": self.satoshis_burned_so_far,
            "has_burned_enough_satoshis_to_create_profile": (
                self.has_burned_enough_satoshis_to_create_profile
            ),
            "blocked_public_keys": sorted(self.blocked_public_keys),
            "whitelist_posts": self.whitelist_posts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> UserMetadata:
        read_state = _field(data, "message_read_state_by_contact", dict, {})
        blocked = _field(data, "blocked_public_keys", list, [])
        return cls(
            public_key=decode_bytes(data.get("public_key"), "public_key"),
            remove_everywhere=_field(data, "remove_everywhere", bool, False),
            remove_from_leaderboard=_field(data, "remove_from_leaderboard", bool, False),
            email=_field(data, "email", str, ""),
            phone_number=_field(data, "phone_number", str, ""),
            phone_number_country_code=_field(data, "phone_number_country_code", str, ""),
            message_read_state_by_contact={
                contact: _check_type(f"message_read_state_by_contact[{contact}]", count, int)
                for contact, count in read_state.items()
            },
            notification_last_seen_index=_field(data, "notification_last_seen_index", int, 0),
            satoshis_burned_so_far=_field(data, "satoshis_burned_so_far", int, 0),
            has_burned_enough_satoshis_to_create_profile=_field(
                data, "has_burned_enough_satoshis_to_create_profile", bool, False
            ),
            blocked_public_keys=[
                _check_type(f"blocked_public_keys[{i}]", pk, str) for i, pk in enumerate(blocked)
            ],
            whitelist_posts=_field(data, "whitelist_posts", bool, False),
        )


@dataclass
class PhoneNumberMetadata(Payload):
    """Metadata attached to a verified phone number."""

    public_key: bytes
    phone_number: str
    phone_number_country_code: str = ""
    should_comp_profile_creation: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "public_key": encode_bytes(self.public_key),
            "phone_number": self.phone_number,
            "phone_number_country_code": self.phone_number_country_code,
            "should_comp_profile_creation": self.should_comp_profile_creation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PhoneNumberMetadata:
        return cls(
            public_key=decode_bytes(data.get("public_key"), "public_key"),
            phone_number=_field(data, "phone_number", str),
            phone_number_country_code=_field(data, "phone_number_country_code", str, ""),
            should_comp_profile_creation=_field(data, "should_comp_profile_creation", bool, False),
        )


@dataclass
class VerificationAuditEntry:
    """One grant or removal of a username's verification badge."""

    tstamp_nanos: int
    verifier_username: str
    verified_public_key: bytes
    is_removal: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tstamp_nanos": self.tstamp_nanos,
            "verifier_username": self.verifier_username,
            "verified_public_key": encode_bytes(self.verified_public_key),
            "is_removal": self.is_removal,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> VerificationAuditEntry:
        return cls(
            tstamp_nanos=_field(data, "tstamp_nanos", int),
            verifier_username=_field(data, "verifier_username", str, ""),
            verified_public_key=decode_bytes(
                data.get("verified_public_key"), "verified_public_key"
            ),
            is_removal=_field(data, "is_removal", bool, False),
        )


@dataclass
class VerificationAuditLog(Payload):
    """History of verification changes for one username, oldest first."""

    username: str
    entries: List[VerificationAuditEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> VerificationAuditLog:
        return cls(
            username=_field(data, "username", str),
            entries=[
                VerificationAuditEntry.from_dict(_check_type(f"entries[{i}]", entry, dict))
                for i, entry in enumerate(_field(data, "entries", list, []))
            ],
        )


# =============================================================================
# Accessors
# =============================================================================


class GlobalStateRecords:
    """Typed reads and writes for every record kind.

    Example:
        >>> records = GlobalStateRecords(global_state)
        >>> await records.set_graylisted(public_key, True)
        >>> await records.is_graylisted(public_key)
        True
    """

    def __init__(self, global_state: GlobalState) -> None:
        self.global_state = global_state

    # -- JSON records ---------------------------------------------------------

    async def _get_payload(self, key: bytes, payload_type: Type[P]) -> Optional[P]:
        value = await self.global_state.get(key)
        if value == b"":
            return None
        return payload_type.from_bytes(value, key)

    async def get_user_metadata(self, public_key: bytes) -> Optional[UserMetadata]:
        return await self._get_payload(keys.user_metadata_key(public_key), UserMetadata)

    async def put_user_metadata(self, metadata: UserMetadata) -> None:
        await self.global_state.put(
            keys.user_metadata_key(metadata.public_key), metadata.to_bytes()
        )

    async def get_phone_metadata(self, phone_number: str) -> Optional[PhoneNumberMetadata]:
        return await self._get_payload(keys.phone_metadata_key(phone_number), PhoneNumberMetadata)

    async def put_phone_metadata(self, metadata: PhoneNumberMetadata) -> None:
        """Store phone metadata under the normalized form of its number.

        The stored copy carries phone_number in E.164; the caller's object
        is left unchanged.
        """
        stored = replace(
            metadata, phone_number=keys.normalize_phone_number(metadata.phone_number)
        )
        await self.global_state.put(
            keys.phone_metadata_key(stored.phone_number), stored.to_bytes()
        )

    async def get_verification_audit_log(self, username: str) -> Optional[VerificationAuditLog]:
        return await self._get_payload(
            keys.verification_audit_log_key(username), VerificationAuditLog
        )

    async def put_verification_audit_log(self, log: VerificationAuditLog) -> None:
        stored = replace(log, username=keys.normalize_username(log.username))
        await self.global_state.put(
            keys.verification_audit_log_key(stored.username), stored.to_bytes()
        )

    async def get_verified_map(self) -> Dict[str, bytes]:
        """Username -> public key for every verified user (empty if unset)."""
        key = keys.verified_map_key()
        value = await self.global_state.get(key)
        if value == b"":
            return {}
        doc = _load_object(value, key)
        try:
            return {str(name): decode_bytes(pk, name) for name, pk in doc.items()}
        except MalformedRequestError as e:
            raise MalformedRecordError(f"Cannot decode verified map: {e.message}", key) from e

    async def put_verified_map(self, verified: Dict[str, bytes]) -> None:
        doc = {keys.normalize_username(name): encode_bytes(pk) for name, pk in verified.items()}
        await self.global_state.put(
            keys.verified_map_key(),
            json.dumps(doc, sort_keys=True, separators=(",", ":")).encode("utf-8"),
        )
        logger.info("Verified map updated", extra={"verified_count": len(doc)})

    # -- Presence-marker records ----------------------------------------------

    async def _get_flag(self, key: bytes) -> bool:
        state = presence_of(await self.global_state.get(key))
        if state is Presence.OTHER:
            raise MalformedRecordError(
                f"Expected presence marker for kind {key[:1].hex()}", key
            )
        return state is Presence.PRESENT

    async def _set_flag(self, key: bytes, flagged: bool) -> None:
        if flagged:
            await self.global_state.put(key, PRESENCE_MARKER)
        else:
            await self.global_state.delete(key)

    async def is_graylisted(self, public_key: bytes) -> bool:
        return await self._get_flag(keys.graylist_key(public_key))

    async def set_graylisted(self, public_key: bytes, graylisted: bool) -> None:
        await self._set_flag(keys.graylist_key(public_key), graylisted)

    async def is_blacklisted(self, public_key: bytes) -> bool:
        return await self._get_flag(keys.blacklist_key(public_key))

    async def set_blacklisted(self, public_key: bytes, blacklisted: bool) -> None:
        await self._set_flag(keys.blacklist_key(public_key), blacklisted)

    # -- Feed -----------------------------------------------------------------

    @staticmethod
    def _feed_key(tstamp_nanos: int, post_hash: bytes, pinned: bool) -> bytes:
        if pinned:
            return keys.pinned_feed_entry_key(tstamp_nanos, post_hash)
        return keys.feed_entry_key(tstamp_nanos, post_hash)

    async def add_feed_entry(self, tstamp_nanos: int, post_hash: bytes, pinned: bool = False) -> None:
        await self._set_flag(self._feed_key(tstamp_nanos, post_hash, pinned), True)

    async def remove_feed_entry(
        self, tstamp_nanos: int, post_hash: bytes, pinned: bool = False
    ) -> None:
        await self._set_flag(self._feed_key(tstamp_nanos, post_hash, pinned), False)

    async def has_feed_entry(self, tstamp_nanos: int, post_hash: bytes, pinned: bool = False) -> bool:
        return await self._get_flag(self._feed_key(tstamp_nanos, post_hash, pinned))

    async def list_feed_entries(
        self,
        limit: int,
        before_tstamp_nanos: Optional[int] = None,
        pinned: bool = False,
    ) -> list[tuple[int, bytes]]:
        """Feed entries, newest first.

        Args:
            limit: Maximum number of entries
            before_tstamp_nanos: Only entries at or before this timestamp
            pinned: List the pinned feed instead of the global feed

        Returns:
            (tstamp_nanos, post_hash) pairs in descending timestamp order
        """
        kind = RecordKind.PINNED_FEED_ENTRY if pinned else RecordKind.FEED_ENTRY
        prefix = keys.kind_prefix(kind)
        start = prefix
        if before_tstamp_nanos is not None:
            start = prefix + keys.encode_uint64(before_tstamp_nanos)

        found, values = await self.global_state.seek(
            start, prefix, len(prefix), limit, reverse=True, fetch_values=True
        )

        entries = []
        for key, value in zip(found, values):
            if presence_of(value) is not Presence.PRESENT:
                raise MalformedRecordError("Expected presence marker for feed entry", key)
            entries.append(keys.split_feed_entry_key(key))
        return entries

    # -- Read cursors ---------------------------------------------------------

    async def get_read_cursor(
        self, user_public_key: bytes, contact_public_key: bytes
    ) -> Optional[int]:
        """Timestamp of the newest message the user read from the contact."""
        key = keys.read_cursor_key(user_public_key, contact_public_key)
        value = await self.global_state.get(key)
        if value == b"":
            return None
        if len(value) != keys.UINT64_LEN:
            raise MalformedRecordError(
                f"Read cursor must be {keys.UINT64_LEN} bytes, got {len(value)}", key
            )
        return keys.decode_uint64(value)

    async def set_read_cursor(
        self, user_public_key: bytes, contact_public_key: bytes, tstamp_nanos: int
    ) -> None:
        await self.global_state.put(
            keys.read_cursor_key(user_public_key, contact_public_key),
            keys.encode_uint64(tstamp_nanos),
        )
