"""
Unit tests for the global state key codec.

Tests cover:
- Kind prefixes and key layouts
- Determinism and byte ordering
- Phone number and username normalization
- Field validation errors
"""

import pytest

from fleetstate.globalstate import keys
from fleetstate.globalstate.errors import InvalidInputError
from fleetstate.globalstate.keys import RecordKind

PK_A = bytes([2]) + bytes(range(32))
PK_B = bytes([3]) + bytes(range(100, 132))
POST_HASH = bytes(range(32))


class TestRecordKind:
    """Tests for kind prefix bytes."""

    def test_prefix_bytes(self):
        """Kinds map to the documented prefix bytes."""
        assert RecordKind.USER_METADATA.prefix == b"\x00"
        assert RecordKind.FEED_ENTRY.prefix == b"\x01"
        assert RecordKind.PHONE_METADATA.prefix == b"\x02"
        assert RecordKind.VERIFIED_MAP.prefix == b"\x03"
        assert RecordKind.PINNED_FEED_ENTRY.prefix == b"\x04"
        assert RecordKind.VERIFICATION_AUDIT_LOG.prefix == b"\x05"
        assert RecordKind.GRAYLIST.prefix == b"\x06"
        assert RecordKind.BLACKLIST.prefix == b"\x07"
        assert RecordKind.READ_CURSOR.prefix == b"\x08"

    def test_prefixes_unique(self):
        """No two kinds share a prefix byte."""
        prefixes = [kind.prefix for kind in RecordKind]
        assert len(prefixes) == len(set(prefixes))

    def test_every_kind_has_layout(self):
        """Every kind has a key layout."""
        assert set(keys.KEY_LAYOUTS) == set(RecordKind)

    def test_kind_prefix(self):
        """kind_prefix returns the single prefix byte."""
        assert keys.kind_prefix(RecordKind.GRAYLIST) == b"\x06"


class TestKeyConstruction:
    """Tests for per-kind key constructors."""

    def test_graylist_key(self):
        """Graylist key is prefix followed by the public key."""
        key = keys.graylist_key(PK_A)
        assert key == b"\x06" + PK_A
        assert len(key) == 34

    def test_blacklist_and_graylist_disjoint(self):
        """Same public key under different kinds gives different keys."""
        assert keys.graylist_key(PK_A) != keys.blacklist_key(PK_A)
        assert keys.blacklist_key(PK_A)[:1] == b"\x07"

    def test_user_metadata_key(self):
        """User metadata key uses kind 0x00."""
        assert keys.user_metadata_key(PK_A) == b"\x00" + PK_A

    def test_feed_entry_key_layout(self):
        """Feed key is prefix, big-endian timestamp and post hash."""
        key = keys.feed_entry_key(5, POST_HASH)
        assert key == b"\x01" + (5).to_bytes(8, "big") + POST_HASH
        assert len(key) == 41

    def test_pinned_feed_entry_key(self):
        """Pinned feed key differs from feed key only by prefix."""
        feed = keys.feed_entry_key(5, POST_HASH)
        pinned = keys.pinned_feed_entry_key(5, POST_HASH)
        assert pinned[:1] == b"\x04"
        assert pinned[1:] == feed[1:]

    def test_feed_keys_order_by_timestamp(self):
        """Byte order of feed keys equals timestamp order."""
        earlier = keys.feed_entry_key(255, b"\xff" * 32)
        later = keys.feed_entry_key(256, b"\x00" * 32)
        assert earlier < later

    def test_verified_map_key(self):
        """Verified map key is the bare prefix."""
        assert keys.verified_map_key() == b"\x03"

    def test_read_cursor_key_not_symmetric(self):
        """Swapping user and contact gives a different key."""
        key = keys.read_cursor_key(PK_A, PK_B)
        assert key == b"\x08" + PK_A + PK_B
        assert key != keys.read_cursor_key(PK_B, PK_A)

    def test_keys_are_deterministic(self):
        """Same inputs always produce identical bytes."""
        assert keys.feed_entry_key(42, POST_HASH) == keys.feed_entry_key(42, POST_HASH)
        assert keys.phone_metadata_key("+14155552671") == keys.phone_metadata_key("+14155552671")

    def test_wrong_public_key_width(self):
        """Public keys must be 33 bytes."""
        with pytest.raises(InvalidInputError):
            keys.graylist_key(b"\x02" * 32)

    def test_wrong_post_hash_width(self):
        """Post hashes must be 32 bytes."""
        with pytest.raises(InvalidInputError):
            keys.feed_entry_key(1, b"\x00" * 31)

    def test_negative_timestamp(self):
        """Timestamps must fit in uint64."""
        with pytest.raises(InvalidInputError):
            keys.feed_entry_key(-1, POST_HASH)

    def test_wrong_field_count(self):
        """encode() checks the number of fields per kind."""
        with pytest.raises(InvalidInputError):
            keys.encode(RecordKind.GRAYLIST)
        with pytest.raises(InvalidInputError):
            keys.encode(RecordKind.VERIFIED_MAP, b"extra")


class TestPhoneNormalization:
    """Tests for phone number keys."""

    def test_punctuation_variants_same_key(self):
        """Differently formatted forms of one number map to one key."""
        canonical = keys.phone_metadata_key("+14155552671")
        assert keys.phone_metadata_key("+1 (415) 555-2671") == canonical
        assert keys.phone_metadata_key("+1-415-555-2671") == canonical

    def test_key_holds_e164(self):
        """The key suffix is the E.164 string."""
        assert keys.phone_metadata_key("+1 415 555 2671") == b"\x02+14155552671"

    def test_normalization_idempotent(self):
        """Normalizing an E.164 number returns it unchanged."""
        once = keys.normalize_phone_number("+44 20 7946 0958")
        assert keys.normalize_phone_number(once) == once

    def test_invalid_phone_fails(self):
        """Unparsable numbers fail instead of producing a key."""
        with pytest.raises(InvalidInputError):
            keys.phone_metadata_key("not-a-number")

    def test_missing_country_prefix_fails(self):
        """Without a default region, a national number does not parse."""
        with pytest.raises(InvalidInputError):
            keys.phone_metadata_key("4155552671")

    def test_empty_phone_fails(self):
        """Empty input is rejected."""
        with pytest.raises(InvalidInputError):
            keys.phone_metadata_key("")


class TestUsernameNormalization:
    """Tests for verification audit log keys."""

    def test_case_folded(self):
        """Usernames differing only in case share a key."""
        assert keys.verification_audit_log_key("Alice") == keys.verification_audit_log_key("alice")
        assert keys.verification_audit_log_key("ALICE") == b"\x05alice"

    def test_empty_username_fails(self):
        """Empty usernames are rejected."""
        with pytest.raises(InvalidInputError):
            keys.verification_audit_log_key("")


class TestUint64:
    """Tests for uint64 helpers and feed key splitting."""

    def test_encode_decode(self):
        """encode_uint64 is big-endian and decode_uint64 inverts it."""
        assert keys.encode_uint64(1) == b"\x00" * 7 + b"\x01"
        assert keys.decode_uint64(keys.encode_uint64(2**64 - 1)) == 2**64 - 1

    def test_overflow(self):
        """Values above uint64 are rejected."""
        with pytest.raises(InvalidInputError):
            keys.encode_uint64(2**64)

    def test_decode_wrong_width(self):
        """decode_uint64 requires exactly 8 bytes."""
        with pytest.raises(InvalidInputError):
            keys.decode_uint64(b"\x01")

    def test_split_feed_entry_key(self):
        """split_feed_entry_key recovers timestamp and post hash."""
        key = keys.pinned_feed_entry_key(123456789, POST_HASH)
        assert keys.split_feed_entry_key(key) == (123456789, POST_HASH)

    def test_split_rejects_other_kinds(self):
        """Non-feed keys cannot be split."""
        with pytest.raises(InvalidInputError):
            keys.split_feed_entry_key(keys.graylist_key(PK_A))
