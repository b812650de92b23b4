"""
Unit tests for the local store adapter.

Tests cover:
- Put/get/delete round trips
- Batch get ordering and absent entries
- Seek containment, ordering, limits and value omission
- Reverse seek positioning
- Engine failures surfacing as StorageError, including mid-batch
"""

import os
import tempfile
from contextlib import contextmanager

import pytest

from fleetstate.globalstate import keys
from fleetstate.globalstate.engine import EngineError, InMemoryEngine, SqliteEngine
from fleetstate.globalstate.errors import StorageError
from fleetstate.globalstate.keys import RecordKind
from fleetstate.globalstate.store import LocalStore, key_matches_prefix, prefix_successor

HASH_A = b"\xaa" * 32
HASH_B = b"\xbb" * 32


@pytest.fixture(params=["memory", "sqlite"])
def engine(request):
    """Open engine of each kind."""
    with tempfile.TemporaryDirectory() as tmpdir:
        if request.param == "memory":
            eng = InMemoryEngine()
        else:
            eng = SqliteEngine(os.path.join(tmpdir, "global_state.db"), wal_mode=False)
        eng.open()
        yield eng
        eng.close()


@pytest.fixture
def store(engine):
    """Create store over the engine."""
    return LocalStore(engine)


class TestPrefixHelpers:
    """Tests for seek helper functions."""

    def test_prefix_successor(self):
        """Successor is the next string after every extension of the prefix."""
        assert prefix_successor(b"\x01") == b"\x02"
        assert prefix_successor(b"\x01\xff") == b"\x02"
        assert prefix_successor(b"\x01\x02\xff\xff") == b"\x01\x03"

    def test_prefix_successor_unbounded(self):
        """Empty and all-0xff prefixes have no successor."""
        assert prefix_successor(b"") is None
        assert prefix_successor(b"\xff\xff") is None

    def test_key_matches_prefix(self):
        """max_key_len bounds how much of the prefix is compared."""
        assert key_matches_prefix(b"\x01abc", b"\x01", 1)
        assert key_matches_prefix(b"\x01abc", b"\x01ab", 0)
        assert not key_matches_prefix(b"\x01abc", b"\x01ax", 0)
        assert key_matches_prefix(b"\x01abc", b"\x01ax", 2)
        assert not key_matches_prefix(b"\x02", b"\x01", 1)


class TestRoundTrip:
    """Tests for put/get/delete."""

    @pytest.mark.asyncio
    async def test_put_get_delete(self, store):
        """Values round-trip and deleted keys read as empty."""
        await store.put(bytes([0, 1, 2]), b"x")
        assert await store.get(bytes([0, 1, 2])) == b"x"

        await store.delete(bytes([0, 1, 2]))
        assert await store.get(bytes([0, 1, 2])) == b""

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        """Missing keys are not errors."""
        assert await store.get(b"\x09\x09\x09") == b""

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store):
        """put() is an unconditional overwrite."""
        await store.put(b"k", b"one")
        await store.put(b"k", b"two")
        assert await store.get(b"k") == b"two"

    @pytest.mark.asyncio
    async def test_delete_missing(self, store):
        """Deleting an absent key succeeds."""
        await store.delete(b"\x07never-written")

    @pytest.mark.asyncio
    async def test_binary_values(self, store):
        """Arbitrary bytes survive unchanged."""
        value = bytes(range(256))
        await store.put(b"\x00bin", value)
        assert await store.get(b"\x00bin") == value


class TestBatchGet:
    """Tests for batch_get."""

    @pytest.mark.asyncio
    async def test_absent_entries(self, store):
        """Absent keys yield empty entries at their positions."""
        await store.put(bytes([0, 1, 2]), b"x")
        values = await store.batch_get([bytes([0, 1, 2]), bytes([9, 9, 9])])
        assert values == [b"x", b""]

    @pytest.mark.asyncio
    async def test_order_preserved(self, store):
        """Results align with the input order, duplicates included."""
        await store.put(b"a", b"1")
        await store.put(b"c", b"3")
        keys_in = [b"c", b"b", b"a", b"c"]
        assert await store.batch_get(keys_in) == [b"3", b"", b"1", b"3"]

    @pytest.mark.asyncio
    async def test_empty_list(self, store):
        """No keys, no values."""
        assert await store.batch_get([]) == []


class TestSeek:
    """Tests for seek."""

    @pytest.mark.asyncio
    async def test_feed_scenario(self, store):
        """Kind-prefix seek returns both feed keys ascending, no values."""
        await store.put(keys.feed_entry_key(100, HASH_A), b"\x01")
        await store.put(keys.feed_entry_key(200, HASH_B), b"\x01")
        await store.put(keys.phone_metadata_key("+14155552671"), b"{}")

        kind = keys.kind_prefix(RecordKind.FEED_ENTRY)
        found, values = await store.seek(kind, kind, len(kind), 10, False, False)

        assert found == [keys.feed_entry_key(100, HASH_A), keys.feed_entry_key(200, HASH_B)]
        assert values == []

    @pytest.mark.asyncio
    async def test_fetch_values(self, store):
        """fetch_values returns values aligned with keys."""
        await store.put(b"\x06a", b"1")
        await store.put(b"\x06b", b"2")
        found, values = await store.seek(b"\x06", b"\x06", 1, 10, False, True)
        assert found == [b"\x06a", b"\x06b"]
        assert values == [b"1", b"2"]

    @pytest.mark.asyncio
    async def test_limit(self, store):
        """Never more than limit keys."""
        for i in range(5):
            await store.put(b"\x06" + bytes([i]), b"\x01")
        found, _ = await store.seek(b"\x06", b"\x06", 1, 3, False, False)
        assert found == [b"\x06\x00", b"\x06\x01", b"\x06\x02"]

    @pytest.mark.asyncio
    async def test_zero_limit(self, store):
        """limit <= 0 returns nothing."""
        await store.put(b"\x06a", b"1")
        assert await store.seek(b"\x06", b"\x06", 1, 0, False, True) == ([], [])
        assert await store.seek(b"\x06", b"\x06", 1, -1, False, True) == ([], [])

    @pytest.mark.asyncio
    async def test_stops_at_prefix_boundary(self, store):
        """Keys outside valid_prefix end the scan."""
        await store.put(b"\x06a", b"1")
        await store.put(b"\x07a", b"1")
        found, _ = await store.seek(b"\x06", b"\x06", 1, 10, False, False)
        assert found == [b"\x06a"]

    @pytest.mark.asyncio
    async def test_start_after_prefix(self, store):
        """Forward seek starts at the first key >= start_key."""
        for i in range(4):
            await store.put(b"\x06" + bytes([i]), b"\x01")
        found, _ = await store.seek(b"\x06\x02", b"\x06", 1, 10, False, False)
        assert found == [b"\x06\x02", b"\x06\x03"]

    @pytest.mark.asyncio
    async def test_max_key_len_does_not_truncate(self, store):
        """Returned keys keep their full length."""
        key = keys.feed_entry_key(7, HASH_A)
        await store.put(key, b"\x01")
        found, _ = await store.seek(b"\x01", b"\x01", 1, 10, False, False)
        assert found == [key]
        assert len(found[0]) == 41

    @pytest.mark.asyncio
    async def test_reverse_from_kind_prefix(self, store):
        """Reverse seek at a kind prefix covers every key of that kind, newest first."""
        await store.put(keys.feed_entry_key(100, HASH_A), b"\x01")
        await store.put(keys.feed_entry_key(200, HASH_B), b"\x01")
        await store.put(keys.phone_metadata_key("+14155552671"), b"{}")
        await store.put(keys.user_metadata_key(b"\x02" * 33), b"{}")

        kind = keys.kind_prefix(RecordKind.FEED_ENTRY)
        found, _ = await store.seek(kind, kind, len(kind), 10, True, False)

        assert found == [keys.feed_entry_key(200, HASH_B), keys.feed_entry_key(100, HASH_A)]

    @pytest.mark.asyncio
    async def test_reverse_from_timestamp(self, store):
        """Reverse seek from a timestamp includes that timestamp and older."""
        for t in (100, 200, 300):
            await store.put(keys.feed_entry_key(t, HASH_A), b"\x01")

        kind = keys.kind_prefix(RecordKind.FEED_ENTRY)
        start = kind + keys.encode_uint64(200)
        found, _ = await store.seek(start, kind, len(kind), 10, True, False)

        assert [keys.split_feed_entry_key(k)[0] for k in found] == [200, 100]

    @pytest.mark.asyncio
    async def test_ordering_and_containment(self, store):
        """Results are strictly ordered and all match the prefix."""
        for i in (5, 1, 9, 3):
            await store.put(b"\x06" + bytes([i]) + b"tail", b"\x01")
        await store.put(b"\x05zz", b"\x01")
        await store.put(b"\x07aa", b"\x01")

        forward, _ = await store.seek(b"\x06", b"\x06", 1, 10, False, False)
        backward, _ = await store.seek(b"\x06", b"\x06", 1, 10, True, False)

        assert forward == sorted(forward)
        assert len(set(forward)) == len(forward)
        assert backward == list(reversed(forward))
        assert all(k[:1] == b"\x06" for k in forward)

    @pytest.mark.asyncio
    async def test_empty_range(self, store):
        """A prefix with no keys returns empty lists."""
        await store.put(b"\x06a", b"1")
        assert await store.seek(b"\x08", b"\x08", 1, 10, False, True) == ([], [])
        assert await store.seek(b"\x08", b"\x08", 1, 10, True, True) == ([], [])


class TestStorageErrors:
    """Tests for engine failures."""

    @pytest.mark.asyncio
    async def test_closed_engine(self):
        """Every primitive reports StorageError naming the operation."""
        engine = InMemoryEngine()
        store = LocalStore(engine)

        with pytest.raises(StorageError) as exc_info:
            await store.get(b"k")
        assert exc_info.value.operation == "GlobalStateGet"

        with pytest.raises(StorageError) as exc_info:
            await store.put(b"k", b"v")
        assert exc_info.value.operation == "GlobalStatePut"

        with pytest.raises(StorageError):
            await store.batch_get([b"k"])
        with pytest.raises(StorageError):
            await store.delete(b"k")

        with pytest.raises(StorageError) as exc_info:
            await store.seek(b"\x06", b"\x06", 1, 10, False, False)
        assert "GlobalStateSeek" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_batch_get_fails_mid_batch(self):
        """A read failure partway through a batch fails the whole batch."""
        engine = FailingReadEngine(fail_on=b"\x06b")
        engine.open()
        with engine.update() as txn:
            txn.set(b"\x06a", b"1")
            txn.set(b"\x06b", b"2")
        store = LocalStore(engine)

        with pytest.raises(StorageError) as exc_info:
            await store.batch_get([b"\x06a", b"\x06b", b"\x06c"])

        assert exc_info.value.operation == "GlobalStateBatchGet"
        assert engine.reads == [b"\x06a", b"\x06b"]


class FailingReadEngine(InMemoryEngine):
    """In-memory engine whose read transactions fail on one key."""

    def __init__(self, fail_on: bytes) -> None:
        super().__init__()
        self.fail_on = fail_on
        self.reads: list[bytes] = []

    @contextmanager
    def view(self):
        with super().view() as txn:
            yield FailingReadTransaction(self, txn)


class FailingReadTransaction:
    def __init__(self, engine: FailingReadEngine, txn) -> None:
        self.engine = engine
        self.txn = txn

    def get(self, key: bytes):
        self.engine.reads.append(key)
        if key == self.engine.fail_on:
            raise EngineError(f"read failed for {key.hex()}")
        return self.txn.get(key)
