"""Unit tests for the local override store."""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from pixo_sync.errors import OverrideStoreError
from pixo_sync.store import (
    OverrideStore,
    collected_notes_key,
    comments_key,
    followed_key,
    liked_notes_key,
)


class TestKeys:
    """Tests for key builders."""

    def test_key_formats(self):
        assert liked_notes_key("u1") == "liked_mock_notes_u1"
        assert collected_notes_key("u1") == "collected_mock_notes_u1"
        assert followed_key("u3") == "followed_mock_u3"
        assert comments_key("n1") == "mock_comments_n1"


class TestArrays:
    """Tests for id-array values."""

    @pytest.mark.asyncio
    async def test_absent_key_reads_empty(self, store):
        assert await store.get_array("liked_mock_notes_nobody") == []

    @pytest.mark.asyncio
    async def test_set_then_get(self, store):
        await store.set_array("k", ["n1", "n2"])
        assert await store.get_array("k") == ["n1", "n2"]

    @pytest.mark.asyncio
    async def test_toggle_membership_twice_restores(self, store):
        key = liked_notes_key("me")
        await store.set_array(key, ["n2"])

        assert await store.toggle_membership(key, "n1") is True
        assert await store.get_array(key) == ["n2", "n1"]

        assert await store.toggle_membership(key, "n1") is False
        assert await store.get_array(key) == ["n2"]

    @pytest.mark.asyncio
    async def test_concurrent_toggles_do_not_lose_updates(self, store):
        key = liked_notes_key("me")
        await asyncio.gather(*(store.toggle_membership(key, f"n{i}") for i in range(10)))
        assert sorted(await store.get_array(key)) == sorted(f"n{i}" for i in range(10))

    @pytest.mark.asyncio
    async def test_remove_from_array_removes_all_occurrences(self, store):
        await store.set_array("k", ["a", "b", "a"])
        assert await store.remove_from_array("k", "a") == ["b"]

    @pytest.mark.asyncio
    async def test_malformed_value_reads_empty(self, store):
        await store._set("k", "{not json")
        assert await store.get_array("k") == []

    @pytest.mark.asyncio
    async def test_non_array_value_reads_empty(self, store):
        await store._set("k", '{"a": 1}')
        assert await store.get_array("k") == []

    @pytest.mark.asyncio
    async def test_toggle_over_malformed_value_starts_fresh(self, store):
        await store._set("k", "garbage")
        assert await store.toggle_membership("k", "n1") is True
        assert await store.get_array("k") == ["n1"]


class TestFlags:
    """Tests for boolean flags."""

    @pytest.mark.asyncio
    async def test_absent_flag_is_false(self, store):
        assert await store.get_flag(followed_key("u1")) is False

    @pytest.mark.asyncio
    async def test_flag_round_trip_uses_literal_strings(self, store):
        await store.set_flag("f", True)
        assert await store.raw("f") == "true"
        assert await store.get_flag("f") is True
        await store.set_flag("f", False)
        assert await store.raw("f") == "false"

    @pytest.mark.asyncio
    async def test_toggle_flag(self, store):
        assert await store.toggle_flag("f") is True
        assert await store.toggle_flag("f") is False


class TestJson:
    """Tests for object-array values."""

    @pytest.mark.asyncio
    async def test_prepend_puts_newest_first(self, store):
        key = comments_key("n1")
        await store.prepend_json(key, {"id": "c1"})
        await store.prepend_json(key, {"id": "c2"})
        assert [c["id"] for c in await store.get_json(key)] == ["c2", "c1"]

    @pytest.mark.asyncio
    async def test_set_json_overwrites(self, store):
        key = comments_key("n2")
        await store.prepend_json(key, {"id": "old"})
        await store.set_json(key, [{"id": "c1", "content": "hi"}])
        assert await store.get_json(key) == [{"id": "c1", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_non_object_items_are_skipped(self, store):
        await store._set("k", '[{"id": "c1"}, 3, "x"]')
        assert await store.get_json("k") == [{"id": "c1"}]


class TestMaintenance:
    """Tests for key listing and clearing."""

    @pytest.mark.asyncio
    async def test_keys_by_prefix(self, store):
        await store.set_flag(followed_key("u1"), True)
        await store.set_array(liked_notes_key("me"), ["n1"])
        assert await store.keys("followed_mock_") == ["followed_mock_u1"]
        assert len(await store.keys()) == 2

    @pytest.mark.asyncio
    async def test_prefix_underscore_is_literal(self, store):
        await store.set_flag("followedXmockXu1", True)
        assert await store.keys("followed_mock_") == []

    @pytest.mark.asyncio
    async def test_clear_by_prefix(self, store):
        await store.set_flag(followed_key("u1"), True)
        await store.set_flag(followed_key("u2"), True)
        await store.set_array(liked_notes_key("me"), ["n1"])

        assert await store.clear("followed_mock_") == 2
        assert await store.keys() == [liked_notes_key("me")]


class TestFailures:
    """Tests for read/write failure handling."""

    @pytest.mark.asyncio
    async def test_uninitialized_store_reads_empty(self):
        store = OverrideStore("sqlite://")
        assert await store.get_array("k") == []
        assert await store.get_flag("k") is False

    @pytest.mark.asyncio
    async def test_uninitialized_store_write_raises(self):
        store = OverrideStore("sqlite://")
        with pytest.raises(OverrideStoreError):
            await store.set_flag("k", True)

    @pytest.mark.asyncio
    async def test_write_failure_raises_and_keeps_value(self, store):
        await store.set_array("k", ["n1"])

        with patch.object(
            store, "_write_raw", side_effect=OperationalError("UPDATE", {}, Exception("disk full"))
        ):
            with pytest.raises(OverrideStoreError):
                await store.toggle_membership("k", "n2")

        assert await store.get_array("k") == ["n1"]

    @pytest.mark.asyncio
    async def test_read_failure_degrades_to_empty(self, store):
        with patch.object(
            store, "_read_raw", side_effect=OperationalError("SELECT", {}, Exception("locked"))
        ):
            assert await store.get_array("k") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation",
        [
            lambda s, key: s.toggle_membership(key, "d"),
            lambda s, key: s.remove_from_array(key, "a"),
            lambda s, key: s.prepend_json(key, {"id": "c9"}),
        ],
        ids=["toggle_membership", "remove_from_array", "prepend_json"],
    )
    async def test_read_failure_inside_update_raises_and_keeps_value(self, store, operation):
        key = liked_notes_key("me")
        await store.set_array(key, ["a", "b", "c"])

        with patch.object(
            store, "_read_raw", side_effect=OperationalError("SELECT", {}, Exception("locked"))
        ):
            with pytest.raises(OverrideStoreError):
                await operation(store, key)

        assert await store.get_array(key) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_read_failure_inside_toggle_flag_raises(self, store):
        await store.set_flag(followed_key("u1"), True)

        with patch.object(
            store, "_read_raw", side_effect=OperationalError("SELECT", {}, Exception("locked"))
        ):
            with pytest.raises(OverrideStoreError):
                await store.toggle_flag(followed_key("u1"))

        assert await store.get_flag(followed_key("u1")) is True


class TestLocks:
    """Tests for per-key lock bookkeeping."""

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self, store):
        await asyncio.gather(
            *(store.toggle_membership(liked_notes_key(f"u{i % 3}"), f"n{i}") for i in range(9))
        )
        await store.toggle_flag(followed_key("u1"))

        assert store._key_locks == {}
        assert store._lock_users == {}

    @pytest.mark.asyncio
    async def test_lock_is_dropped_after_failure(self, store):
        with patch.object(
            store, "_write_raw", side_effect=OperationalError("UPDATE", {}, Exception("disk full"))
        ):
            with pytest.raises(OverrideStoreError):
                await store.toggle_membership("k", "n1")

        assert store._key_locks == {}


class TestPersistence:
    """Tests for file-backed stores."""

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'overrides.db'}"

        with OverrideStore(url) as first:
            await first.set_array(liked_notes_key("me"), ["n1"])

        with OverrideStore(url) as second:
            assert await second.get_array(liked_notes_key("me")) == ["n1"]
