"""
Tests for the day-scoped insight cache.
"""
import json
from datetime import datetime, timezone
import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from insight_core.storage.cache import CacheManager, InMemoryCacheStore, JsonFileCacheStore


@pytest.fixture
def store():
    return InMemoryCacheStore()


@pytest.fixture
def cache(store, fixed_clock):
    return CacheManager(store, clock=fixed_clock)


class TestCacheKeys:
    """Test key format and day scoping."""

    def test_key_format(self, cache):
        assert cache.key_for("c1", "actions") == "insights:actions:c1:2025-01-15"

    def test_custom_prefix(self, store, fixed_clock):
        cache = CacheManager(store, prefix="ins", clock=fixed_clock)
        assert cache.key_for("c1", "decisions") == "ins:decisions:c1:2025-01-15"

    @pytest.mark.asyncio
    async def test_new_day_is_a_miss(self, store):
        now = {"value": datetime(2025, 1, 15, 23, 59, tzinfo=timezone.utc)}
        cache = CacheManager(store, clock=lambda: now["value"])

        await cache.put("c1", "actions", [{"title": "x"}])
        assert await cache.get("c1", "actions") == [{"title": "x"}]

        now["value"] = datetime(2025, 1, 16, 0, 1, tzinfo=timezone.utc)
        assert await cache.get("c1", "actions") is None


class TestCacheReadWrite:
    """Test get/put semantics."""

    @pytest.mark.asyncio
    async def test_miss(self, cache):
        assert await cache.get("c1", "actions") is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, cache):
        items = [{"title": "prepare the slides", "confidence": 0.9}]
        await cache.put("c1", "actions", items)
        assert await cache.get("c1", "actions") == items

    @pytest.mark.asyncio
    async def test_empty_list_is_a_hit(self, cache):
        await cache.put("c1", "decisions", [])
        assert await cache.get("c1", "decisions") == []

    @pytest.mark.asyncio
    async def test_categories_are_independent(self, cache):
        await cache.put("c1", "actions", [{"title": "a"}])
        assert await cache.get("c1", "decisions") is None

    @pytest.mark.asyncio
    async def test_put_overwrites(self, cache):
        await cache.put("c1", "actions", [{"title": "old"}])
        await cache.put("c1", "actions", [{"title": "new"}])
        assert await cache.get("c1", "actions") == [{"title": "new"}]

    @pytest.mark.asyncio
    async def test_non_list_payload_is_a_miss(self, store, cache):
        await store.set(cache.key_for("c1", "actions"), json.dumps({"title": "x"}))
        assert await cache.get("c1", "actions") is None

    @pytest.mark.asyncio
    async def test_undecodable_payload_is_a_miss(self, store, cache):
        await store.set(cache.key_for("c1", "actions"), "{not json")
        assert await cache.get("c1", "actions") is None


class TestCacheFailures:
    """Store failures never escape the manager."""

    @pytest.mark.asyncio
    async def test_get_error_is_a_miss(self, fixed_clock):
        store = Mock()
        store.get = AsyncMock(side_effect=OSError("disk gone"))
        metrics = Mock()
        cache = CacheManager(store, clock=fixed_clock, metrics=metrics)

        assert await cache.get("c1", "actions") is None
        metrics.record_cache_error.assert_called_once_with("get")

    @pytest.mark.asyncio
    async def test_set_error_is_swallowed(self, fixed_clock):
        store = Mock()
        store.set = AsyncMock(side_effect=OSError("read-only"))
        metrics = Mock()
        cache = CacheManager(store, clock=fixed_clock, metrics=metrics)

        await cache.put("c1", "actions", [])
        metrics.record_cache_error.assert_called_once_with("set")

    @pytest.mark.asyncio
    async def test_clear_all_error_returns_zero(self, fixed_clock):
        store = Mock()
        store.keys = AsyncMock(side_effect=OSError("boom"))
        cache = CacheManager(store, clock=fixed_clock)

        assert await cache.clear_all() == 0


class TestCacheInvalidation:
    """Test invalidate and clear_all."""

    @pytest.mark.asyncio
    async def test_invalidate(self, cache):
        await cache.put("c1", "actions", [{"title": "a"}])
        assert await cache.invalidate("c1", "actions") is True
        assert await cache.get("c1", "actions") is None

    @pytest.mark.asyncio
    async def test_invalidate_missing_entry(self, cache):
        assert await cache.invalidate("c1", "actions") is False

    @pytest.mark.asyncio
    async def test_clear_all_only_touches_prefix(self, store, cache):
        await cache.put("c1", "actions", [])
        await cache.put("c2", "decisions", [])
        await store.set("other:key", "[]")

        removed = await cache.clear_all()

        assert removed == 2
        assert await store.keys() == ["other:key"]


class TestJsonFileCacheStore:
    """Test file-backed store."""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path, fixed_clock):
        path = tmp_path / "state" / "cache.json"
        first = CacheManager(JsonFileCacheStore(str(path)), clock=fixed_clock)
        await first.put("c1", "actions", [{"title": "a"}])

        second = CacheManager(JsonFileCacheStore(str(path)), clock=fixed_clock)
        assert await second.get("c1", "actions") == [{"title": "a"}]
        assert not path.with_suffix(".tmp").exists()

    @pytest.mark.asyncio
    async def test_remove(self, tmp_path):
        store = JsonFileCacheStore(str(tmp_path / "cache.json"))
        await store.set("k", "[]")
        await store.remove("k")

        assert await JsonFileCacheStore(str(tmp_path / "cache.json")).keys() == []

    @pytest.mark.asyncio
    async def test_corrupt_file_is_a_miss(self, tmp_path, fixed_clock):
        path = tmp_path / "cache.json"
        path.write_text("{broken", encoding="utf-8")
        cache = CacheManager(JsonFileCacheStore(str(path)), clock=fixed_clock)

        assert await cache.get("c1", "actions") is None

    @pytest.mark.asyncio
    async def test_corrupt_file_moved_aside_before_rewrite(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{broken", encoding="utf-8")
        store = JsonFileCacheStore(str(path))

        with patch("insight_core.storage.cache.logger") as logger:
            await store.set("k", "[]")

        logger.warning.assert_called_once()
        assert (tmp_path / "cache.json.corrupt").read_text(encoding="utf-8") == "{broken"
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "[]"}

    @pytest.mark.asyncio
    async def test_file_read_off_event_loop(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({"k": "[]"}), encoding="utf-8")
        store = JsonFileCacheStore(str(path))

        with patch("insight_core.storage.cache.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            assert await store.get("k") == "[]"
            assert await store.get("k") == "[]"

        to_thread.assert_called_once_with(store._read)
