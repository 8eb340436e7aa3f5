# ─────────────────────────────────────────────────────────────────────────────
# Tests: Key-value stores + Result Cache
# ─────────────────────────────────────────────────────────────────────────────

from unittest.mock import MagicMock

from structlog.testing import capture_logs

from sketchlift.cache.result_cache import ResultCache
from sketchlift.cache.stores import MemoryStore, RedisStore, create_store
from sketchlift.config import Settings
from sketchlift.schemas import ImageResult, VectorResult


def _vector(notes: str = "ok") -> VectorResult:
    return VectorResult(
        display_svg="<svg/>",
        extrusion_path="M0 0 L1 0 L1 1 Z",
        is_closed=True,
        suggested_depth=0.2,
        suggested_bevel=0.0,
        notes=notes,
    )


class TestMemoryStore:
    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None

    def test_value_lives_until_ttl(self, store, clock):
        store.set("k", "v", ttl_seconds=10)
        clock.advance(9)
        assert store.get("k") == "v"
        clock.advance(2)
        assert store.get("k") is None

    def test_per_item_ttl(self, store, clock):
        store.set("short", "a", ttl_seconds=5)
        store.set("long", "b", ttl_seconds=500)
        clock.advance(10)
        assert store.get("short") is None
        assert store.get("long") == "b"
        assert len(store) == 1

    def test_overwrite_resets_ttl(self, store, clock):
        store.set("k", "old", ttl_seconds=10)
        clock.advance(8)
        store.set("k", "new", ttl_seconds=10)
        clock.advance(8)
        assert store.get("k") == "new"

    def test_no_capacity_eviction(self, store):
        for i in range(5_000):
            store.set(f"k{i}", "v", ttl_seconds=60)
        assert store.get("k0") == "v"
        assert len(store) == 5_000


class TestRedisStore:
    def test_set_uses_expiry(self):
        client = MagicMock()
        RedisStore(client).set("k", "v", 30)
        client.set.assert_called_once_with("k", "v", ex=30)

    def test_get_passes_through(self):
        client = MagicMock()
        client.get.return_value = "v"
        assert RedisStore(client).get("k") == "v"

    def test_ping_failure_is_false(self):
        client = MagicMock()
        client.ping.side_effect = ConnectionError("down")
        with capture_logs() as logs:
            assert RedisStore(client).ping() is False
        assert logs[0]["event"] == "store_ping_failed"
        assert logs[0]["backend"] == "redis"


class TestCreateStore:
    def test_memory_backend(self):
        assert isinstance(create_store(Settings(store_backend="memory")), MemoryStore)


class TestResultCache:
    def test_miss_then_hit(self, store):
        cache = ResultCache(store, "improve_sketch", ttl_seconds=100)
        assert cache.get("v2:abc") is None
        cache.put("v2:abc", _vector())
        assert cache.get("v2:abc") == _vector()

    def test_key_layout(self, store):
        cache = ResultCache(store, "improve_sketch", ttl_seconds=100)
        cache.put("v2:abc", _vector())
        assert cache.key_for("v2:abc") == "improve_sketch:v2:abc"
        assert store.get("improve_sketch:v2:abc") is not None

    def test_idempotent_until_ttl_then_miss(self, store, clock):
        cache = ResultCache(store, "improve_sketch", ttl_seconds=100)
        cache.put("fp", _vector())
        first = cache.get("fp")
        clock.advance(50)
        assert cache.get("fp") == first
        clock.advance(51)
        assert cache.get("fp") is None

    def test_last_write_wins(self, store):
        cache = ResultCache(store, "improve_sketch", ttl_seconds=100)
        cache.put("fp", _vector("first"))
        cache.put("fp", _vector("second"))
        assert cache.get("fp").notes == "second"

    def test_image_result_round_trip(self, store):
        cache = ResultCache(store, "improve_sketch", ttl_seconds=100)
        image = ImageResult(
            image_base64="AAAA",
            title="t",
            style="s",
            background="transparent",
            notes="n",
        )
        cache.put("fp", image)
        assert cache.get("fp") == image

    def test_corrupt_entry_is_a_miss(self, store):
        cache = ResultCache(store, "improve_sketch", ttl_seconds=100)
        store.set("improve_sketch:fp", '{"kind": "mystery"}', 100)
        with capture_logs() as logs:
            assert cache.get("fp") is None
        events = [entry["event"] for entry in logs]
        assert "cache_entry_unreadable" in events
        assert logs[events.index("cache_entry_unreadable")]["key"] == "improve_sketch:fp"

    def test_stats(self, store):
        cache = ResultCache(store, "improve_sketch", ttl_seconds=100)
        cache.get("fp")
        cache.put("fp", _vector())
        cache.get("fp")
        stats = cache.stats()
        assert stats == {"hits": 1, "misses": 1, "writes": 1, "hit_rate": 0.5}
