# ─────────────────────────────────────────────────────────────────────────────
# Result Cache: fingerprint → ImprovementResult, TTL-bounded
# ─────────────────────────────────────────────────────────────────────────────
# Single source of truth for "have we already generated this". Entries are
# content-addressed, so there is no capacity eviction; passive TTL expiry
# is the only way an entry leaves. There is no update or delete: a later
# put for the same fingerprint silently overwrites (last write wins).
# ─────────────────────────────────────────────────────────────────────────────


import threading

import structlog
from pydantic import ValidationError

from sketchlift.cache.stores import KeyValueStore
from sketchlift.schemas import ImageResult, VectorResult, improvement_result_adapter

logger = structlog.get_logger(__name__)


class ResultCache:
    """Fingerprint-keyed cache of generation results.

    Keys are ``<namespace>:<fingerprint>``, and fingerprints already
    carry their ``v<schema>`` prefix, giving ``improve_sketch:v2:<hex>``.
    """

    def __init__(self, store: KeyValueStore, namespace: str, ttl_seconds: int):
        self._store = store
        self._namespace = namespace
        self._ttl_seconds = ttl_seconds
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._writes = 0

    def key_for(self, fingerprint: str) -> str:
        return f"{self._namespace}:{fingerprint}"

    # ── Get ──────────────────────────────────────────────────────────────────

    def get(self, fingerprint: str) -> VectorResult | ImageResult | None:
        """Look up a cached result. None means miss."""
        key = self.key_for(fingerprint)
        raw = self._store.get(key)
        if raw is not None:
            try:
                result = improvement_result_adapter.validate_json(raw)
            except ValidationError as e:
                # Written by an older schema; regenerate rather than fail.
                logger.warning("cache_entry_unreadable", key=key, error=str(e))
            else:
                self._count(hit=True)
                logger.debug("cache_hit", key=key)
                return result

        self._count(hit=False)
        logger.debug("cache_miss", key=key)
        return None

    # ── Put ──────────────────────────────────────────────────────────────────

    def put(
        self,
        fingerprint: str,
        result: VectorResult | ImageResult,
        ttl_seconds: int | None = None,
    ) -> None:
        """Store a result under its fingerprint (single atomic write)."""
        key = self.key_for(fingerprint)
        self._store.set(
            key,
            result.model_dump_json(),
            self._ttl_seconds if ttl_seconds is None else ttl_seconds,
        )
        with self._stats_lock:
            self._writes += 1

    # ── Stats ────────────────────────────────────────────────────────────────

    def _count(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def stats(self) -> dict:
        """Return cache hit/miss statistics for this process."""
        with self._stats_lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "writes": self._writes,
                "hit_rate": round(self._hits / max(total, 1), 3),
            }
