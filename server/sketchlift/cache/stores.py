# ─────────────────────────────────────────────────────────────────────────────
# Key-Value Stores: TTL-bounded single-key storage (memory or Redis)
# ─────────────────────────────────────────────────────────────────────────────
# Both the result cache and the job status store sit on top of this
# interface. Every operation touches exactly one key, so correctness only
# relies on single-key atomicity of the backend.
#
#   MemoryStore: cachetools.TLRUCache with a per-item TTL. Single process;
#                 used for local development and tests.
#   RedisStore: redis-py, SET ... EX. Shared by API and worker processes.
# ─────────────────────────────────────────────────────────────────────────────


import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

import structlog
from cachetools import TLRUCache

from sketchlift.config import Settings

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Unified interface for TTL-bounded string storage."""

    backend_name: str = "unknown"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent or expired."""

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Atomically write a value that expires after ttl_seconds."""

    @abstractmethod
    def ping(self) -> bool:
        """Whether the backend is reachable."""

    def close(self) -> None:
        """Release backend resources."""


class MemoryStore(KeyValueStore):
    """In-process store with passive per-item expiry.

    There is no capacity eviction: entries leave only when their TTL
    elapses. ``timer`` is injectable so tests can advance time.
    """

    backend_name = "memory"

    def __init__(self, timer: Callable[[], float] = time.monotonic):
        self._data: TLRUCache = TLRUCache(
            maxsize=math.inf,
            ttu=lambda _key, value, now: now + value[1],
            timer=timer,
        )
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._data.get(key)
        return None if item is None else item[0]

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, ttl_seconds)

    def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        with self._lock:
            self._data.expire()
            return len(self._data)


class RedisStore(KeyValueStore):
    """Redis-backed store for multi-process deployments.

    The client is constructed by the process entry point (see
    ``create_store``) and injected; this class never owns a global pool.
    """

    backend_name = "redis"

    def __init__(self, client: Any):
        self._client = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisStore":
        import redis

        return cls(redis.Redis.from_url(redis_url, decode_responses=True))

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.set(key, value, ex=ttl_seconds)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except Exception as e:
            logger.warning("store_ping_failed", backend=self.backend_name, error=str(e))
            return False

    def close(self) -> None:
        self._client.close()


def create_store(settings: Settings) -> KeyValueStore:
    """Instantiate the configured store backend."""
    if settings.store_backend == "memory":
        logger.info("store_selected", backend="memory", shared=False)
        return MemoryStore()

    if settings.store_backend == "redis":
        logger.info("store_selected", backend="redis", host=settings.redis_url.rsplit("@", 1)[-1])
        return RedisStore.from_url(settings.redis_url)

    raise ValueError(f"Unsupported store backend: {settings.store_backend!r}")
