# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures: shared across all tests
# ─────────────────────────────────────────────────────────────────────────────
# No network: the provider is an httpx.MockTransport, the store is an
# in-memory TLRU cache on a fake clock, and Celery runs tasks eagerly.
# ─────────────────────────────────────────────────────────────────────────────

import io
import json
import os
from typing import Any

import celery._state
import httpx
import PIL.Image
import pytest
from httpx import ASGITransport, AsyncClient

# Set env BEFORE importing app modules (get_settings is cached).
os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ.setdefault("SUBMIT_RATE_LIMIT", "1000/minute")
os.environ.setdefault("LOG_JSON", "false")

from sketchlift.bootstrap import Components, build_components  # noqa: E402
from sketchlift.cache.stores import MemoryStore  # noqa: E402
from sketchlift.config import Settings  # noqa: E402

SQUARE_PATH = "M0 0 L10 0 L10 10 L0 10 Z"

DUAL_REPLY: dict[str, Any] = {
    "displaySvg": '<svg xmlns="http://www.w3.org/2000/svg"><path d="M0 0 L10 0 L10 10 L0 10 Z"/></svg>',
    "extrusionPath": SQUARE_PATH,
    "isClosed": True,
    "suggestedDepth": 0.3,
    "suggestedBevel": 0.05,
    "palette": ["#112233"],
    "notes": "Straightened edges.",
}


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ProviderStub:
    """Scripted generateContent endpoint behind httpx.MockTransport.

    Queued items are served in order; each is an httpx.Response or an
    exception to raise. ``default`` is served once the queue is empty.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._queue: list[httpx.Response | Exception] = []
        self.default: httpx.Response | Exception | None = None

    @property
    def calls(self) -> int:
        return len(self.requests)

    def queue(self, *items: httpx.Response | Exception) -> None:
        self._queue.extend(items)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._queue.pop(0) if self._queue else self.default
        if item is None:
            raise AssertionError(f"Unexpected provider call: {request.url}")
        if isinstance(item, Exception):
            raise item
        return item

    def last_payload(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)

    # ── Reply builders ───────────────────────────────────────────────────────

    @staticmethod
    def json_reply(payload: dict[str, Any]) -> httpx.Response:
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": json.dumps(payload)}]}}]},
        )

    @staticmethod
    def image_reply(data_b64: str, metadata: str | None = None) -> httpx.Response:
        parts: list[dict[str, Any]] = [
            {"inlineData": {"mimeType": "image/png", "data": data_b64}}
        ]
        if metadata is not None:
            parts.append({"text": metadata})
        return httpx.Response(200, json={"candidates": [{"content": {"parts": parts}}]})


@pytest.fixture(autouse=True)
def _isolate_celery_shared_tasks():
    """Each test builds its own Celery app; drop tasks shared by earlier apps."""
    saved = set(celery._state._on_app_finalizers)
    yield
    celery._state._on_app_finalizers.clear()
    celery._state._on_app_finalizers.update(saved)


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing: memory store, eager Celery."""
    return Settings(
        gemini_api_key="test-key",
        store_backend="memory",
        celery_broker_url="memory://",
        celery_task_always_eager=True,
        job_max_attempts=3,
        job_retry_backoff_seconds=0,
        enable_debug_routes=True,
        log_json=False,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(timer=clock)


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def components(test_settings: Settings, store: MemoryStore, provider: ProviderStub) -> Components:
    """Full component graph wired to the fake store and mocked provider."""
    built = build_components(test_settings, store=store, transport=provider.transport())
    yield built
    built.close()


@pytest.fixture
def png_bytes() -> bytes:
    buf = io.BytesIO()
    PIL.Image.new("RGB", (4, 4), color=(200, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
async def client(components: Components):
    """httpx AsyncClient with manually-initialized app state."""
    from sketchlift.main import attach_components, create_app

    app = create_app()
    # Lifespan doesn't run with ASGITransport.
    attach_components(app, components)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
