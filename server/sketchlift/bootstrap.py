# ─────────────────────────────────────────────────────────────────────────────
# Component Wiring: one place that builds every process-owned object
# ─────────────────────────────────────────────────────────────────────────────
# Called by the FastAPI lifespan and by the Celery worker entry point, so
# both processes agree on store, key layout, TTLs and provider settings.
# No module-level singletons: whoever calls build_components owns the
# result and must call close().
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog
from celery import Celery

from sketchlift.cache.result_cache import ResultCache
from sketchlift.cache.stores import KeyValueStore, create_store
from sketchlift.config import Settings
from sketchlift.generation.client import GenerationClient
from sketchlift.jobs.celery_app import create_celery_app, register_tasks
from sketchlift.jobs.dispatcher import JobDispatcher
from sketchlift.jobs.runner import JobRunner
from sketchlift.jobs.status_store import JobStatusStore
from sketchlift.services.improvement import ImprovementService

logger = structlog.get_logger(__name__)


@dataclass
class Components:
    settings: Settings
    store: KeyValueStore
    cache: ResultCache
    status_store: JobStatusStore
    client: GenerationClient
    celery_app: Celery
    runner: JobRunner
    dispatcher: JobDispatcher
    service: ImprovementService

    def close(self) -> None:
        self.client.close()
        self.store.close()
        logger.info("components_closed")


def build_components(
    settings: Settings,
    *,
    store: KeyValueStore | None = None,
    transport: httpx.BaseTransport | None = None,
) -> Components:
    """Build the full component graph.

    ``store`` and ``transport`` let tests substitute an in-memory store
    and a mocked provider.

    Raises:
        ConfigurationError: the provider API key is missing.
    """
    if store is None:
        store = create_store(settings)
    cache = ResultCache(store, settings.cache_namespace, settings.cache_ttl_seconds)
    status_store = JobStatusStore(store, settings.cache_namespace, settings.job_ttl_seconds)
    client = GenerationClient.from_settings(settings, transport=transport)

    celery_app = create_celery_app(settings)
    runner = JobRunner(cache, client, status_store, settings.cache_schema_version)
    register_tasks(celery_app, runner, settings)
    dispatcher = JobDispatcher(celery_app, status_store)

    service = ImprovementService(
        cache, client, dispatcher, status_store, settings.cache_schema_version
    )

    logger.info(
        "components_built",
        store_backend=store.backend_name,
        vector_contract=settings.vector_contract,
        eager_jobs=settings.celery_task_always_eager,
    )
    return Components(
        settings=settings,
        store=store,
        cache=cache,
        status_store=status_store,
        client=client,
        celery_app=celery_app,
        runner=runner,
        dispatcher=dispatcher,
        service=service,
    )
