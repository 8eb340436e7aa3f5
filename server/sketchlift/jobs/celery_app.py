# ─────────────────────────────────────────────────────────────────────────────
# Celery App: broker queue + worker pool for improvement jobs
# ─────────────────────────────────────────────────────────────────────────────
# Each process (API and worker) builds its own app through bootstrap and
# registers the task against its own JobRunner. The API process only
# publishes, except in eager mode where the task runs inline.
# No module-level app here.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from typing import TYPE_CHECKING

from celery import Celery, Task

from sketchlift.config import Settings
from sketchlift.exceptions import APIError

if TYPE_CHECKING:
    from sketchlift.jobs.runner import JobRunner

IMPROVE_SKETCH_TASK = "sketchlift.improve_sketch"
IMPROVE_SKETCH_QUEUE = "improve_sketch"


def create_celery_app(settings: Settings) -> Celery:
    """Celery app configured for single-delivery, fixed-size pools."""
    app = Celery("sketchlift", broker=settings.celery_broker_url)
    app.conf.update(
        task_default_queue=IMPROVE_SKETCH_QUEUE,
        task_serializer="json",
        accept_content=["json"],
        # Status lives in the job status store, not in a Celery result backend.
        task_ignore_result=True,
        task_always_eager=settings.celery_task_always_eager,
        worker_concurrency=settings.worker_concurrency,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        timezone="UTC",
        enable_utc=True,
    )
    return app


def register_tasks(app: Celery, runner: JobRunner, settings: Settings) -> Task:
    """Bind the improvement task to a runner owned by this process.

    Retries: APIError only, exponential backoff with jitter, bounded by
    ``job_max_attempts``. Each attempt is capped by the job time limit.
    """

    @app.task(
        name=IMPROVE_SKETCH_TASK,
        bind=True,
        autoretry_for=(APIError,),
        retry_backoff=settings.job_retry_backoff_seconds,
        retry_backoff_max=settings.job_retry_backoff_max_seconds,
        retry_jitter=True,
        max_retries=settings.job_max_attempts - 1,
        time_limit=settings.job_time_limit_seconds,
        soft_time_limit=max(settings.job_time_limit_seconds - 10, 1),
    )
    def improve_sketch(self: Task, request_id: str, payload: dict) -> None:
        runner.run(
            request_id,
            payload,
            attempt=self.request.retries + 1,
            max_attempts=self.max_retries + 1,
        )

    return improve_sketch
