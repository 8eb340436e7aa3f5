# ─────────────────────────────────────────────────────────────────────────────
# Celery Worker Entry Point
# ─────────────────────────────────────────────────────────────────────────────
# Run with:
#   celery -A sketchlift.worker worker --loglevel=INFO -Q improve_sketch
#
# Pool size comes from WORKER_CONCURRENCY. Components are built once per
# worker process at import time (this module is only imported by the
# celery CLI, never by the API).
# ─────────────────────────────────────────────────────────────────────────────

import structlog
from celery.signals import worker_shutdown

from sketchlift.bootstrap import build_components
from sketchlift.config import get_settings
from sketchlift.logging_config import configure_logging, install_worker_logging

logger = structlog.get_logger(__name__)

settings = get_settings()
configure_logging(log_level=settings.log_level, json_output=settings.log_json)
install_worker_logging(settings.log_level, settings.log_json)

components = build_components(settings)
celery_app = components.celery_app

logger.info(
    "worker_ready",
    concurrency=settings.worker_concurrency,
    max_attempts=settings.job_max_attempts,
    store_backend=components.store.backend_name,
)


@worker_shutdown.connect
def _close_components(**_: object) -> None:
    components.close()
