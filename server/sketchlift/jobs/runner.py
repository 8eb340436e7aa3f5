# ─────────────────────────────────────────────────────────────────────────────
# Job Runner: what a worker does with one dequeued improvement job
# ─────────────────────────────────────────────────────────────────────────────
# Status writes happen at exactly three points:
#   pickup   → running (attempt n)
#   success  → result key, then done
#   final failure → error key, then error
# A failure that will be retried leaves the record in "running", so pollers
# only ever see the outcome of the last attempt.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from typing import Any

import structlog
from celery.exceptions import SoftTimeLimitExceeded

from sketchlift.cache.result_cache import ResultCache
from sketchlift.exceptions import APIError, SketchLiftError
from sketchlift.generation.client import GenerationClient
from sketchlift.jobs.status_store import JobStatusStore
from sketchlift.schemas import ImprovementRequest
from sketchlift.services.improvement import resolve_improvement

logger = structlog.get_logger(__name__)

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (APIError,)


def _error_fields(exc: Exception) -> tuple[str, str]:
    """(client message, kind) for the stored error payload."""
    if isinstance(exc, SketchLiftError):
        return exc.user_message, exc.kind
    if isinstance(exc, SoftTimeLimitExceeded):
        return "Generation exceeded the job time limit.", "timeout"
    return "An unexpected error occurred during generation.", "internal"


class JobRunner:
    """Executes improvement jobs against process-owned components."""

    def __init__(
        self,
        cache: ResultCache,
        client: GenerationClient,
        status_store: JobStatusStore,
        schema_version: int | None = None,
    ) -> None:
        self._cache = cache
        self._client = client
        self._status_store = status_store
        self._schema_version = schema_version

    def run(
        self,
        request_id: str,
        payload: dict[str, Any],
        attempt: int = 1,
        max_attempts: int = 1,
    ) -> None:
        """Process one job. Re-raises failures so the task layer can retry."""
        log = logger.bind(request_id=request_id, attempt=attempt, max_attempts=max_attempts)

        current = self._status_store.get_status(request_id)
        if current is not None and current.status.is_terminal:
            # Redelivered after it already finished; never rewrite a terminal state.
            log.warning("job_already_terminal", status=current.status.value)
            return

        self._status_store.mark_running(request_id, attempt)

        try:
            request = ImprovementRequest.from_payload(payload)
            result, cached = resolve_improvement(
                request, self._cache, self._client, self._schema_version
            )
        except Exception as exc:
            retrying = isinstance(exc, RETRYABLE_ERRORS) and attempt < max_attempts
            if retrying:
                log.warning(
                    "job_attempt_failed",
                    error=str(exc),
                    kind=getattr(exc, "kind", "internal"),
                    timeout=getattr(exc, "timeout", False),
                )
            else:
                message, kind = _error_fields(exc)
                self._status_store.mark_error(request_id, message, kind)
                log.error("job_failed", error=str(exc), kind=kind, exc_info=True)
            raise

        self._status_store.mark_done(request_id, result)
        log.info("job_done", cached=cached, kind=result.kind)
