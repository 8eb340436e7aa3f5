# ─────────────────────────────────────────────────────────────────────────────
# Job Status Store: per-request lifecycle records, results and errors
# ─────────────────────────────────────────────────────────────────────────────
# Key layout (namespace = cache namespace, e.g. "improve_sketch"):
#   <ns>:status:<request_id>   JobStatusRecord
#   <ns>:result:<request_id>   ImprovementResult   (written before "done")
#   <ns>:error:<request_id>    JobErrorPayload     (written before "error")
#
# Status records stay small so polling is cheap regardless of result size.
# All three keys share the job TTL, which is shorter than the cache TTL.
#
# State machine: queued → running → {done | error}. Running may be
# rewritten while a job retries; terminal states never change.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import structlog
from pydantic import ValidationError

from sketchlift.cache.stores import KeyValueStore
from sketchlift.exceptions import JobStateError
from sketchlift.schemas import (
    ImageResult,
    JobErrorPayload,
    JobState,
    JobStatusRecord,
    VectorResult,
    improvement_result_adapter,
)

logger = structlog.get_logger(__name__)

_ALLOWED: dict[JobState | None, frozenset[JobState]] = {
    None: frozenset({JobState.QUEUED, JobState.RUNNING, JobState.ERROR}),
    JobState.QUEUED: frozenset({JobState.RUNNING, JobState.ERROR}),
    JobState.RUNNING: frozenset({JobState.RUNNING, JobState.DONE, JobState.ERROR}),
    JobState.DONE: frozenset(),
    JobState.ERROR: frozenset(),
}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStatusStore:
    """Reads and writes job status/result/error keys."""

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str,
        ttl_seconds: int,
        now: Callable[[], str] = _utc_now,
    ):
        self._store = store
        self._namespace = namespace
        self._ttl_seconds = ttl_seconds
        self._now = now

    # ── Keys ─────────────────────────────────────────────────────────────────

    def status_key(self, request_id: str) -> str:
        return f"{self._namespace}:status:{request_id}"

    def result_key(self, request_id: str) -> str:
        return f"{self._namespace}:result:{request_id}"

    def error_key(self, request_id: str) -> str:
        return f"{self._namespace}:error:{request_id}"

    # ── Reads ────────────────────────────────────────────────────────────────

    def get_status(self, request_id: str) -> JobStatusRecord | None:
        raw = self._store.get(self.status_key(request_id))
        if raw is None:
            return None
        try:
            return JobStatusRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("job_status_unreadable", request_id=request_id)
            return None

    def get_result(self, request_id: str) -> VectorResult | ImageResult | None:
        raw = self._store.get(self.result_key(request_id))
        if raw is None:
            return None
        try:
            return improvement_result_adapter.validate_json(raw)
        except ValidationError:
            logger.warning("job_result_unreadable", request_id=request_id)
            return None

    def get_error(self, request_id: str) -> JobErrorPayload | None:
        raw = self._store.get(self.error_key(request_id))
        if raw is None:
            return None
        try:
            return JobErrorPayload.model_validate_json(raw)
        except ValidationError:
            logger.warning("job_error_unreadable", request_id=request_id)
            return None

    # ── Transitions ──────────────────────────────────────────────────────────

    def _checked_current(self, request_id: str, target: JobState) -> JobStatusRecord | None:
        current = self.get_status(request_id)
        current_state = current.status if current else None
        if target not in _ALLOWED[current_state]:
            raise JobStateError(
                request_id,
                current_state.value if current_state else "absent",
                target.value,
            )
        return current

    def _write(
        self,
        request_id: str,
        current: JobStatusRecord | None,
        target: JobState,
        **fields: object,
    ) -> JobStatusRecord:
        now = self._now()
        if current is None:
            record = JobStatusRecord(
                request_id=request_id, status=target, created_at=now, updated_at=now
            )
        else:
            record = current.model_copy(update={"status": target, "updated_at": now})
        record = record.model_copy(update=fields)

        self._store.set(self.status_key(request_id), record.model_dump_json(), self._ttl_seconds)
        logger.info(
            "job_status_changed",
            request_id=request_id,
            previous=current.status.value if current else None,
            status=target.value,
        )
        return record

    def create(self, request_id: str) -> JobStatusRecord:
        """Record a freshly dispatched job as queued."""
        current = self._checked_current(request_id, JobState.QUEUED)
        return self._write(request_id, current, JobState.QUEUED)

    def mark_running(self, request_id: str, attempt: int) -> JobStatusRecord:
        current = self._checked_current(request_id, JobState.RUNNING)
        started_at = current.started_at if current and current.started_at else self._now()
        return self._write(
            request_id, current, JobState.RUNNING, started_at=started_at, attempts=attempt
        )

    def mark_done(self, request_id: str, result: VectorResult | ImageResult) -> JobStatusRecord:
        current = self._checked_current(request_id, JobState.DONE)
        self._store.set(self.result_key(request_id), result.model_dump_json(), self._ttl_seconds)
        return self._write(request_id, current, JobState.DONE, completed_at=self._now())

    def mark_error(self, request_id: str, message: str, kind: str) -> JobStatusRecord:
        current = self._checked_current(request_id, JobState.ERROR)
        payload = JobErrorPayload(message=message, kind=kind)
        self._store.set(self.error_key(request_id), payload.model_dump_json(), self._ttl_seconds)
        return self._write(request_id, current, JobState.ERROR, completed_at=self._now())
