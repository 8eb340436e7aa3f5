# ─────────────────────────────────────────────────────────────────────────────
# Job Dispatcher: record "queued", then publish the task message
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import uuid

import structlog
from celery import Celery

from sketchlift.exceptions import DispatchError
from sketchlift.jobs.celery_app import IMPROVE_SKETCH_TASK
from sketchlift.jobs.status_store import JobStatusStore
from sketchlift.schemas import ImprovementRequest

logger = structlog.get_logger(__name__)


class JobDispatcher:
    """Enqueues improvement jobs and returns their request id immediately."""

    def __init__(self, celery_app: Celery, status_store: JobStatusStore) -> None:
        self._celery = celery_app
        self._status_store = status_store

    def dispatch(self, request: ImprovementRequest) -> str:
        """Write status=queued and place ``{request_id, payload}`` on the queue.

        The status record is written first so a poll that races the worker
        never sees ``not_found`` for a job that was accepted.

        Raises:
            DispatchError: the broker rejected the message. The job is
                recorded as ``error`` so pollers see a terminal state.
        """
        request_id = uuid.uuid4().hex
        self._status_store.create(request_id)

        signature = self._celery.signature(
            IMPROVE_SKETCH_TASK,
            kwargs={"request_id": request_id, "payload": request.to_payload()},
        )
        try:
            signature.apply_async(task_id=request_id)
        except Exception as exc:  # noqa: BLE001 - broker error path
            logger.error("job_enqueue_failed", request_id=request_id, error=str(exc), exc_info=True)
            error = DispatchError()
            self._status_store.mark_error(request_id, error.user_message, error.kind)
            raise error from exc

        logger.info("job_dispatched", request_id=request_id, mode=request.mode)
        return request_id
