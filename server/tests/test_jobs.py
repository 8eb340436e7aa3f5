# ─────────────────────────────────────────────────────────────────────────────
# Tests: Job status state machine, dispatcher, worker runner, retries
# ─────────────────────────────────────────────────────────────────────────────

from unittest.mock import MagicMock, patch

import httpx
import pytest

from conftest import DUAL_REPLY
from sketchlift.exceptions import DispatchError, JobStateError
from sketchlift.jobs.celery_app import IMPROVE_SKETCH_TASK
from sketchlift.jobs.dispatcher import JobDispatcher
from sketchlift.jobs.status_store import JobStatusStore
from sketchlift.schemas import ImprovementRequest, JobState, JobStatusRecord, VectorResult

SVG = '<svg><path d="M0 0 L5 0 L5 5 Z"/></svg>'


def _result() -> VectorResult:
    return VectorResult(
        display_svg="<svg/>",
        extrusion_path="M0 0 L1 0 L1 1 Z",
        is_closed=True,
        suggested_depth=0.2,
        suggested_bevel=0.0,
    )


@pytest.fixture
def status_store(store) -> JobStatusStore:
    return JobStatusStore(store, "improve_sketch", ttl_seconds=3600)


class TestStatusStore:
    def test_lifecycle(self, status_store):
        status_store.create("r1")
        assert status_store.get_status("r1").status == JobState.QUEUED

        running = status_store.mark_running("r1", attempt=1)
        assert running.status == JobState.RUNNING
        assert running.started_at is not None
        assert running.attempts == 1

        done = status_store.mark_done("r1", _result())
        assert done.status == JobState.DONE
        assert done.completed_at is not None
        assert status_store.get_result("r1") == _result()
        assert status_store.get_error("r1") is None

    def test_key_layout(self, status_store, store):
        status_store.create("r1")
        assert store.get("improve_sketch:status:r1") is not None
        assert status_store.result_key("r1") == "improve_sketch:result:r1"
        assert status_store.error_key("r1") == "improve_sketch:error:r1"

    def test_rerunning_keeps_first_start(self, status_store):
        status_store.create("r1")
        first = status_store.mark_running("r1", attempt=1)
        second = status_store.mark_running("r1", attempt=2)
        assert second.started_at == first.started_at
        assert second.attempts == 2

    def test_no_backward_transition(self, status_store):
        status_store.create("r1")
        status_store.mark_running("r1", attempt=1)
        with pytest.raises(JobStateError):
            status_store.create("r1")

    def test_terminal_is_final(self, status_store):
        status_store.create("r1")
        status_store.mark_running("r1", attempt=1)
        status_store.mark_error("r1", "boom", "internal")
        with pytest.raises(JobStateError):
            status_store.mark_done("r1", _result())
        # Rejected before any payload write: exactly one of result/error.
        assert status_store.get_result("r1") is None
        assert status_store.get_error("r1").message == "boom"

    def test_cannot_finish_from_queued(self, status_store):
        status_store.create("r1")
        with pytest.raises(JobStateError):
            status_store.mark_done("r1", _result())

    def test_expiry(self, status_store, clock):
        status_store.create("r1")
        clock.advance(3601)
        assert status_store.get_status("r1") is None


class TestDispatcher:
    def test_dispatch_records_queued_and_publishes(self, status_store):
        celery_app = MagicMock()
        request = ImprovementRequest(artifact=SVG, hint="star", run_async=True)

        request_id = JobDispatcher(celery_app, status_store).dispatch(request)

        assert status_store.get_status(request_id).status == JobState.QUEUED
        name = celery_app.signature.call_args.args[0]
        kwargs = celery_app.signature.call_args.kwargs["kwargs"]
        assert name == IMPROVE_SKETCH_TASK
        assert kwargs["request_id"] == request_id
        assert kwargs["payload"]["artifact"] == SVG
        celery_app.signature.return_value.apply_async.assert_called_once_with(task_id=request_id)

    def test_broker_failure(self, status_store):
        celery_app = MagicMock()
        celery_app.signature.return_value.apply_async.side_effect = ConnectionError("broker down")
        request = ImprovementRequest(artifact=SVG, run_async=True)

        with patch("sketchlift.jobs.dispatcher.uuid.uuid4", return_value=MagicMock(hex="job-1")):
            with pytest.raises(DispatchError):
                JobDispatcher(celery_app, status_store).dispatch(request)

        request_id = "job-1"
        assert status_store.get_status(request_id).status == JobState.ERROR
        assert status_store.get_error(request_id).kind == "dispatch"


class TestQueuedToDone:
    """Dispatch, then a worker picks the job up, then the status expires."""

    def test_full_lifecycle(self, components, provider, clock):
        provider.queue(provider.json_reply(DUAL_REPLY))
        celery_app = MagicMock()
        dispatcher = JobDispatcher(celery_app, components.status_store)
        request = ImprovementRequest(artifact=SVG, run_async=True)

        request_id = dispatcher.dispatch(request)
        assert components.service.get_status(request_id).status == JobState.QUEUED

        # What the worker receives off the queue.
        payload = celery_app.signature.call_args.kwargs["kwargs"]["payload"]
        components.runner.run(request_id, payload)

        status = components.service.get_status(request_id)
        assert status.status == JobState.DONE
        assert status.result.extrusion_path == DUAL_REPLY["extrusionPath"]
        assert status.error is None

        clock.advance(components.settings.job_ttl_seconds + 1)
        assert components.service.get_status(request_id).status == JobState.NOT_FOUND

    def test_done_without_result_is_not_found(self, components, store):
        # A done record whose result key already expired.
        record = JobStatusRecord(
            request_id="r1", status=JobState.DONE, created_at="t0", updated_at="t1"
        )
        store.set(components.status_store.status_key("r1"), record.model_dump_json(), 3600)
        assert components.service.get_status("r1").status == JobState.NOT_FOUND

    def test_worker_uses_shared_cache(self, components, provider):
        provider.queue(provider.json_reply(DUAL_REPLY))
        request = ImprovementRequest(artifact=SVG, run_async=True)

        first = components.dispatcher.dispatch(request)
        second = components.dispatcher.dispatch(request)

        assert provider.calls == 1
        assert components.service.get_status(first).status == JobState.DONE
        assert components.service.get_status(second).result == components.service.get_status(first).result

    def test_redelivery_of_finished_job_is_skipped(self, components, provider):
        provider.queue(provider.json_reply(DUAL_REPLY))
        request = ImprovementRequest(artifact=SVG, run_async=True)
        request_id = components.dispatcher.dispatch(request)

        components.runner.run(request_id, request.to_payload())

        assert provider.calls == 1
        assert components.service.get_status(request_id).status == JobState.DONE


class TestRetries:
    """Eager Celery: retries re-run inline with the task's retry policy."""

    def test_transient_failures_then_success(self, components, provider):
        provider.queue(
            httpx.ReadTimeout("slow"),
            httpx.ConnectError("refused"),
            provider.json_reply(DUAL_REPLY),
        )
        request_id = components.dispatcher.dispatch(ImprovementRequest(artifact=SVG, run_async=True))

        record = components.status_store.get_status(request_id)
        assert record.status == JobState.DONE
        assert record.attempts == 3
        assert provider.calls == 3
        assert components.status_store.get_error(request_id) is None

    def test_invalid_response_not_retried(self, components, provider):
        reply = {k: v for k, v in DUAL_REPLY.items() if k != "extrusionPath"}
        provider.queue(provider.json_reply(reply))
        request_id = components.dispatcher.dispatch(ImprovementRequest(artifact=SVG, run_async=True))

        status = components.service.get_status(request_id)
        assert status.status == JobState.ERROR
        assert status.error == "Missing required fields: extrusionPath"
        assert status.result is None
        assert components.status_store.get_status(request_id).attempts == 1
        assert provider.calls == 1

    def test_malformed_envelope_stored_as_invalid_response(self, components, provider):
        provider.queue(httpx.Response(200, json={"candidates": {"a": 1}}))
        request_id = components.dispatcher.dispatch(ImprovementRequest(artifact=SVG, run_async=True))

        assert components.status_store.get_status(request_id).status == JobState.ERROR
        error = components.status_store.get_error(request_id)
        assert error.kind == "invalid_response"
        assert error.message == "candidates: expected a list"
        assert provider.calls == 1

    def test_attempts_exhausted(self, components, provider):
        provider.default = httpx.ReadTimeout("slow")
        request_id = components.dispatcher.dispatch(ImprovementRequest(artifact=SVG, run_async=True))

        record = components.status_store.get_status(request_id)
        assert record.status == JobState.ERROR
        assert record.attempts == components.settings.job_max_attempts
        assert provider.calls == components.settings.job_max_attempts
        error = components.status_store.get_error(request_id)
        assert error.kind == "timeout"
        assert components.status_store.get_result(request_id) is None
