# ─────────────────────────────────────────────────────────────────────────────
# Improvement Service: sync/async orchestration of sketch improvement
# ─────────────────────────────────────────────────────────────────────────────
# Endpoints delegate here. This owns:
#   - Fingerprint → cache check (shared by the sync path and the worker)
#   - Sync: blocking provider call in a thread executor, cache write
#   - Async: dispatch and return a request id
#   - Status polling across the status/result/error keys
#   - Converting core errors into the uniform {result, errors} shape
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog
from opentelemetry import trace

from sketchlift.cache.fingerprint import compute_fingerprint
from sketchlift.cache.result_cache import ResultCache
from sketchlift.exceptions import SketchLiftError
from sketchlift.generation.client import GenerationClient, sniff_image_mime
from sketchlift.jobs.status_store import JobStatusStore
from sketchlift.schemas import (
    ImageResult,
    ImprovementRequest,
    ImprovementStatusResponse,
    JobState,
    SubmitImprovementResponse,
    VectorResult,
)

if TYPE_CHECKING:
    from sketchlift.jobs.dispatcher import JobDispatcher

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


def resolve_improvement(
    request: ImprovementRequest,
    cache: ResultCache,
    client: GenerationClient,
    schema_version: int | None = None,
) -> tuple[VectorResult | ImageResult, bool]:
    """Cache lookup, then provider call on miss. Returns (result, cached).

    Blocking. Used directly by workers and through an executor by the
    sync HTTP path. Concurrent identical misses both reach the provider;
    the later cache write wins.
    """
    fp_kwargs = {} if schema_version is None else {"schema_version": schema_version}
    fingerprint = compute_fingerprint(
        request.artifact, request.structural_hint, request.hint, **fp_kwargs
    )

    with tracer.start_as_current_span("cache_lookup"):
        cached = cache.get(fingerprint)
    if cached is not None:
        logger.info("improvement_cache_hit", fingerprint=fingerprint, mode=request.mode)
        return cached, True

    with tracer.start_as_current_span("provider_call") as span:
        span.set_attribute("mode", request.mode)
        t0 = time.perf_counter()
        result = client.generate(request)
        elapsed = int((time.perf_counter() - t0) * 1000)

    with tracer.start_as_current_span("cache_write"):
        cache.put(fingerprint, result)

    logger.info(
        "improvement_generated",
        fingerprint=fingerprint,
        mode=request.mode,
        time_ms=elapsed,
    )
    return result, False


class ImprovementService:
    """Request-boundary orchestration for submit and status polling."""

    def __init__(
        self,
        cache: ResultCache,
        client: GenerationClient,
        dispatcher: JobDispatcher,
        status_store: JobStatusStore,
        schema_version: int | None = None,
    ) -> None:
        self._cache = cache
        self._client = client
        self._dispatcher = dispatcher
        self._status_store = status_store
        self._schema_version = schema_version

    # ── Submit ───────────────────────────────────────────────────────────────

    async def submit(self, request: ImprovementRequest) -> SubmitImprovementResponse:
        """Sync mode returns a result; async mode returns a request id.

        Never raises for core failures: they become ``errors``.
        """
        with tracer.start_as_current_span("improve_sketch") as span:
            span.set_attribute("mode", request.mode)
            span.set_attribute("async", request.run_async)
            try:
                if request.run_async:
                    if isinstance(request.artifact, bytes):
                        # Reject undecodable rasters before they reach the queue.
                        sniff_image_mime(request.artifact)
                    request_id = await self._run_in_executor(self._dispatcher.dispatch, request)
                    return SubmitImprovementResponse(request_id=request_id)

                result, cached = await self._run_in_executor(
                    resolve_improvement,
                    request,
                    self._cache,
                    self._client,
                    self._schema_version,
                )
                span.set_attribute("cached", cached)
                return SubmitImprovementResponse(result=result, cached=cached)
            except SketchLiftError as exc:
                logger.error(
                    "improvement_failed",
                    error=exc.message,
                    error_type=type(exc).__name__,
                    kind=exc.kind,
                    exc_info=True,
                )
                return SubmitImprovementResponse(errors=[exc.user_message])
            except Exception:
                logger.exception("improvement_unexpected_error")
                return SubmitImprovementResponse(errors=[UNEXPECTED_ERROR_MESSAGE])

    @staticmethod
    async def _run_in_executor(fn, *args):
        """Run blocking work in a thread to avoid blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    # ── Status ───────────────────────────────────────────────────────────────

    def get_status(self, request_id: str) -> ImprovementStatusResponse:
        """Poll a job. ``not_found`` means unknown or expired, never success."""
        record = self._status_store.get_status(request_id)
        if record is None:
            return ImprovementStatusResponse(request_id=request_id, status=JobState.NOT_FOUND)

        response = ImprovementStatusResponse(
            request_id=request_id,
            status=record.status,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

        if record.status == JobState.DONE:
            result = self._status_store.get_result(request_id)
            if result is None:
                # Result key expired ahead of the status key.
                return ImprovementStatusResponse(request_id=request_id, status=JobState.NOT_FOUND)
            response.result = result
        elif record.status == JobState.ERROR:
            error = self._status_store.get_error(request_id)
            response.error = error.message if error else UNEXPECTED_ERROR_MESSAGE

        return response
