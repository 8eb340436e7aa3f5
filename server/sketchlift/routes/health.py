# ─────────────────────────────────────────────────────────────────────────────
# Health Check Routes: liveness and readiness
# ─────────────────────────────────────────────────────────────────────────────
#   /health        → Liveness probe. "Is the process alive?" No I/O.
#   /health/ready  → Readiness probe. Pings the key-value store that holds
#                    the cache and job status. 503 when unreachable.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from sketchlift.cache.stores import KeyValueStore
from sketchlift.dependencies import get_store
from sketchlift.schemas import LivenessResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe. Keep it minimal: no deps, no I/O."""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(store: KeyValueStore = Depends(get_store)) -> JSONResponse:
    """Readiness probe. Without the store neither cache nor jobs work."""
    connected = await run_in_threadpool(store.ping)

    response = ReadinessResponse(
        status="ready" if connected else "not_ready",
        store_backend=store.backend_name,
        store_connected=connected,
    )
    return JSONResponse(
        status_code=200 if connected else 503,
        content=response.model_dump(),
    )
