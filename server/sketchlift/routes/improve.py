# ─────────────────────────────────────────────────────────────────────────────
# Improve-sketch + outline routes (THIN)
# ─────────────────────────────────────────────────────────────────────────────
#   POST /improve-sketch              submit (sync result or async request id)
#   GET  /improve-sketch/{request_id} poll an async job
#   POST /outline/solid               extrude a vector outline into a mesh
# ─────────────────────────────────────────────────────────────────────────────


import structlog
from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from sketchlift.config import Settings
from sketchlift.dependencies import get_improvement_service, get_settings_dep
from sketchlift.exceptions import InvalidArtifactError
from sketchlift.geometry.encoding import encode_solid
from sketchlift.geometry.extrude import clamp_depth, fallback_solid, reconstruct_solid
from sketchlift.rate_limit import limiter, submit_rate_limit
from sketchlift.schemas import (
    ImprovementRequest,
    ImprovementStatusResponse,
    SolidRequest,
    SolidResponse,
    SubmitImprovementInput,
    SubmitImprovementResponse,
)
from sketchlift.services.improvement import ImprovementService

logger = structlog.get_logger(__name__)

router = APIRouter()


def _check_size(improvement: ImprovementRequest, max_bytes: int) -> None:
    artifact = improvement.artifact
    size = len(artifact) if isinstance(artifact, bytes) else len(artifact.encode("utf-8"))
    if size > max_bytes:
        raise InvalidArtifactError(f"Artifact is {size} bytes; the limit is {max_bytes}")


@router.post("/improve-sketch", response_model=SubmitImprovementResponse)
@limiter.limit(submit_rate_limit)
async def improve_sketch(
    request: Request,
    body: SubmitImprovementInput,
    service: ImprovementService = Depends(get_improvement_service),
    settings: Settings = Depends(get_settings_dep),
) -> SubmitImprovementResponse:
    """Submit a sketch for improvement.

    ``async=false`` waits for the result; ``async=true`` returns a
    request id to poll. Failures come back in ``errors``, never as a
    non-200 status.
    """
    try:
        improvement = body.to_request()
        _check_size(improvement, settings.max_artifact_bytes)
    except InvalidArtifactError as exc:
        logger.warning("improve_sketch_rejected", error=exc.message)
        return SubmitImprovementResponse(errors=[exc.user_message])

    return await service.submit(improvement)


@router.get("/improve-sketch/{request_id}", response_model=ImprovementStatusResponse)
async def improve_sketch_status(
    request_id: str,
    service: ImprovementService = Depends(get_improvement_service),
) -> ImprovementStatusResponse:
    """Poll an async job. Unknown or expired ids report ``not_found``."""
    return await run_in_threadpool(service.get_status, request_id)


@router.post("/outline/solid", response_model=SolidResponse)
async def outline_solid(
    body: SolidRequest,
    settings: Settings = Depends(get_settings_dep),
) -> SolidResponse:
    """Extrude an outline path. Falls back to a box when the path is unusable."""
    mesh = await run_in_threadpool(
        reconstruct_solid,
        body.path,
        body.depth,
        body.bevel,
        curve_samples=settings.curve_samples,
        auto_close=settings.outline_auto_close,
        bevel_segments=settings.bevel_segments,
        max_depth=settings.max_depth,
        max_bevel=settings.max_bevel,
    )
    if mesh is None:
        depth = clamp_depth(body.depth, settings.max_depth)
        return encode_solid(fallback_solid(depth), fallback=True)
    return encode_solid(mesh, fallback=False)
