# ─────────────────────────────────────────────────────────────────────────────
# Schemas: domain models and HTTP request/response bodies
# ─────────────────────────────────────────────────────────────────────────────
# JSON on the wire is camelCase (alias_generator); Python code uses
# snake_case attribute names. populate_by_name accepts both on input.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import base64
import binascii
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from sketchlift.exceptions import InvalidArtifactError


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Improvement request ──────────────────────────────────────────────────────


class ImprovementRequest(BaseModel):
    """One generation request. Immutable once submitted.

    ``artifact`` is raw raster bytes (image mode) or an SVG / path string
    (vector mode). ``structural_hint`` carries the SVG export that the
    canvas sends alongside a raster.
    """

    model_config = ConfigDict(frozen=True)

    artifact: bytes | str
    structural_hint: str | None = None
    hint: str | None = None
    run_async: bool = False

    @property
    def mode(self) -> Literal["image", "vector"]:
        return "image" if isinstance(self.artifact, bytes) else "vector"

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe broker payload. Raster bytes travel base64-encoded."""
        if isinstance(self.artifact, bytes):
            artifact = base64.b64encode(self.artifact).decode("ascii")
        else:
            artifact = self.artifact
        return {
            "mode": self.mode,
            "artifact": artifact,
            "structural_hint": self.structural_hint,
            "hint": self.hint,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ImprovementRequest:
        artifact: bytes | str = payload["artifact"]
        if payload.get("mode") == "image":
            artifact = base64.b64decode(payload["artifact"])
        return cls(
            artifact=artifact,
            structural_hint=payload.get("structural_hint"),
            hint=payload.get("hint"),
            run_async=True,
        )


# ── Improvement result (tagged union) ────────────────────────────────────────


class VectorResult(CamelModel):
    """Dual-output vector result: styled display SVG + extrusion outline."""

    kind: Literal["vector"] = "vector"
    display_svg: str
    extrusion_path: str
    is_closed: bool
    suggested_depth: float
    suggested_bevel: float
    palette: list[str] = Field(default_factory=list)
    notes: str = ""


class ImageResult(CamelModel):
    """Image-mode result: one generated raster plus metadata."""

    kind: Literal["image"] = "image"
    image_base64: str
    mime_type: str = "image/png"
    title: str
    style: str
    palette: list[str] = Field(default_factory=list)
    background: str
    notes: str


ImprovementResult = Annotated[VectorResult | ImageResult, Field(discriminator="kind")]

improvement_result_adapter: TypeAdapter[VectorResult | ImageResult] = TypeAdapter(
    ImprovementResult
)


# ── Job status ───────────────────────────────────────────────────────────────


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    # Synthetic: never stored, reported when no live record exists.
    NOT_FOUND = "not_found"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.ERROR)


class JobStatusRecord(BaseModel):
    """Stored under ``<feature>:status:<request_id>``."""

    request_id: str
    status: JobState
    created_at: str
    updated_at: str
    started_at: str | None = None
    completed_at: str | None = None
    attempts: int = 0


class JobErrorPayload(BaseModel):
    """Stored under ``<feature>:error:<request_id>``."""

    message: str
    kind: str


# ── HTTP bodies ──────────────────────────────────────────────────────────────


class SubmitImprovementInput(CamelModel):
    """POST /improve-sketch body.

    A raster (``imageBase64``) takes precedence as the primary artifact;
    the SVG then becomes the structural hint. Without a raster the SVG
    itself is the artifact.
    """

    image_base64: str | None = None
    svg: str | None = None
    hints: str | None = Field(default=None, max_length=500)
    run_async: bool = Field(default=False, alias="async")

    @model_validator(mode="after")
    def _require_artifact(self) -> SubmitImprovementInput:
        if not self.image_base64 and not (self.svg and self.svg.strip()):
            raise ValueError("Either imageBase64 or svg is required")
        return self

    def to_request(self) -> ImprovementRequest:
        if self.image_base64:
            data = self.image_base64
            # Canvas exports arrive as data URLs.
            if data.startswith("data:") and "," in data:
                data = data.split(",", 1)[1]
            try:
                raster = base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise InvalidArtifactError("imageBase64 is not valid base64") from e
            return ImprovementRequest(
                artifact=raster,
                structural_hint=self.svg,
                hint=self.hints,
                run_async=self.run_async,
            )
        return ImprovementRequest(
            artifact=self.svg or "",
            hint=self.hints,
            run_async=self.run_async,
        )


class SubmitImprovementResponse(CamelModel):
    result: ImprovementResult | None = None
    request_id: str | None = None
    errors: list[str] = Field(default_factory=list)
    cached: bool = False


class ImprovementStatusResponse(CamelModel):
    request_id: str
    status: JobState
    result: ImprovementResult | None = None
    error: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class SolidRequest(CamelModel):
    """POST /outline/solid body."""

    path: str = Field(max_length=200_000)
    depth: float = 0.2
    bevel: float = 0.0


class BoundingBox(BaseModel):
    min: list[float]
    max: list[float]


class SolidResponse(CamelModel):
    positions: str  # base64 float32, xyz per vertex
    normals: str  # base64 float32, xyz per face
    indices: str  # base64 uint32, 3 per face
    vertex_count: int
    face_count: int
    bounding_box: BoundingBox
    fallback: bool


# ── Health ───────────────────────────────────────────────────────────────────


class LivenessResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    status: str
    store_backend: str
    store_connected: bool


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    writes: int
    hit_rate: float
