# ─────────────────────────────────────────────────────────────────────────────
# Mesh Buffers: typed arrays → base64 strings for JSON transport
# ─────────────────────────────────────────────────────────────────────────────
# Little-endian typed arrays, decoded client-side with
# Float32Array / Uint32Array over the base64-decoded bytes.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import base64

import numpy as np
import trimesh

from sketchlift.schemas import BoundingBox, SolidResponse


def encode_float32(arr: np.ndarray) -> str:
    """Encode an array as base64 little-endian float32."""
    return base64.b64encode(np.ascontiguousarray(arr, dtype="<f4").tobytes()).decode("ascii")


def encode_uint32(arr: np.ndarray) -> str:
    """Encode an array as base64 little-endian uint32."""
    return base64.b64encode(np.ascontiguousarray(arr, dtype="<u4").tobytes()).decode("ascii")


def compute_bbox(positions: np.ndarray) -> dict[str, list[float]]:
    """Axis-aligned bounding box of an (N, 3) position array."""
    if len(positions) == 0:
        return {"min": [0.0, 0.0, 0.0], "max": [0.0, 0.0, 0.0]}
    return {
        "min": [float(v) for v in positions.min(axis=0)],
        "max": [float(v) for v in positions.max(axis=0)],
    }


def encode_solid(mesh: trimesh.Trimesh, *, fallback: bool) -> SolidResponse:
    """Pack a mesh into the /outline/solid response body."""
    bbox = compute_bbox(np.asarray(mesh.vertices))
    return SolidResponse(
        positions=encode_float32(mesh.vertices),
        normals=encode_float32(mesh.face_normals),
        indices=encode_uint32(mesh.faces),
        vertex_count=len(mesh.vertices),
        face_count=len(mesh.faces),
        bounding_box=BoundingBox(min=bbox["min"], max=bbox["max"]),
        fallback=fallback,
    )
