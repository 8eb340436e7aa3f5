# ─────────────────────────────────────────────────────────────────────────────
# Extrusion: closed 2D outline → bevelled 3D solid
# ─────────────────────────────────────────────────────────────────────────────
# Pipeline:
#   1. Mirror SVG Y (down) to world Y (up)
#   2. Repair with shapely: make_valid, keep the largest region, CCW
#   3. Build rings along +Z: back bevel → walls → front bevel
#   4. Stitch rings with quads, triangulate both caps (earcut)
#   5. trimesh.Trimesh, face normals, centre the bounding box on the origin
#
# Bevel profile is a quarter circle: at step t of n the ring is offset
# outward by bevel·sin(t/n·π/2) and pulled back in Z by bevel·cos(t/n·π/2).
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import math

import numpy as np
import structlog
import trimesh
from shapely.errors import ShapelyError
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.validation import make_valid

from sketchlift.exceptions import ReconstructionError
from sketchlift.geometry.path_parser import Outline, parse_outline

logger = structlog.get_logger(__name__)

MIN_DEPTH = 0.01
DEFAULT_DEPTH = 0.2
DEFAULT_BEVEL = 0.0
# Miter length cap, in multiples of the bevel size, for very sharp corners.
_MITER_LIMIT = 4.0


def clamp_depth(depth: float, max_depth: float) -> float:
    if not math.isfinite(depth):
        depth = DEFAULT_DEPTH
    return min(max(depth, MIN_DEPTH), max_depth)


def clamp_bevel(bevel: float, max_bevel: float) -> float:
    if not math.isfinite(bevel):
        bevel = DEFAULT_BEVEL
    return min(max(bevel, 0.0), max_bevel)


def _polygons(geom: BaseGeometry) -> list[Polygon]:
    if isinstance(geom, Polygon):
        return [geom]
    if hasattr(geom, "geoms"):
        return [p for part in geom.geoms for p in _polygons(part)]
    return []


def _repair(ring: np.ndarray) -> np.ndarray:
    """Largest valid CCW region of a possibly self-intersecting ring.

    Returns the exterior as ``(N, 2)`` without the closing point.
    """
    polygon = Polygon(ring)
    if not polygon.is_valid:
        polygon = make_valid(polygon)

    regions = [p for p in _polygons(polygon) if p.area > 0]
    if not regions:
        raise ReconstructionError("Outline encloses no area")
    largest = max(regions, key=lambda p: p.area)
    if len(regions) > 1:
        logger.debug("outline_regions_dropped", kept_area=largest.area, dropped=len(regions) - 1)

    # Holes are dropped: one closed contour per solid.
    region = orient(Polygon(largest.exterior), sign=1.0)
    contour = np.asarray(region.exterior.coords, dtype=np.float64)[:-1]

    keep = np.ones(len(contour), dtype=bool)
    keep[1:] = np.any(contour[1:] != contour[:-1], axis=1)
    return contour[keep]


def _miter_offsets(contour: np.ndarray) -> np.ndarray:
    """Per-vertex outward offset direction for a CCW contour."""
    edges = np.roll(contour, -1, axis=0) - contour
    lengths = np.linalg.norm(edges, axis=1, keepdims=True)
    lengths[lengths == 0] = 1.0
    directions = edges / lengths
    # Outward normal of a CCW edge is its direction rotated -90°.
    normals = np.column_stack([directions[:, 1], -directions[:, 0]])
    prev_normals = np.roll(normals, 1, axis=0)

    dots = np.einsum("ij,ij->i", prev_normals, normals)
    miters = (prev_normals + normals) / np.maximum(1.0 + dots, 1e-6)[:, None]
    lengths = np.linalg.norm(miters, axis=1, keepdims=True)
    too_long = lengths[:, 0] > _MITER_LIMIT
    miters[too_long] *= _MITER_LIMIT / lengths[too_long]
    return miters


def _profile(depth: float, bevel: float, segments: int) -> list[tuple[float, float]]:
    """(outward offset, z) per ring, ordered back to front."""
    if bevel <= 0 or segments <= 0:
        return [(0.0, 0.0), (0.0, depth)]

    back = []
    for t in range(segments + 1):
        angle = t / segments * math.pi / 2
        back.append((bevel * math.sin(angle), -bevel * math.cos(angle)))
    front = [(offset, depth - z) for offset, z in reversed(back)]
    return back + front


def _cap_faces(contour: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Earcut triangulation of the contour, wound counter-clockwise."""
    vertices, faces = trimesh.creation.triangulate_polygon(Polygon(contour), engine="earcut")
    vertices = np.asarray(vertices, dtype=np.float64)
    faces = np.asarray(faces, dtype=np.int64)

    a, b, c = (vertices[faces[:, k]] for k in range(3))
    signed = (b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0])
    faces[signed < 0] = faces[signed < 0][:, ::-1]
    return vertices, faces


def build_solid(
    outline: Outline,
    depth: float,
    bevel: float,
    *,
    bevel_segments: int = 2,
) -> trimesh.Trimesh:
    """Extrude an outline along +Z into a closed, centred mesh.

    Raises:
        ReconstructionError: the outline has no area after repair.
    """
    ring = outline.vertices.copy()
    ring[:, 1] *= -1.0
    contour = _repair(ring)
    if len(contour) < 3:
        raise ReconstructionError("Outline has fewer than 3 vertices after repair")

    miters = _miter_offsets(contour)
    profile = _profile(depth, bevel, bevel_segments)
    n = len(contour)

    ring_blocks = []
    for offset, z in profile:
        xy = contour + offset * miters
        ring_blocks.append(np.column_stack([xy, np.full(n, z)]))
    vertices = [np.vstack(ring_blocks)]

    # Side quads between consecutive rings: (a, b, c), (a, c, d) with a, b
    # on the lower ring and c, d on the upper one; outward for CCW input.
    idx = np.arange(n)
    nxt = np.roll(idx, -1)
    faces = []
    for r in range(len(profile) - 1):
        lo, hi = r * n, (r + 1) * n
        a, b, c, d = lo + idx, lo + nxt, hi + nxt, hi + idx
        faces.append(np.column_stack([a, b, c]))
        faces.append(np.column_stack([a, c, d]))

    cap_xy, cap_faces = _cap_faces(contour)
    base = n * len(profile)
    back_z, front_z = profile[0][1], profile[-1][1]
    vertices.append(np.column_stack([cap_xy, np.full(len(cap_xy), back_z)]))
    faces.append(cap_faces[:, ::-1] + base)
    base += len(cap_xy)
    vertices.append(np.column_stack([cap_xy, np.full(len(cap_xy), front_z)]))
    faces.append(cap_faces + base)

    stacked = np.vstack(vertices)
    if not np.isfinite(stacked).all():
        raise ReconstructionError("Outline coordinates overflow during extrusion")

    # process=True merges the cap vertices onto the ring vertices.
    mesh = trimesh.Trimesh(vertices=stacked, faces=np.vstack(faces), process=True)
    _ = mesh.face_normals
    mesh.apply_translation(-mesh.bounds.mean(axis=0))
    return mesh


def reconstruct_solid(
    path: str,
    depth: float,
    bevel: float,
    *,
    curve_samples: int = 12,
    auto_close: bool = True,
    bevel_segments: int = 2,
    max_depth: float = 10.0,
    max_bevel: float = 1.0,
) -> trimesh.Trimesh | None:
    """Parse, clamp and extrude. Returns None instead of raising.

    Provider output is untrusted: any parse or geometry failure is
    logged and reported as None so the caller can substitute
    :func:`fallback_solid`.
    """
    depth = clamp_depth(depth, max_depth)
    bevel = clamp_bevel(bevel, max_bevel)
    try:
        outline = parse_outline(path, curve_samples=curve_samples, auto_close=auto_close)
        mesh = build_solid(outline, depth, bevel, bevel_segments=bevel_segments)
    except ReconstructionError as e:
        logger.warning("outline_reconstruction_failed", error=e.message, path_length=len(path))
        return None
    except (ValueError, ShapelyError) as e:
        # Raised by shapely or earcut on degenerate input that survived parsing.
        logger.warning("outline_geometry_failed", error=str(e), path_length=len(path))
        return None

    logger.info(
        "outline_reconstructed",
        vertices=len(mesh.vertices),
        faces=len(mesh.faces),
        depth=depth,
        bevel=bevel,
    )
    return mesh


def fallback_solid(depth: float = DEFAULT_DEPTH) -> trimesh.Trimesh:
    """Default primitive shown when an outline cannot be reconstructed."""
    return trimesh.creation.box(extents=[1.0, 1.0, depth])
