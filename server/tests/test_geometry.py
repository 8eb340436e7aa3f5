# ─────────────────────────────────────────────────────────────────────────────
# Tests: Outline parsing + extrusion
# ─────────────────────────────────────────────────────────────────────────────

import base64

import numpy as np
import pytest

from sketchlift.exceptions import ReconstructionError
from sketchlift.geometry.encoding import compute_bbox, encode_solid
from sketchlift.geometry.extrude import (
    build_solid,
    clamp_bevel,
    clamp_depth,
    fallback_solid,
    reconstruct_solid,
)
from sketchlift.geometry.path_parser import parse_outline

SQUARE = "M0 0 L10 0 L10 10 L0 10 Z"


class TestParseOutline:
    def test_square(self):
        outline = parse_outline(SQUARE)
        assert outline.explicit_close is True
        assert outline.is_closed
        assert len(outline.vertices) == 4
        np.testing.assert_array_equal(
            outline.vertices, [[0, 0], [10, 0], [10, 10], [0, 10]]
        )

    def test_relative_and_hv(self):
        outline = parse_outline("m1 1 h4 v4 h-4 z")
        np.testing.assert_array_equal(outline.vertices, [[1, 1], [5, 1], [5, 5], [1, 5]])

    def test_absolute_hv(self):
        outline = parse_outline("M0 0 H3 V3 H0 Z")
        np.testing.assert_array_equal(outline.vertices, [[0, 0], [3, 0], [3, 3], [0, 3]])

    def test_implicit_lineto_after_moveto(self):
        outline = parse_outline("M0,0 10,0 10,10 Z")
        assert len(outline.vertices) == 3

    def test_implicit_repeated_lineto(self):
        outline = parse_outline("M0 0 L10 0 10 10 0 10 Z")
        assert len(outline.vertices) == 4

    def test_compact_number_syntax(self):
        outline = parse_outline("M0-0L10-0L10-10L0-10z")
        np.testing.assert_array_equal(outline.vertices[2], [10, -10])

    def test_cubic_is_sampled(self):
        outline = parse_outline("M0 0 C0 10 10 10 10 0 Z", curve_samples=8)
        # Moveto + 8 curve samples.
        assert len(outline.vertices) == 9
        np.testing.assert_allclose(outline.vertices[-1], [10, 0])
        assert outline.vertices[:, 1].max() == pytest.approx(7.5)

    def test_smooth_and_quadratic_curves(self):
        outline = parse_outline("M0 0 Q5 10 10 0 T20 0 S25 -10 30 0 L15 -20 Z", curve_samples=4)
        assert outline.is_closed
        np.testing.assert_allclose(outline.vertices[4], [10, 0])
        np.testing.assert_allclose(outline.vertices[8], [20, 0])

    def test_closure_invariant(self):
        outline = parse_outline("M0 0 C5 -5 10 5 15 0 L7 9 Z")
        np.testing.assert_array_equal(outline.points[0], outline.points[-1])

    def test_auto_close_appends_start(self):
        outline = parse_outline("M0 0 L10 0 L10 10", auto_close=True)
        assert outline.explicit_close is False
        np.testing.assert_array_equal(outline.points[0], outline.points[-1])
        assert len(outline.points) == 4

    def test_open_path_rejected_without_auto_close(self):
        with pytest.raises(ReconstructionError, match="not closed"):
            parse_outline("M0 0 L10 0 L10 10", auto_close=False)

    def test_path_ending_at_start_needs_no_z(self):
        outline = parse_outline("M0 0 L10 0 L10 10 L0 0", auto_close=False)
        assert len(outline.vertices) == 3

    def test_only_first_subpath_used(self):
        outline = parse_outline("M0 0 L10 0 L10 10 Z M50 50 L60 50 L60 60 Z")
        assert outline.vertices[:, 0].max() == 10

    def test_arc_rejected(self):
        with pytest.raises(ReconstructionError, match="Unsupported"):
            parse_outline("M0 0 A5 5 0 0 1 10 0 Z")

    def test_garbage_rejected(self):
        with pytest.raises(ReconstructionError):
            parse_outline("M0 0 L10 0 # L10 10 Z")

    def test_must_start_with_moveto(self):
        with pytest.raises(ReconstructionError):
            parse_outline("L10 0 L10 10 Z")

    def test_too_few_points(self):
        with pytest.raises(ReconstructionError, match="at least 3"):
            parse_outline("M0 0 L10 0 L0 0 Z")

    def test_wrong_coordinate_count(self):
        with pytest.raises(ReconstructionError):
            parse_outline("M0 0 L10 Z")

    def test_non_finite_coordinates_rejected(self):
        with pytest.raises(ReconstructionError, match="non-finite"):
            parse_outline("M0 0 L1e999 0 L0 10 Z")

    def test_empty(self):
        with pytest.raises(ReconstructionError):
            parse_outline("   ")


class TestBuildSolid:
    def test_square_extrusion(self):
        mesh = build_solid(parse_outline(SQUARE), depth=1.0, bevel=0.0)

        assert len(mesh.vertices) == 8
        assert len(mesh.faces) == 12
        assert mesh.is_watertight
        assert mesh.volume == pytest.approx(100.0)
        np.testing.assert_allclose(mesh.extents, [10, 10, 1])
        np.testing.assert_allclose(mesh.bounds.mean(axis=0), [0, 0, 0], atol=1e-9)

        normals = mesh.face_normals
        caps = np.abs(normals[:, 2]) > 0.99
        sides = np.abs(normals[:, 2]) < 1e-9
        # Two parallel caps of two triangles each, four quad sides.
        assert caps.sum() == 4
        assert sides.sum() == 8
        assert (normals[caps, 2] > 0).sum() == 2
        side_dirs = {tuple(np.round(n[:2]).astype(int)) for n in normals[sides]}
        assert side_dirs == {(1, 0), (-1, 0), (0, 1), (0, -1)}

    def test_svg_y_axis_is_mirrored(self):
        # The apex sits below the base on screen (SVG y grows downward),
        # so it must also sit below the base in world space.
        mesh = build_solid(parse_outline("M0 0 L10 0 L5 10 Z"), depth=1.0, bevel=0.0)
        top = mesh.vertices[mesh.vertices[:, 1].argmax()]
        bottom_y = mesh.vertices[:, 1].min()
        assert np.sum(np.isclose(mesh.vertices[:, 1], bottom_y)) == 2
        assert np.sum(np.isclose(mesh.vertices[:, 1], top[1])) == 4

    def test_clockwise_input_is_reoriented(self):
        mesh = build_solid(parse_outline("M0 0 L0 10 L10 10 L10 0 Z"), depth=1.0, bevel=0.0)
        assert mesh.volume == pytest.approx(100.0)

    def test_bevel_adds_rings(self):
        flat = build_solid(parse_outline(SQUARE), depth=1.0, bevel=0.0)
        bevelled = build_solid(parse_outline(SQUARE), depth=1.0, bevel=0.5, bevel_segments=2)
        assert len(bevelled.vertices) > len(flat.vertices)
        assert bevelled.is_watertight
        # Bevel grows the silhouette and the depth by the bevel size on each side.
        np.testing.assert_allclose(bevelled.extents, [11, 11, 2])

    def test_self_intersecting_outline_is_repaired(self):
        # Bow-tie: two triangles touching at the centre.
        mesh = build_solid(parse_outline("M0 0 L10 10 L10 0 L0 10 Z"), depth=1.0, bevel=0.0)
        assert mesh.volume == pytest.approx(25.0)

    def test_zero_area_rejected(self):
        with pytest.raises(ReconstructionError):
            build_solid(parse_outline("M0 0 L5 0 L10 0 Z"), depth=1.0, bevel=0.0)


class TestClamping:
    def test_depth(self):
        assert clamp_depth(0.0, 10.0) == 0.01
        assert clamp_depth(-3.0, 10.0) == 0.01
        assert clamp_depth(50.0, 10.0) == 10.0
        assert clamp_depth(float("nan"), 10.0) == 0.2

    def test_bevel(self):
        assert clamp_bevel(-1.0, 1.0) == 0.0
        assert clamp_bevel(5.0, 1.0) == 1.0
        assert clamp_bevel(0.3, 1.0) == 0.3


class TestReconstructSolid:
    def test_valid_path(self):
        mesh = reconstruct_solid(SQUARE, depth=1.0, bevel=0.0)
        assert mesh is not None
        assert len(mesh.faces) == 12

    def test_depth_is_clamped(self):
        mesh = reconstruct_solid(SQUARE, depth=100.0, bevel=0.0, max_depth=2.0)
        assert mesh.extents[2] == pytest.approx(2.0)

    @pytest.mark.parametrize(
        "path",
        ["", "not a path", "M0 0 A1 1 0 0 1 2 2 Z", "M0 0 L1 1", "M0 0 L5 0 L10 0 Z"],
    )
    def test_malformed_returns_none(self, path):
        assert reconstruct_solid(path, depth=1.0, bevel=0.0, auto_close=False) is None

    @pytest.mark.parametrize(
        "path",
        ["M0 0 L1e999 0 L0 10 Z", "M0 0 L1e999 0 L-1e999 10 L0 10 Z"],
    )
    @pytest.mark.parametrize("bevel", [0.0, 0.1])
    def test_overflowing_coordinates_return_none(self, path, bevel):
        assert reconstruct_solid(path, depth=1.0, bevel=bevel) is None

    def test_auto_close_policy_both_ways(self):
        open_path = "M0 0 L10 0 L10 10 L0 10"
        assert reconstruct_solid(open_path, 1.0, 0.0, auto_close=True) is not None
        assert reconstruct_solid(open_path, 1.0, 0.0, auto_close=False) is None

    def test_fallback_box(self):
        mesh = fallback_solid()
        assert len(mesh.faces) == 12
        assert mesh.is_watertight


class TestEncoding:
    def test_encode_solid(self):
        mesh = reconstruct_solid(SQUARE, depth=1.0, bevel=0.0)
        body = encode_solid(mesh, fallback=False)

        positions = np.frombuffer(base64.b64decode(body.positions), dtype="<f4").reshape(-1, 3)
        indices = np.frombuffer(base64.b64decode(body.indices), dtype="<u4").reshape(-1, 3)
        normals = np.frombuffer(base64.b64decode(body.normals), dtype="<f4").reshape(-1, 3)

        assert body.vertex_count == len(positions) == 8
        assert body.face_count == len(indices) == len(normals) == 12
        assert body.fallback is False
        np.testing.assert_allclose(body.bounding_box.min, [-5, -5, -0.5])
        np.testing.assert_allclose(body.bounding_box.max, [5, 5, 0.5])

    def test_bbox_empty(self):
        assert compute_bbox(np.zeros((0, 3))) == {"min": [0.0, 0.0, 0.0], "max": [0.0, 0.0, 0.0]}
