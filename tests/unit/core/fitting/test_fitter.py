"""Unit tests for PrimitiveFitter: recovery, robustness, sentinels and cancellation."""

from __future__ import annotations

import math

import numpy as np
import pytest

from pointfit.core.context import CancelToken
from pointfit.core.fitting import PrimitiveFitter, get_shape_model, select_projection_frame
from pointfit.core.synthetic import (
    add_outliers,
    make_circle_points,
    make_cylinder_points,
    make_line_points,
    make_plane_points,
    make_sphere_points,
)
from pointfit.core.types import (
    CircleFit,
    CylinderFit,
    LineFit,
    PlaneFit,
    PointSet,
    RegionDescriptor,
    RegionShape,
    ShapeKind,
    SphereFit,
)

# ---------------------------------------------------------------------------
# Insufficient data and argument validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("kind", "n_points"),
    [
        (ShapeKind.CIRCLE, 2),
        (ShapeKind.LINE, 1),
        (ShapeKind.PLANE, 2),
        (ShapeKind.SPHERE, 3),
        (ShapeKind.CYLINDER, 2),
        (ShapeKind.SPHERE, 0),
    ],
)
def test_too_few_points_returns_sentinel(kind: ShapeKind, n_points: int) -> None:
    """Below the geometric minimum, fit returns the no-fit sentinel."""
    pts = np.arange(n_points * 3, dtype=float).reshape(n_points, 3)
    result = PrimitiveFitter(seed=0).fit(
        pts, kind, max_iterations=100, distance_threshold=1.0
    )
    assert result.inlier_count == 0
    assert math.isinf(result.fit_error)
    assert result.iterations == 0
    assert result.kind is kind


def test_invalid_arguments_raise() -> None:
    fitter = PrimitiveFitter(seed=0)
    pts = np.zeros((5, 3))
    with pytest.raises(ValueError, match="distance_threshold"):
        fitter.fit(pts, ShapeKind.PLANE, max_iterations=10, distance_threshold=0.0)
    with pytest.raises(ValueError, match="min_inlier_ratio"):
        fitter.fit(
            pts, ShapeKind.PLANE, max_iterations=10, distance_threshold=1.0, min_inlier_ratio=1.5
        )
    with pytest.raises(ValueError, match="shape_bounds"):
        fitter.fit(
            pts, ShapeKind.SPHERE, max_iterations=10, distance_threshold=1.0, shape_bounds=(5, 1)
        )
    with pytest.raises(ValueError, match="max_iterations"):
        fitter.fit(pts, ShapeKind.PLANE, max_iterations=-1, distance_threshold=1.0)


def test_unknown_kind_raises() -> None:
    with pytest.raises(ValueError):
        PrimitiveFitter().fit(np.zeros((5, 3)), "torus", max_iterations=1, distance_threshold=1)
    with pytest.raises(ValueError, match="Unknown shape kind"):
        get_shape_model("torus")


def test_input_is_not_modified() -> None:
    pts = make_plane_points(50, rng=0)
    before = pts.copy()
    PrimitiveFitter(seed=0).fit(pts, ShapeKind.PLANE, max_iterations=20, distance_threshold=0.5)
    np.testing.assert_array_equal(pts, before)


# ---------------------------------------------------------------------------
# Circle
# ---------------------------------------------------------------------------


def test_circle_noise_free_recovery() -> None:
    """200 exact points on r=20 are all inliers and the radius is recovered."""
    pts = make_circle_points(200, radius=20.0, rng=1)
    result = PrimitiveFitter(seed=1).fit(
        pts, ShapeKind.CIRCLE, max_iterations=200, distance_threshold=0.5
    )
    assert isinstance(result, CircleFit)
    assert result.radius == pytest.approx(20.0, abs=1e-2)
    assert result.inlier_count == 200
    np.testing.assert_allclose(result.center, [0.0, 0.0, 0.0], atol=1e-6)
    np.testing.assert_allclose(np.abs(result.normal), [0.0, 0.0, 1.0])
    assert result.inlier_points.shape == (200, 3)


def test_circle_with_outliers() -> None:
    """Circle plus scattered outliers still yields r in [19, 21] and >= 180 inliers."""
    rng = np.random.default_rng(2)
    circle = make_circle_points(200, radius=20.0, rng=rng)
    pts = add_outliers(circle, 50, low=(-30, -30, 0), high=(30, 30, 0), rng=rng)

    result = PrimitiveFitter(seed=2).fit(
        pts,
        ShapeKind.CIRCLE,
        max_iterations=500,
        distance_threshold=1.0,
        shape_bounds=(5.0, 50.0),
        min_inlier_ratio=0.5,
    )
    assert 19.0 <= result.radius <= 21.0
    assert result.inlier_count >= 180
    assert result.fit_error <= 1.0


def test_circle_radius_bounds_reject_everything() -> None:
    """When no candidate radius fits the bounds, the sentinel comes back."""
    pts = make_circle_points(100, radius=20.0, rng=3)
    result = PrimitiveFitter(seed=3).fit(
        pts,
        ShapeKind.CIRCLE,
        max_iterations=50,
        distance_threshold=0.5,
        shape_bounds=(100.0, 200.0),
    )
    assert not result.is_valid
    assert result.iterations == 50


def test_circle_ratio_gate() -> None:
    """A required ratio above what any model reaches gives the sentinel."""
    rng = np.random.default_rng(4)
    pts = add_outliers(
        make_circle_points(50, radius=10.0, rng=rng), 150, (-40, -40, 0), (40, 40, 0), rng=rng
    )
    result = PrimitiveFitter(seed=4).fit(
        pts, ShapeKind.CIRCLE, max_iterations=100, distance_threshold=0.2, min_inlier_ratio=0.9
    )
    assert result.inlier_count == 0


def test_circle_in_tilted_plane_uses_smallest_extent_axis() -> None:
    """A circle in the x = const plane is projected along X."""
    pts = make_circle_points(120, center=(5, 0, 0), radius=8.0, normal=(1, 0, 0), rng=5)
    result = PrimitiveFitter(seed=5).fit(
        pts, ShapeKind.CIRCLE, max_iterations=200, distance_threshold=0.2
    )
    assert result.radius == pytest.approx(8.0, abs=1e-6)
    np.testing.assert_allclose(result.center, [5.0, 0.0, 0.0], atol=1e-6)
    np.testing.assert_allclose(np.abs(result.normal), [1.0, 0.0, 0.0])


def test_projection_frame_prefers_cylinder_region_axis() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [10.0, 10.0, 1.0]])
    frame = select_projection_frame(pts)
    np.testing.assert_allclose(frame.normal, [0.0, 0.0, 1.0])
    np.testing.assert_allclose(frame.origin, [5.0, 5.0, 0.5])

    region = RegionDescriptor(
        RegionShape.CYLINDER, center=[1, 2, 3], size=[0, 0, 4], radius=5.0, axis=[0, 1, 0]
    )
    frame = select_projection_frame(pts, region)
    np.testing.assert_allclose(frame.normal, [0.0, 1.0, 0.0])
    np.testing.assert_allclose(frame.origin, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(frame.project(frame.origin[None, :]), [[0.0, 0.0]])

    flat_y = np.array([[0.0, 0.0, 0.0], [10.0, 1.0, 10.0]])
    np.testing.assert_allclose(select_projection_frame(flat_y).normal, [0.0, 1.0, 0.0])
    cube = np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0]])
    np.testing.assert_allclose(select_projection_frame(cube).normal, [1.0, 0.0, 0.0])


# ---------------------------------------------------------------------------
# Line, plane, sphere, cylinder
# ---------------------------------------------------------------------------


def test_line_recovery_and_extent() -> None:
    rng = np.random.default_rng(6)
    line = make_line_points(150, start=(0, 0, 0), end=(100, 0, 0), rng=rng)
    pts = add_outliers(line, 30, (0, 5, 5), (100, 50, 50), rng=rng)

    result = PrimitiveFitter(seed=6).fit(
        pts, ShapeKind.LINE, max_iterations=300, distance_threshold=0.5, min_inlier_ratio=0.3
    )
    assert isinstance(result, LineFit)
    assert result.inlier_count >= 150
    assert abs(result.direction[0]) == pytest.approx(1.0, abs=1e-6)
    assert 90.0 < result.length <= 100.0 + 1e-6
    assert np.linalg.norm(result.end_point - result.start_point) == pytest.approx(result.length)


def test_plane_recovery() -> None:
    rng = np.random.default_rng(7)
    plane = make_plane_points(300, point=(0, 0, 5), normal=(0, 0, 1), extent=50.0, rng=rng)
    pts = add_outliers(plane, 60, (-25, -25, 10), (25, 25, 30), rng=rng)

    result = PrimitiveFitter(seed=7).fit(
        pts, ShapeKind.PLANE, max_iterations=200, distance_threshold=0.1, min_inlier_ratio=0.3
    )
    assert isinstance(result, PlaneFit)
    assert result.inlier_count >= 300
    assert abs(result.normal[2]) == pytest.approx(1.0, abs=1e-9)
    assert abs(result.d) == pytest.approx(5.0, abs=1e-9)
    assert result.distance_to_point(result.point) == pytest.approx(0.0, abs=1e-9)


def test_sphere_recovery_with_bounds() -> None:
    rng = np.random.default_rng(8)
    sphere = make_sphere_points(200, center=(1, 2, 3), radius=10.0, rng=rng)
    pts = add_outliers(sphere, 40, (15, 15, 15), (30, 30, 30), rng=rng)

    result = PrimitiveFitter(seed=8).fit(
        pts,
        ShapeKind.SPHERE,
        max_iterations=500,
        distance_threshold=0.2,
        shape_bounds=(1.0, 500.0),
        min_inlier_ratio=0.3,
    )
    assert isinstance(result, SphereFit)
    assert result.radius == pytest.approx(10.0, abs=1e-6)
    np.testing.assert_allclose(result.center, [1.0, 2.0, 3.0], atol=1e-6)
    assert result.inlier_count >= 200


def test_cylinder_returns_bounded_candidate() -> None:
    """The approximate cylinder model yields a bounded, consistent result."""
    pts = make_cylinder_points(300, radius=10.0, height=4.0, noise=0.05, rng=9)
    result = PrimitiveFitter(seed=9).fit(
        pts,
        ShapeKind.CYLINDER,
        max_iterations=200,
        distance_threshold=2.0,
        shape_bounds=(1.0, 500.0),
    )
    assert isinstance(result, CylinderFit)
    assert result.is_valid
    assert 1.0 <= result.radius <= 500.0
    assert np.linalg.norm(result.axis_direction) == pytest.approx(1.0)
    assert result.height >= 0.0
    assert result.inlier_points.shape == (result.inlier_count, 3)


def test_cylinder_on_collinear_points_never_converges() -> None:
    pts = make_line_points(20, rng=10)
    result = PrimitiveFitter(seed=10).fit(
        pts, ShapeKind.CYLINDER, max_iterations=25, distance_threshold=1.0
    )
    assert result.inlier_count == 0
    assert result.iterations == 25


def test_point_set_input_accepted() -> None:
    cloud = PointSet.from_points(make_plane_points(40, rng=11))
    result = PrimitiveFitter(seed=11).fit(
        cloud, "plane", max_iterations=20, distance_threshold=0.01
    )
    assert result.inlier_count == 40


# ---------------------------------------------------------------------------
# Determinism and cancellation
# ---------------------------------------------------------------------------


def test_same_seed_same_result() -> None:
    rng = np.random.default_rng(12)
    circle = make_circle_points(80, radius=15.0, rng=rng)
    pts = add_outliers(circle, 80, (-30, -30, 0), (30, 30, 0), rng=rng)

    def run() -> CircleFit:
        return PrimitiveFitter(seed=99).fit(
            pts, ShapeKind.CIRCLE, max_iterations=50, distance_threshold=0.5
        )

    a, b = run(), run()
    assert a.inlier_count == b.inlier_count
    assert a.radius == b.radius
    np.testing.assert_array_equal(a.center, b.center)


def test_pre_cancelled_fit_returns_immediately() -> None:
    """A cancel token set before the call stops the loop before any iteration."""
    token = CancelToken()
    token.cancel()
    pts = make_circle_points(200, radius=20.0, rng=13)
    result = PrimitiveFitter(seed=13).fit(
        pts, ShapeKind.CIRCLE, max_iterations=100_000, distance_threshold=0.5, cancel=token
    )
    assert result.iterations < 100_000
    assert result.iterations <= 1
    assert result.inlier_count <= len(pts)


class _CancelAfter(CancelToken):
    """Token that reports cancellation after a fixed number of polls."""

    def __init__(self, polls: int) -> None:
        super().__init__()
        self._remaining = polls

    @property
    def cancelled(self) -> bool:
        self._remaining -= 1
        return self._remaining < 0


def test_cancel_mid_run_keeps_best_candidate() -> None:
    """Cancelling after a few iterations returns the best complete candidate."""
    pts = make_plane_points(100, rng=14)
    result = PrimitiveFitter(seed=14).fit(
        pts,
        ShapeKind.PLANE,
        max_iterations=10_000,
        distance_threshold=0.01,
        cancel=_CancelAfter(5),
    )
    assert result.iterations == 5
    assert result.inlier_count == 100
