"""Per-shape RANSAC models plugged into the shared fitting loop.

Each model turns a minimal sample into candidate parameters, scores a
candidate against the full point set, and builds the final FitResult. The
fitter owns the loop; models own the geometry.

Models may hold per-fit state set by :meth:`ShapeModel.prepare` (the circle
projection frame, the cylinder radius probe), so :func:`get_shape_model`
returns a fresh instance for every fit.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from pointfit.core.fitting.boundary import extract_boundary
from pointfit.core.fitting.projection import ProjectionFrame, select_projection_frame
from pointfit.core.fitting.solvers import (
    circle_from_3_points,
    cylinder_axis_from_3_points,
    line_from_2_points,
    plane_from_3_points,
    sphere_from_4_points,
)
from pointfit.core.types import (
    CircleFit,
    CylinderFit,
    FitResult,
    LineFit,
    PlaneFit,
    RegionDescriptor,
    ShapeKind,
    SphereFit,
)

__all__ = [
    "CircleModel",
    "CylinderModel",
    "LineModel",
    "PlaneModel",
    "ShapeModel",
    "SphereModel",
    "get_shape_model",
]

# Number of leading points used to estimate a cylinder candidate's radius.
CYLINDER_RADIUS_PROBE: int = 100


class ShapeModel:
    """Base class for the per-shape geometry used by the RANSAC loop.

    Subclasses set :attr:`result_type` and implement :meth:`solve`,
    :meth:`residuals` and :meth:`build`.
    """

    result_type: type[FitResult] = FitResult

    def prepare(
        self,
        points: np.ndarray,
        distance_threshold: float,
        region_hint: RegionDescriptor | None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(score_points, sample_points)`` for this fit.

        The default scores and samples the raw 3D points.
        """
        return points, points

    def solve(self, sample: np.ndarray) -> Any:
        """Candidate parameters from a minimal sample, or None if degenerate."""
        raise NotImplementedError

    def size(self, candidate: Any) -> float | None:
        """Scalar checked against the shape bounds; None means unbounded."""
        return None

    def residuals(self, candidate: Any, score_points: np.ndarray) -> np.ndarray:
        """Non-negative residual of every score point to the candidate."""
        raise NotImplementedError

    def build(
        self,
        candidate: Any,
        inliers: np.ndarray,
        fit_error: float,
        points: np.ndarray,
        iterations: int,
    ) -> FitResult:
        """Materialise the FitResult for the winning candidate."""
        raise NotImplementedError


class CircleModel(ShapeModel):
    """Circle fitted in 2D after projecting onto a selected plane.

    Sampling draws from the boundary subset of the projected points; scoring
    always uses every projected point.
    """

    result_type = CircleFit

    def __init__(self) -> None:
        self._frame: ProjectionFrame | None = None

    def prepare(self, points, distance_threshold, region_hint):
        self._frame = select_projection_frame(points, region_hint)
        points2d = self._frame.project(points)
        samples = extract_boundary(points2d, max(1.0, distance_threshold * 2.0))
        return points2d, samples

    def solve(self, sample):
        return circle_from_3_points(sample[0], sample[1], sample[2])

    def size(self, candidate):
        return candidate[1]

    def residuals(self, candidate, score_points):
        center, radius = candidate
        return np.abs(np.linalg.norm(score_points - center, axis=1) - radius)

    def build(self, candidate, inliers, fit_error, points, iterations):
        center2d, radius = candidate
        frame = self._frame
        return CircleFit(
            center=frame.lift(center2d),
            radius=float(radius),
            normal=frame.normal.copy(),
            inlier_count=int(inliers.sum()),
            fit_error=fit_error,
            inlier_points=points[inliers].copy(),
            iterations=iterations,
        )


class LineModel(ShapeModel):
    """Infinite 3D line; inliers by perpendicular distance."""

    result_type = LineFit

    def solve(self, sample):
        return line_from_2_points(sample[0], sample[1])

    @staticmethod
    def _decompose(candidate, points):
        origin, direction = candidate
        rel = points - origin
        t = rel @ direction
        return t, rel - np.outer(t, direction)

    def residuals(self, candidate, score_points):
        _, perp = self._decompose(candidate, score_points)
        return np.linalg.norm(perp, axis=1)

    def build(self, candidate, inliers, fit_error, points, iterations):
        origin, direction = candidate
        t, _ = self._decompose(candidate, points[inliers])
        t_min, t_max = float(t.min()), float(t.max())
        return LineFit(
            point=origin,
            direction=direction,
            length=t_max - t_min,
            start_point=origin + t_min * direction,
            end_point=origin + t_max * direction,
            inlier_count=int(inliers.sum()),
            fit_error=fit_error,
            inlier_points=points[inliers].copy(),
            iterations=iterations,
        )


class PlaneModel(ShapeModel):
    """3D plane; inliers by absolute signed distance."""

    result_type = PlaneFit

    def solve(self, sample):
        solved = plane_from_3_points(sample[0], sample[1], sample[2])
        if solved is None:
            return None
        normal, d = solved
        return normal, d, sample[0].copy()

    def residuals(self, candidate, score_points):
        normal, d, _ = candidate
        return np.abs(score_points @ normal + d)

    def build(self, candidate, inliers, fit_error, points, iterations):
        normal, d, anchor = candidate
        return PlaneFit(
            normal=normal,
            point=anchor,
            d=float(d),
            inlier_count=int(inliers.sum()),
            fit_error=fit_error,
            inlier_points=points[inliers].copy(),
            iterations=iterations,
        )


class SphereModel(ShapeModel):
    """3D sphere from four-point circumsphere candidates."""

    result_type = SphereFit

    def solve(self, sample):
        return sphere_from_4_points(sample)

    def size(self, candidate):
        return candidate[1]

    def residuals(self, candidate, score_points):
        center, radius = candidate
        return np.abs(np.linalg.norm(score_points - center, axis=1) - radius)

    def build(self, candidate, inliers, fit_error, points, iterations):
        center, radius = candidate
        return SphereFit(
            center=center,
            radius=float(radius),
            inlier_count=int(inliers.sum()),
            fit_error=fit_error,
            inlier_points=points[inliers].copy(),
            iterations=iterations,
        )


class CylinderModel(ShapeModel):
    """Approximate cylinder seeded from three surface samples.

    A candidate's radius is the mean distance from the seed axis over the
    first :data:`CYLINDER_RADIUS_PROBE` points, which keeps iterations cheap;
    scoring still covers the full point set.
    """

    result_type = CylinderFit

    def __init__(self, probe_size: int = CYLINDER_RADIUS_PROBE) -> None:
        self._probe_size = probe_size
        self._probe: np.ndarray | None = None

    def prepare(self, points, distance_threshold, region_hint):
        self._probe = points[: self._probe_size]
        return points, points

    @staticmethod
    def _decompose(axis_point, direction, points):
        rel = points - axis_point
        along = rel @ direction
        radial = np.linalg.norm(rel - np.outer(along, direction), axis=1)
        return along, radial

    def solve(self, sample):
        seed = cylinder_axis_from_3_points(sample)
        if seed is None:
            return None
        axis_point, direction = seed
        _, radial = self._decompose(axis_point, direction, self._probe)
        return axis_point, direction, float(radial.mean())

    def size(self, candidate):
        return candidate[2]

    def residuals(self, candidate, score_points):
        axis_point, direction, radius = candidate
        _, radial = self._decompose(axis_point, direction, score_points)
        return np.abs(radial - radius)

    def build(self, candidate, inliers, fit_error, points, iterations):
        axis_point, direction, radius = candidate
        along, _ = self._decompose(axis_point, direction, points[inliers])
        return CylinderFit(
            axis_point=axis_point,
            axis_direction=direction,
            radius=radius,
            height=float(along.max() - along.min()),
            inlier_count=int(inliers.sum()),
            fit_error=fit_error,
            inlier_points=points[inliers].copy(),
            iterations=iterations,
        )


_MODELS: dict[ShapeKind, type[ShapeModel]] = {
    ShapeKind.CIRCLE: CircleModel,
    ShapeKind.LINE: LineModel,
    ShapeKind.PLANE: PlaneModel,
    ShapeKind.SPHERE: SphereModel,
    ShapeKind.CYLINDER: CylinderModel,
}


def get_shape_model(kind: ShapeKind | str, **kwargs: Any) -> ShapeModel:
    """Create a fresh shape model by kind.

    Args:
        kind: A :class:`ShapeKind` or its string value (``"circle"``,
            ``"line"``, ``"plane"``, ``"sphere"``, ``"cylinder"``).
        **kwargs: Forwarded to the model constructor (``probe_size`` for
            cylinders).

    Returns:
        A new :class:`ShapeModel` instance.

    Raises:
        ValueError: If *kind* is not a recognized shape.
    """
    try:
        shape = ShapeKind(kind)
    except ValueError:
        raise ValueError(
            f"Unknown shape kind: {kind!r}. "
            f"Supported kinds: {sorted(k.value for k in ShapeKind)}"
        ) from None
    return _MODELS[shape](**kwargs)
