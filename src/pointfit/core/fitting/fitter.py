"""RANSAC primitive fitter.

One sampling/scoring loop shared by every shape; the closed-form solve and
residual are swapped in per shape from :mod:`pointfit.core.fitting.models`.

Failure is a value, not an exception: too few points and failed consensus
both return the shape's no-fit sentinel (``inlier_count == 0``,
``fit_error == inf``). Cancellation is cooperative and checked once per
iteration; the best complete candidate found so far is returned.
"""

from __future__ import annotations

import logging

import numpy as np

from pointfit.core.context import CancelToken
from pointfit.core.fitting.models import get_shape_model
from pointfit.core.types import FitResult, RegionDescriptor, ShapeKind, as_points

__all__ = ["PrimitiveFitter"]

logger = logging.getLogger(__name__)


class PrimitiveFitter:
    """RANSAC engine for circles, lines, planes, spheres and cylinders.

    Randomness comes from a private :class:`numpy.random.Generator`. Passing
    a fixed *seed* makes repeated fits on the same input reproducible; the
    default is non-deterministic.

    Example::

        fitter = PrimitiveFitter(seed=0)
        result = fitter.fit(
            cloud,
            ShapeKind.CIRCLE,
            max_iterations=500,
            distance_threshold=1.0,
            shape_bounds=(5.0, 50.0),
            min_inlier_ratio=0.5,
        )
        if result.is_valid:
            print(result.radius)

    Args:
        seed: Optional seed for the sampling generator.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._rng = np.random.default_rng(seed)

    def fit(
        self,
        points: object,
        kind: ShapeKind | str,
        *,
        max_iterations: int,
        distance_threshold: float,
        shape_bounds: tuple[float, float] | None = None,
        min_inlier_ratio: float = 0.0,
        cancel: CancelToken | None = None,
        region_hint: RegionDescriptor | None = None,
    ) -> FitResult:
        """Fit a primitive of *kind* to *points* with RANSAC.

        Each iteration draws a minimal sample of distinct indices, solves the
        candidate in closed form (degenerate samples are skipped), rejects it
        if its radius falls outside *shape_bounds*, then scores every point.
        A candidate replaces the best one when it has strictly more inliers
        and its inlier ratio is at least *min_inlier_ratio*.

        Args:
            points: A PointSet or ``(N, 3)`` array-like. Never modified.
            kind: Shape to fit.
            max_iterations: Upper bound on RANSAC iterations.
            distance_threshold: A point is an inlier iff its residual is
                ``<= distance_threshold``.
            shape_bounds: ``(min_radius, max_radius)`` for circle, sphere and
                cylinder candidates. Ignored for lines and planes.
            min_inlier_ratio: Required ``inlier_count / N`` in ``[0, 1]``.
            cancel: Optional cooperative cancellation token.
            region_hint: Optional region descriptor; a cylindrical region
                fixes the circle projection plane.

        Returns:
            The best :class:`FitResult` variant for *kind*, or its no-fit
            sentinel.

        Raises:
            ValueError: If an argument is out of range or *kind* is unknown.
        """
        shape = ShapeKind(kind)
        _validate(max_iterations, distance_threshold, shape_bounds, min_inlier_ratio)
        model = get_shape_model(shape)
        pts = as_points(points)
        total = pts.shape[0]

        if total < shape.min_points:
            logger.debug(
                "%s fit skipped: %d points < minimum %d",
                shape.label,
                total,
                shape.min_points,
            )
            return model.result_type.no_fit()

        score_points, sample_points = model.prepare(pts, distance_threshold, region_hint)
        n_samples = sample_points.shape[0]
        k = shape.sample_size
        logger.debug(
            "%s fit: %d points (%d sampleable), max_iter=%d, threshold=%g, "
            "bounds=%s, min_ratio=%g",
            shape.label,
            total,
            n_samples,
            max_iterations,
            distance_threshold,
            shape_bounds,
            min_inlier_ratio,
        )
        if n_samples < k:
            return model.result_type.no_fit()

        best: tuple[object, np.ndarray, np.ndarray] | None = None
        best_count = 0
        iterations = 0

        for _ in range(max_iterations):
            if cancel is not None and cancel.cancelled:
                logger.debug("%s fit cancelled after %d iterations", shape.label, iterations)
                break
            iterations += 1

            idx = self._rng.choice(n_samples, size=k, replace=False)
            candidate = model.solve(sample_points[idx])
            if candidate is None:
                continue

            if shape_bounds is not None:
                size = model.size(candidate)
                if size is not None and not (shape_bounds[0] <= size <= shape_bounds[1]):
                    continue

            residuals = model.residuals(candidate, score_points)
            inliers = residuals <= distance_threshold
            count = int(np.count_nonzero(inliers))

            if count > best_count and count / total >= min_inlier_ratio:
                best_count = count
                best = (candidate, inliers, residuals)

        if best is None:
            return model.result_type.no_fit(iterations=iterations)

        candidate, inliers, residuals = best
        fit_error = float(residuals[inliers].mean())
        return model.build(candidate, inliers, fit_error, pts, iterations)


def _validate(
    max_iterations: int,
    distance_threshold: float,
    shape_bounds: tuple[float, float] | None,
    min_inlier_ratio: float,
) -> None:
    if max_iterations < 0:
        raise ValueError(f"max_iterations must be >= 0, got {max_iterations}")
    if not distance_threshold > 0:
        raise ValueError(f"distance_threshold must be > 0, got {distance_threshold}")
    if not 0.0 <= min_inlier_ratio <= 1.0:
        raise ValueError(f"min_inlier_ratio must be in [0, 1], got {min_inlier_ratio}")
    if shape_bounds is not None:
        lo, hi = shape_bounds
        if lo > hi:
            raise ValueError(f"shape_bounds min {lo} exceeds max {hi}")
