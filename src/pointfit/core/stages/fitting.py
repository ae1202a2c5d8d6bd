"""Fitting stages — run the RANSAC fitter on an upstream cloud.

One stage class per shape. All share :class:`FittingStage`, which resolves the
input cloud, runs :class:`~pointfit.core.fitting.PrimitiveFitter`, and writes:

- ``<Shape>Fitting_<stage_id>``: the FitResult (the sentinel on failure).
- ``Measurements_<stage_id>``: named scalar readouts plus ``InlierRatio``.
- ``DetectedCircleCloud_<stage_id>`` (circle only): inliers as a PointSet,
  empty when nothing was found.

With ``auto_run=False`` a run only records the input cloud under
``<Shape>FittingInputCloud_<stage_id>``; :meth:`FittingStage.detect` performs
the fit on demand.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from pointfit.core.context import CancelToken, ContextKey, Keys, SharedContext
from pointfit.core.fitting import PrimitiveFitter
from pointfit.core.stages.base import StageInfo, UpstreamMixin
from pointfit.core.types import FitResult, PointSet, ShapeKind

__all__ = [
    "CircleFittingStage",
    "CylinderFittingStage",
    "FitParameters",
    "FittingStage",
    "LineFittingStage",
    "PlaneFittingStage",
    "SphereFittingStage",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitParameters:
    """Validated RANSAC parameters exposed by a fitting stage.

    Attributes:
        max_iterations: RANSAC iteration budget, > 0.
        distance_threshold: Inlier residual bound, > 0.
        min_inlier_ratio: Required inlier fraction, in [0, 1].
        min_radius: Lower radius bound (radius shapes only), > 0.
        max_radius: Upper radius bound (radius shapes only), >= min_radius.
        auto_run: Fit during the run (True) or wait for :meth:`detect`.
        seed: Optional sampling seed for reproducible fits.
    """

    max_iterations: int = 1000
    distance_threshold: float = 1.0
    min_inlier_ratio: float = 0.3
    min_radius: float | None = None
    max_radius: float | None = None
    auto_run: bool = True
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be > 0, got {self.max_iterations}")
        if self.distance_threshold <= 0:
            raise ValueError(
                f"distance_threshold must be > 0, got {self.distance_threshold}"
            )
        if not 0.0 <= self.min_inlier_ratio <= 1.0:
            raise ValueError(
                f"min_inlier_ratio must be in [0, 1], got {self.min_inlier_ratio}"
            )
        if (self.min_radius is None) != (self.max_radius is None):
            raise ValueError("min_radius and max_radius must be set together")
        if self.min_radius is not None:
            if self.min_radius <= 0 or self.max_radius <= 0:
                raise ValueError("min_radius and max_radius must be > 0")
            if self.min_radius > self.max_radius:
                raise ValueError(
                    f"min_radius {self.min_radius} exceeds max_radius {self.max_radius}"
                )

    @property
    def shape_bounds(self) -> tuple[float, float] | None:
        if self.min_radius is None:
            return None
        return (self.min_radius, self.max_radius)


class FittingStage(UpstreamMixin):
    """Base class for the per-shape fitting stages.

    Args:
        stage_id: Unique stage identifier.
        upstream: Initial upstream stage ids; normally set by the orchestrator.
        **params: Overrides for the shape's :attr:`DEFAULTS`.

    Raises:
        ValueError: If a parameter is out of range.
        TypeError: If an unknown parameter name is given.
    """

    SHAPE: ClassVar[ShapeKind]
    DEFAULTS: ClassVar[FitParameters]
    INFO: ClassVar[StageInfo]

    def __init__(
        self, stage_id: str, upstream: list[str] | None = None, **params: Any
    ) -> None:
        self.stage_id = stage_id
        self._upstream = list(upstream or [])
        self._params = dataclasses.replace(self.DEFAULTS, **params)

    # --- parameters -------------------------------------------------------

    @property
    def parameters(self) -> dict[str, Any]:
        return dataclasses.asdict(self._params)

    @property
    def fit_parameters(self) -> FitParameters:
        return self._params

    def set_parameter(self, name: str, value: Any) -> None:
        """Change one parameter, validating the result.

        Raises:
            KeyError: If *name* is not a parameter of this stage.
            ValueError: If the new value is out of range.
        """
        if name not in self.parameters:
            raise KeyError(f"{type(self).__name__} has no parameter {name!r}")
        self._params = dataclasses.replace(self._params, **{name: value})

    # --- keys -------------------------------------------------------------

    @property
    def result_key(self) -> ContextKey:
        return ContextKey(Keys.fitting(self.SHAPE.label).scoped(self.stage_id).name, FitResult)

    @property
    def input_key(self) -> ContextKey:
        base = Keys.fitting_input(self.SHAPE.label)
        return ContextKey(base.scoped(self.stage_id).name, PointSet)

    @property
    def measurements_key(self) -> ContextKey:
        return Keys.MEASUREMENTS.scoped(self.stage_id)

    # --- execution --------------------------------------------------------

    def run(
        self, context: SharedContext, cancel: CancelToken | None = None
    ) -> SharedContext:
        """Fit the upstream cloud, or record it for a later :meth:`detect`.

        Raises:
            UpstreamDataMissingError: If no upstream cloud is available.
        """
        cloud = self.resolve_cloud(context)
        if not self._params.auto_run:
            context.set(self.input_key, cloud)
            logger.info(
                "%s: manual mode, stored %d input points for later detection",
                self.stage_id,
                cloud.count,
            )
            return context
        self.detect(context, cancel, cloud=cloud)
        return context

    def detect(
        self,
        context: SharedContext,
        cancel: CancelToken | None = None,
        cloud: PointSet | None = None,
    ) -> FitResult:
        """Run the fit now and write the results to *context*.

        Args:
            context: Shared state of the current run.
            cancel: Optional cooperative cancellation token.
            cloud: Points to fit. Defaults to the stored manual-mode input,
                then to the upstream cloud.

        Returns:
            The FitResult that was written.

        Raises:
            UpstreamDataMissingError: If no cloud is given, stored or upstream.
        """
        if cloud is None:
            cloud = context.get(self.input_key)
        if cloud is None:
            cloud = self.resolve_cloud(context)

        params = self._params
        fitter = PrimitiveFitter(seed=params.seed)
        result = fitter.fit(
            cloud,
            self.SHAPE,
            max_iterations=params.max_iterations,
            distance_threshold=params.distance_threshold,
            shape_bounds=params.shape_bounds,
            min_inlier_ratio=params.min_inlier_ratio,
            cancel=cancel,
            region_hint=self._region_hint(context),
        )

        measurements = result.measurements()
        measurements["InlierRatio"] = result.inlier_ratio(cloud.count)
        context.set(self.result_key, result)
        context.set(self.measurements_key, measurements)
        self._write_extras(context, result)

        if result.is_valid:
            logger.info(
                "%s: %s fit with %d/%d inliers, error %.4f (%d iterations)",
                self.stage_id,
                self.SHAPE.value,
                result.inlier_count,
                cloud.count,
                result.fit_error,
                result.iterations,
            )
        else:
            logger.info(
                "%s: no %s found in %d points (%d iterations)",
                self.stage_id,
                self.SHAPE.value,
                cloud.count,
                result.iterations,
            )
        return result

    def _region_hint(self, context: SharedContext):
        return None

    def _write_extras(self, context: SharedContext, result: FitResult) -> None:
        return None


class CircleFittingStage(FittingStage):
    """Circle detection, biased toward hole and ring edges.

    Uses the upstream region descriptor, when present, to select the
    projection plane. Also publishes the inlier cloud for visualization.
    """

    SHAPE = ShapeKind.CIRCLE
    DEFAULTS = FitParameters(
        max_iterations=2000,
        distance_threshold=5.0,
        min_inlier_ratio=0.15,
        min_radius=5.0,
        max_radius=200.0,
        auto_run=False,
    )
    INFO = StageInfo("Circle Fitting", "Point Cloud/Detection", "Detect a circle using RANSAC")

    @property
    def inlier_cloud_key(self) -> ContextKey:
        return ContextKey(Keys.DETECTED_CIRCLE_CLOUD.scoped(self.stage_id).name, PointSet)

    def _region_hint(self, context):
        return self.resolve_region(context)

    def _write_extras(self, context, result):
        inliers = PointSet(points=result.inlier_points.copy())
        inliers.compute_bounding_box()
        context.set(self.inlier_cloud_key, inliers)


class LineFittingStage(FittingStage):
    SHAPE = ShapeKind.LINE
    DEFAULTS = FitParameters(max_iterations=1000, distance_threshold=1.0, min_inlier_ratio=0.3)
    INFO = StageInfo("Line Fitting", "Point Cloud/Detection", "Fit a line using RANSAC")


class PlaneFittingStage(FittingStage):
    SHAPE = ShapeKind.PLANE
    DEFAULTS = FitParameters(max_iterations=1000, distance_threshold=1.0, min_inlier_ratio=0.3)
    INFO = StageInfo("Plane Fitting", "Point Cloud/Detection", "Fit a plane using RANSAC")


class SphereFittingStage(FittingStage):
    SHAPE = ShapeKind.SPHERE
    DEFAULTS = FitParameters(
        max_iterations=1000,
        distance_threshold=1.0,
        min_inlier_ratio=0.3,
        min_radius=1.0,
        max_radius=500.0,
    )
    INFO = StageInfo("Sphere Fitting", "Point Cloud/Detection", "Fit a sphere using RANSAC")


class CylinderFittingStage(FittingStage):
    """Approximate cylinder fitting; see :class:`~pointfit.core.fitting.models.CylinderModel`."""

    SHAPE = ShapeKind.CYLINDER
    DEFAULTS = FitParameters(
        max_iterations=2000,
        distance_threshold=2.0,
        min_inlier_ratio=0.2,
        min_radius=1.0,
        max_radius=500.0,
    )
    INFO = StageInfo("Cylinder Fitting", "Point Cloud/Detection", "Fit a cylinder using RANSAC")
