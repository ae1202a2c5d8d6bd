"""Core geometry and data contracts for point-set primitive fitting.

Exports the domain types, the SharedContext/Stage contracts, the RANSAC
fitter and the pipeline stage classes. Each stage satisfies the Stage
Protocol via structural typing (no inheritance required).

Typical stage chain:
1. PointSetSourceStage — publish an imported point set
2. RegionFilterStage   — crop to a region of interest (optional)
3. *FittingStage       — fit a circle, line, plane, sphere or cylinder
"""

from pointfit.core.context import CancelToken, ContextKey, Keys, SharedContext, Stage
from pointfit.core.errors import ErrorKind, UpstreamDataMissingError
from pointfit.core.fitting import PrimitiveFitter
from pointfit.core.stages import (
    CircleFittingStage,
    CylinderFittingStage,
    LineFittingStage,
    PlaneFittingStage,
    PointSetSourceStage,
    RegionFilterStage,
    SphereFittingStage,
    create_stage,
)
from pointfit.core.types import (
    CircleFit,
    CylinderFit,
    FitResult,
    LineFit,
    PlaneFit,
    PointSet,
    RegionDescriptor,
    RegionShape,
    ShapeKind,
    SphereFit,
)

__all__ = [
    "CancelToken",
    "CircleFit",
    "CircleFittingStage",
    "ContextKey",
    "CylinderFit",
    "CylinderFittingStage",
    "ErrorKind",
    "FitResult",
    "Keys",
    "LineFit",
    "LineFittingStage",
    "PlaneFit",
    "PlaneFittingStage",
    "PointSet",
    "PointSetSourceStage",
    "PrimitiveFitter",
    "RegionDescriptor",
    "RegionFilterStage",
    "RegionShape",
    "ShapeKind",
    "SharedContext",
    "SphereFit",
    "SphereFittingStage",
    "Stage",
    "UpstreamDataMissingError",
    "create_stage",
]
