"""Pipeline stages: point source, region filter and per-shape fitting."""

from pointfit.core.stages.base import StageInfo, UpstreamMixin
from pointfit.core.stages.fitting import (
    CircleFittingStage,
    CylinderFittingStage,
    FitParameters,
    FittingStage,
    LineFittingStage,
    PlaneFittingStage,
    SphereFittingStage,
)
from pointfit.core.stages.region import RegionFilterStage
from pointfit.core.stages.registry import (
    STAGE_REGISTRY,
    available_stages,
    create_stage,
    stage_info,
)
from pointfit.core.stages.source import PointSetSourceStage

__all__ = [
    "STAGE_REGISTRY",
    "CircleFittingStage",
    "CylinderFittingStage",
    "FitParameters",
    "FittingStage",
    "LineFittingStage",
    "PlaneFittingStage",
    "PointSetSourceStage",
    "RegionFilterStage",
    "SphereFittingStage",
    "StageInfo",
    "UpstreamMixin",
    "available_stages",
    "create_stage",
    "stage_info",
]
