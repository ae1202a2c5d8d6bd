"""Stage registry — resolves stage kind strings to stage classes.

Kinds are the names used by pipeline configs and editors, e.g.
``"circle_fitting"``. Each registered class exposes an ``INFO`` attribute
with its display metadata.
"""

from __future__ import annotations

from typing import Any

from pointfit.core.stages.base import StageInfo
from pointfit.core.stages.fitting import (
    CircleFittingStage,
    CylinderFittingStage,
    LineFittingStage,
    PlaneFittingStage,
    SphereFittingStage,
)
from pointfit.core.stages.region import RegionFilterStage
from pointfit.core.stages.source import PointSetSourceStage

__all__ = ["STAGE_REGISTRY", "available_stages", "create_stage", "stage_info"]

STAGE_REGISTRY: dict[str, type] = {
    "point_source": PointSetSourceStage,
    "region_filter": RegionFilterStage,
    "circle_fitting": CircleFittingStage,
    "line_fitting": LineFittingStage,
    "plane_fitting": PlaneFittingStage,
    "sphere_fitting": SphereFittingStage,
    "cylinder_fitting": CylinderFittingStage,
}


def _lookup(kind: str) -> type:
    try:
        return STAGE_REGISTRY[kind]
    except KeyError:
        raise ValueError(
            f"Unknown stage kind: {kind!r}. Supported kinds: {available_stages()}"
        ) from None


def create_stage(kind: str, stage_id: str, **params: Any) -> Any:
    """Create a stage instance by kind name.

    Args:
        kind: Registered stage kind, e.g. ``"plane_fitting"``.
        stage_id: Identifier of the new stage.
        **params: Forwarded to the stage constructor.

    Returns:
        A configured stage satisfying the Stage Protocol.

    Raises:
        ValueError: If *kind* is not registered or a parameter is invalid.
    """
    return _lookup(kind)(stage_id, **params)


def stage_info(kind: str) -> StageInfo:
    """Display metadata for a registered stage kind.

    Raises:
        ValueError: If *kind* is not registered.
    """
    return _lookup(kind).INFO


def available_stages() -> list[str]:
    """Sorted list of registered stage kinds."""
    return sorted(STAGE_REGISTRY)
