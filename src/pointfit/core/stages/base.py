"""Shared helpers for stages that read upstream outputs by stage-scoped key."""

from __future__ import annotations

from dataclasses import dataclass

from pointfit.core.context import ContextKey, Keys, SharedContext
from pointfit.core.errors import UpstreamDataMissingError
from pointfit.core.types import PointSet, RegionDescriptor

__all__ = ["StageInfo", "UpstreamMixin"]


@dataclass(frozen=True)
class StageInfo:
    """Display metadata for a registered stage kind.

    Attributes:
        name: Human-readable stage name.
        category: Grouping used by editors, e.g. ``"Point Cloud/Detection"``.
        description: One-line summary.
    """

    name: str
    category: str
    description: str = ""


class UpstreamMixin:
    """Graph-aware input lookup.

    The orchestrator calls :meth:`set_upstream` with the stage's direct
    predecessors before each run. Lookups walk those ids in order and try
    the filtered cloud before the raw one, so a region filter placed
    upstream takes precedence over the import stage.
    """

    stage_id: str
    _upstream: list[str]

    def set_upstream(self, stage_ids: list[str]) -> None:
        """Record the ids of the stages that run directly before this one."""
        self._upstream = list(stage_ids)

    @property
    def upstream(self) -> list[str]:
        return list(self._upstream)

    def _cloud_keys(self) -> list[ContextKey]:
        keys: list[ContextKey] = []
        for sid in self._upstream:
            keys.append(ContextKey(Keys.FILTERED_CLOUD.scoped(sid).name, PointSet))
            keys.append(ContextKey(Keys.POINT_CLOUD.scoped(sid).name, PointSet))
        return keys

    def resolve_cloud(self, context: SharedContext) -> PointSet:
        """Return the first upstream point set found in *context*.

        Raises:
            UpstreamDataMissingError: If no upstream stage produced a cloud.
        """
        keys = self._cloud_keys()
        for key in keys:
            cloud = context.get(key)
            if cloud is not None:
                return cloud
        raise UpstreamDataMissingError(self.stage_id, [k.name for k in keys])

    def resolve_region(self, context: SharedContext) -> RegionDescriptor | None:
        """Return the first upstream region descriptor, if any."""
        for sid in self._upstream:
            region = context.get(Keys.REGION.scoped(sid).name, RegionDescriptor)
            if region is not None:
                return region
        return None
