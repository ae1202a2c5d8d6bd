"""RegionFilterStage — crop a point set to a region of interest."""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from pointfit.core.context import CancelToken, Keys, SharedContext
from pointfit.core.stages.base import StageInfo, UpstreamMixin
from pointfit.core.types import RegionDescriptor, RegionShape

__all__ = ["RegionFilterStage"]

logger = logging.getLogger(__name__)


class RegionFilterStage(UpstreamMixin):
    """Keep only the upstream points inside a region.

    Writes the cropped cloud under ``FilteredCloud_<stage_id>`` and the region
    under ``Region_<stage_id>``; downstream circle fitting uses the latter to
    pick its projection plane.

    When no explicit *region* is given, a box is built from *center* and
    *size*. A box whose center is the origin is moved to the cloud centroid.
    When disabled, the upstream cloud is passed through unchanged and any
    upstream region is forwarded.

    Args:
        stage_id: Unique stage identifier.
        region: Explicit region. Overrides *center*/*size*.
        center: Box center used when *region* is None.
        size: Box extents used when *region* is None.
        enabled: Whether filtering is applied.
        upstream: Initial upstream stage ids; normally set by the orchestrator.
    """

    INFO = StageInfo("Region Filter", "Point Cloud/Filter", "Filter points within a 3D region")

    def __init__(
        self,
        stage_id: str,
        region: RegionDescriptor | None = None,
        center: tuple[float, float, float] = (0.0, 0.0, 0.0),
        size: tuple[float, float, float] = (100.0, 100.0, 50.0),
        enabled: bool = True,
        upstream: list[str] | None = None,
    ) -> None:
        self.stage_id = stage_id
        self._region = region
        self._center = tuple(float(c) for c in center)
        self._size = tuple(float(s) for s in size)
        if any(s <= 0 for s in self._size):
            raise ValueError(f"size components must be > 0, got {self._size}")
        self._enabled = bool(enabled)
        self._upstream = list(upstream or [])

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "center": self._center,
            "size": self._size,
            "shape": (self._region.shape if self._region else RegionShape.BOX).value,
        }

    def _build_region(self, points: np.ndarray) -> RegionDescriptor:
        if self._region is not None:
            return self._region
        center = np.array(self._center)
        if not center.any() and len(points) > 0:
            center = points.mean(axis=0)
        return RegionDescriptor(shape=RegionShape.BOX, center=center, size=np.array(self._size))

    def run(
        self, context: SharedContext, cancel: CancelToken | None = None
    ) -> SharedContext:
        """Crop the upstream cloud and publish the cloud and region.

        Raises:
            UpstreamDataMissingError: If no upstream cloud is available.
        """
        cloud = self.resolve_cloud(context)

        if not self._enabled:
            context.set(Keys.FILTERED_CLOUD.scoped(self.stage_id), cloud)
            upstream_region = self.resolve_region(context)
            if upstream_region is not None:
                context.set(Keys.REGION.scoped(self.stage_id), upstream_region)
            logger.info("%s: disabled, passing %d points through", self.stage_id, cloud.count)
            return context

        region = self._build_region(cloud.points)
        filtered = cloud.subset(region.contains(cloud.points))
        context.set(Keys.FILTERED_CLOUD.scoped(self.stage_id), filtered)
        context.set(Keys.REGION.scoped(self.stage_id), region)

        if filtered.count == 0:
            logger.warning("%s: region contains no points", self.stage_id)
        logger.info(
            "%s: kept %d of %d points (%s region)",
            self.stage_id,
            filtered.count,
            cloud.count,
            region.shape.value,
        )
        return context
