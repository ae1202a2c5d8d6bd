"""PointSetSourceStage — hands an externally loaded point set to the pipeline."""

from __future__ import annotations

import logging
from typing import Any

from pointfit.core.context import CancelToken, Keys, SharedContext
from pointfit.core.errors import UpstreamDataMissingError
from pointfit.core.stages.base import StageInfo
from pointfit.core.types import PointSet

__all__ = ["PointSetSourceStage"]

logger = logging.getLogger(__name__)


class PointSetSourceStage:
    """Publish an in-memory PointSet under ``PointCloud_<stage_id>``.

    File import and parsing happen outside the core; whatever loads the
    cloud hands it to this stage through the constructor or
    :meth:`set_cloud`.

    Args:
        stage_id: Unique stage identifier.
        cloud: Point set to publish. May be supplied later.
    """

    INFO = StageInfo("Point Set Source", "Point Cloud/Input", "Publish an imported point set")

    def __init__(self, stage_id: str, cloud: PointSet | None = None) -> None:
        self.stage_id = stage_id
        self._cloud = cloud

    @property
    def parameters(self) -> dict[str, Any]:
        return {"point_count": 0 if self._cloud is None else self._cloud.count}

    def set_cloud(self, cloud: PointSet) -> None:
        """Replace the point set published on the next run."""
        self._cloud = cloud

    def run(
        self, context: SharedContext, cancel: CancelToken | None = None
    ) -> SharedContext:
        """Write the point set to the context.

        Raises:
            UpstreamDataMissingError: If no point set has been supplied.
        """
        if self._cloud is None:
            raise UpstreamDataMissingError(self.stage_id, [])
        context.set(Keys.POINT_CLOUD.scoped(self.stage_id), self._cloud)
        logger.info("%s: published %d points", self.stage_id, self._cloud.count)
        return context
