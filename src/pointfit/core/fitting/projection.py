"""Projection-plane selection for circle fitting."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from pointfit.core.types import RegionDescriptor, RegionShape

__all__ = ["ProjectionFrame", "plane_axes", "select_projection_frame"]

logger = logging.getLogger(__name__)

_UNIT_X = np.array([1.0, 0.0, 0.0])
_UNIT_Y = np.array([0.0, 1.0, 0.0])
_UNIT_Z = np.array([0.0, 0.0, 1.0])


def plane_axes(normal: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Orthonormal in-plane axes ``(u, v)`` for a unit *normal*.

    ``u`` is built against +X unless the normal is nearly parallel to it, in
    which case +Y is used.
    """
    helper = _UNIT_X if abs(normal[0]) < 0.9 else _UNIT_Y
    u = np.cross(normal, helper)
    u /= np.linalg.norm(u)
    v = np.cross(normal, u)
    return u, v


@dataclass(frozen=True, eq=False)
class ProjectionFrame:
    """2D coordinate frame embedded in 3D.

    Attributes:
        origin: Frame origin in 3D, shape (3,).
        normal: Unit plane normal, shape (3,).
        u: First in-plane axis, shape (3,).
        v: Second in-plane axis, shape (3,).
    """

    origin: np.ndarray
    normal: np.ndarray
    u: np.ndarray
    v: np.ndarray

    @classmethod
    def from_normal(cls, origin: np.ndarray, normal: np.ndarray) -> ProjectionFrame:
        u, v = plane_axes(normal)
        return cls(origin=np.asarray(origin, dtype=np.float64), normal=normal, u=u, v=v)

    def project(self, points: np.ndarray) -> np.ndarray:
        """Project ``(N, 3)`` points to ``(N, 2)`` frame coordinates."""
        rel = points - self.origin
        return np.stack([rel @ self.u, rel @ self.v], axis=1)

    def lift(self, point2d: np.ndarray) -> np.ndarray:
        """Map a 2D frame coordinate back to 3D."""
        return self.origin + point2d[0] * self.u + point2d[1] * self.v


def select_projection_frame(
    points: np.ndarray, region_hint: RegionDescriptor | None = None
) -> ProjectionFrame:
    """Choose the plane onto which points are projected for circle fitting.

    A cylindrical region hint forces projection onto the plane perpendicular
    to the region axis through the region center; natural variance would
    pick the wrong plane for single-sided line-scan data. Otherwise the plane
    normal is the coordinate axis of smallest bounding-box extent and the
    origin is the bounding-box center.

    Args:
        points: Input points, shape (N, 3), N >= 1.
        region_hint: Optional region descriptor from region filtering.

    Returns:
        The selected :class:`ProjectionFrame`.
    """
    if region_hint is not None and region_hint.shape is RegionShape.CYLINDER:
        logger.debug("Circle plane: cylinder region axis %s", region_hint.axis)
        return ProjectionFrame.from_normal(region_hint.center, region_hint.axis)

    lo = points.min(axis=0)
    hi = points.max(axis=0)
    rx, ry, rz = hi - lo
    if rz < rx and rz < ry:
        normal = _UNIT_Z
    elif ry < rx and ry < rz:
        normal = _UNIT_Y
    else:
        normal = _UNIT_X
    return ProjectionFrame.from_normal((lo + hi) * 0.5, normal.copy())
