"""Domain types shared by the fitting core and the pipeline stages.

Defines the point container (PointSet), the optional region hint produced by
region filtering (RegionDescriptor), the shape taxonomy (ShapeKind), and the
tagged FitResult variants returned by the RANSAC fitter.

A FitResult with ``inlier_count == 0`` and ``fit_error == inf`` is the no-fit
sentinel. It is a valid value that downstream consumers interpret, not an
absence.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import ClassVar

import numpy as np

__all__ = [
    "CircleFit",
    "CylinderFit",
    "FitResult",
    "LineFit",
    "PlaneFit",
    "PointSet",
    "RegionDescriptor",
    "RegionShape",
    "ShapeKind",
    "SphereFit",
    "as_points",
]


def as_points(points: object) -> np.ndarray:
    """Coerce a PointSet or array-like to an ``(N, 3)`` float64 array.

    The returned array may share memory with the input; callers must not
    write to it.

    Raises:
        ValueError: If the data cannot be viewed as ``(N, 3)``.
    """
    if isinstance(points, PointSet):
        return points.points
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return arr.reshape(0, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"expected an (N, 3) point array, got shape {arr.shape}")
    return arr


# ---------------------------------------------------------------------------
# Point containers
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class PointSet:
    """Ordered 3D point set with optional per-point colors and normals.

    The bounding box is NOT kept in sync with ``points``; call
    :meth:`compute_bounding_box` after building or editing the set.

    Attributes:
        points: Point coordinates, shape (N, 3), float64.
        colors: Optional per-point RGB, shape (N, 3).
        normals: Optional per-point normals, shape (N, 3).
        bounding_box: ``[min_x, min_y, min_z, max_x, max_y, max_z]``. All zeros
            until :meth:`compute_bounding_box` runs on a non-empty set.
    """

    points: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    colors: np.ndarray | None = None
    normals: np.ndarray | None = None
    bounding_box: np.ndarray = field(default_factory=lambda: np.zeros(6))

    def __post_init__(self) -> None:
        self.points = as_points(self.points)
        if self.colors is not None:
            self.colors = np.asarray(self.colors, dtype=np.float64)
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64)

    @classmethod
    def from_points(cls, points: object) -> PointSet:
        """Build a PointSet from an array-like and compute its bounding box."""
        cloud = cls(points=np.array(as_points(points), dtype=np.float64))
        cloud.compute_bounding_box()
        return cloud

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def count(self) -> int:
        """Number of points in the set."""
        return len(self)

    def compute_bounding_box(self) -> None:
        """Recompute ``bounding_box`` from the current points.

        No-op on an empty set (the previous box is kept).
        """
        if len(self) == 0:
            return
        self.bounding_box = np.concatenate(
            [self.points.min(axis=0), self.points.max(axis=0)]
        )

    def subset(self, mask: np.ndarray) -> PointSet:
        """Return a new PointSet with the points selected by *mask*.

        Colors and normals are carried along when present. The bounding box of
        the result is recomputed.
        """
        colors = self.colors[mask] if self.colors is not None else None
        normals = self.normals[mask] if self.normals is not None else None
        result = PointSet(points=self.points[mask].copy(), colors=colors, normals=normals)
        result.compute_bounding_box()
        return result

    def clone(self) -> PointSet:
        """Deep copy of the point set."""
        return PointSet(
            points=self.points.copy(),
            colors=None if self.colors is None else self.colors.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            bounding_box=self.bounding_box.copy(),
        )


class RegionShape(enum.Enum):
    """Shape of a region-of-interest descriptor."""

    BOX = "box"
    CYLINDER = "cylinder"
    SPHERE = "sphere"


@dataclass(frozen=True, eq=False)
class RegionDescriptor:
    """Sub-volume hint produced by region filtering.

    Attributes:
        shape: Region shape.
        center: Region center, shape (3,).
        size: Full extents along x, y, z, shape (3,). For cylinders only the
            z component (height along the axis) is used.
        radius: Radius for cylinder and sphere regions.
        axis: Cylinder axis direction. Line-scan data scans along +Z, which
            is the default.
    """

    shape: RegionShape = RegionShape.BOX
    center: np.ndarray = field(default_factory=lambda: np.zeros(3))
    size: np.ndarray = field(default_factory=lambda: np.zeros(3))
    radius: float = 0.0
    axis: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))

    def __post_init__(self) -> None:
        object.__setattr__(self, "center", np.asarray(self.center, dtype=np.float64))
        object.__setattr__(self, "size", np.asarray(self.size, dtype=np.float64))
        axis = np.asarray(self.axis, dtype=np.float64)
        norm = float(np.linalg.norm(axis))
        if norm < 1e-10:
            raise ValueError("RegionDescriptor.axis must be a non-zero vector")
        object.__setattr__(self, "axis", axis / norm)

    def contains(self, points: object) -> np.ndarray:
        """Boolean mask of the points that lie inside the region."""
        pts = as_points(points)
        diff = pts - self.center
        if self.shape is RegionShape.BOX:
            return np.all(np.abs(diff) <= self.size / 2.0, axis=1)
        if self.shape is RegionShape.CYLINDER:
            along = diff @ self.axis
            radial = np.linalg.norm(diff - np.outer(along, self.axis), axis=1)
            return (radial <= self.radius) & (np.abs(along) <= self.size[2] / 2.0)
        return np.linalg.norm(diff, axis=1) <= self.radius


# ---------------------------------------------------------------------------
# Fit results
# ---------------------------------------------------------------------------


class ShapeKind(enum.Enum):
    """Geometric primitive kinds supported by the fitter."""

    CIRCLE = "circle"
    LINE = "line"
    PLANE = "plane"
    SPHERE = "sphere"
    CYLINDER = "cylinder"

    @property
    def min_points(self) -> int:
        """Smallest point count for which a fit is attempted."""
        return _MIN_POINTS[self]

    @property
    def sample_size(self) -> int:
        """Number of distinct points drawn per RANSAC iteration."""
        return _SAMPLE_SIZE[self]

    @property
    def label(self) -> str:
        """Capitalised name used in context keys, e.g. ``"Circle"``."""
        return self.value.capitalize()


_MIN_POINTS: dict[ShapeKind, int] = {
    ShapeKind.CIRCLE: 3,
    ShapeKind.LINE: 2,
    ShapeKind.PLANE: 3,
    ShapeKind.SPHERE: 4,
    ShapeKind.CYLINDER: 3,
}

_SAMPLE_SIZE: dict[ShapeKind, int] = {
    ShapeKind.CIRCLE: 3,
    ShapeKind.LINE: 2,
    ShapeKind.PLANE: 3,
    ShapeKind.SPHERE: 4,
    ShapeKind.CYLINDER: 3,
}


def _zeros3() -> np.ndarray:
    return np.zeros(3)


@dataclass(frozen=True, eq=False)
class FitResult:
    """Fields shared by every fit variant.

    Attributes:
        inlier_count: Number of points within the distance threshold of the
            chosen model. 0 for the no-fit sentinel.
        fit_error: Mean residual over the inliers. ``inf`` for the sentinel.
        inlier_points: Inlier coordinates, shape (inlier_count, 3).
        iterations: RANSAC iterations actually executed.
    """

    kind: ClassVar[ShapeKind]

    inlier_count: int = 0
    fit_error: float = math.inf
    inlier_points: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    iterations: int = 0

    @classmethod
    def no_fit(cls, iterations: int = 0):
        """Return the no-fit sentinel for this variant."""
        return cls(iterations=iterations)

    @property
    def is_valid(self) -> bool:
        """True when the result carries a model with at least one inlier."""
        return self.inlier_count > 0 and math.isfinite(self.fit_error)

    def inlier_ratio(self, total: int) -> float:
        """Fraction of *total* points that are inliers (0.0 for empty input)."""
        return self.inlier_count / total if total > 0 else 0.0

    def measurements(self) -> dict[str, float]:
        """Named scalar readouts for inspection displays."""
        return {"FitError": float(self.fit_error), "InlierCount": float(self.inlier_count)}


@dataclass(frozen=True, eq=False)
class CircleFit(FitResult):
    """Circle in 3D: center, radius and the normal of its supporting plane."""

    kind: ClassVar[ShapeKind] = ShapeKind.CIRCLE

    center: np.ndarray = field(default_factory=_zeros3)
    radius: float = 0.0
    normal: np.ndarray = field(default_factory=_zeros3)

    def measurements(self) -> dict[str, float]:
        values = {
            "CenterX": float(self.center[0]),
            "CenterY": float(self.center[1]),
            "CenterZ": float(self.center[2]),
            "Radius": float(self.radius),
            "Diameter": float(self.radius * 2.0),
        }
        values.update(super().measurements())
        return values


@dataclass(frozen=True, eq=False)
class LineFit(FitResult):
    """Infinite line through ``point`` along ``direction``, with inlier extent."""

    kind: ClassVar[ShapeKind] = ShapeKind.LINE

    point: np.ndarray = field(default_factory=_zeros3)
    direction: np.ndarray = field(default_factory=_zeros3)
    length: float = 0.0
    start_point: np.ndarray = field(default_factory=_zeros3)
    end_point: np.ndarray = field(default_factory=_zeros3)

    def measurements(self) -> dict[str, float]:
        values = {
            "Length": float(self.length),
            "DirectionX": float(self.direction[0]),
            "DirectionY": float(self.direction[1]),
            "DirectionZ": float(self.direction[2]),
            "StartX": float(self.start_point[0]),
            "StartY": float(self.start_point[1]),
            "StartZ": float(self.start_point[2]),
            "EndX": float(self.end_point[0]),
            "EndY": float(self.end_point[1]),
            "EndZ": float(self.end_point[2]),
        }
        values.update(super().measurements())
        return values


@dataclass(frozen=True, eq=False)
class PlaneFit(FitResult):
    """Plane ``dot(normal, p) + d = 0``; ``point`` is the sample it was built from."""

    kind: ClassVar[ShapeKind] = ShapeKind.PLANE

    normal: np.ndarray = field(default_factory=_zeros3)
    point: np.ndarray = field(default_factory=_zeros3)
    d: float = 0.0

    def distance_to_point(self, p: object) -> float:
        """Signed distance from *p* to the plane."""
        return float(np.dot(self.normal, np.asarray(p, dtype=np.float64)) + self.d)

    def measurements(self) -> dict[str, float]:
        values = {
            "NormalX": float(self.normal[0]),
            "NormalY": float(self.normal[1]),
            "NormalZ": float(self.normal[2]),
            "D": float(self.d),
        }
        values.update(super().measurements())
        return values


@dataclass(frozen=True, eq=False)
class SphereFit(FitResult):
    """Sphere given by center and radius."""

    kind: ClassVar[ShapeKind] = ShapeKind.SPHERE

    center: np.ndarray = field(default_factory=_zeros3)
    radius: float = 0.0

    def measurements(self) -> dict[str, float]:
        values = {
            "CenterX": float(self.center[0]),
            "CenterY": float(self.center[1]),
            "CenterZ": float(self.center[2]),
            "Radius": float(self.radius),
            "Diameter": float(self.radius * 2.0),
        }
        values.update(super().measurements())
        return values


@dataclass(frozen=True, eq=False)
class CylinderFit(FitResult):
    """Approximate cylinder: axis point and direction, radius, inlier height."""

    kind: ClassVar[ShapeKind] = ShapeKind.CYLINDER

    axis_point: np.ndarray = field(default_factory=_zeros3)
    axis_direction: np.ndarray = field(default_factory=_zeros3)
    radius: float = 0.0
    height: float = 0.0

    def measurements(self) -> dict[str, float]:
        values = {
            "Radius": float(self.radius),
            "Diameter": float(self.radius * 2.0),
            "Height": float(self.height),
            "AxisPointX": float(self.axis_point[0]),
            "AxisPointY": float(self.axis_point[1]),
            "AxisPointZ": float(self.axis_point[2]),
            "AxisDirectionX": float(self.axis_direction[0]),
            "AxisDirectionY": float(self.axis_direction[1]),
            "AxisDirectionZ": float(self.axis_direction[2]),
        }
        values.update(super().measurements())
        return values
