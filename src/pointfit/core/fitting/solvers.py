"""Closed-form minimal-sample solvers for the RANSAC shape models.

Every solver returns ``None`` on a degenerate sample instead of dividing by a
near-zero quantity. Magnitudes and determinants below :data:`EPS` count as
degenerate.
"""

from __future__ import annotations

import numpy as np

__all__ = [
    "EPS",
    "circle_from_3_points",
    "cylinder_axis_from_3_points",
    "line_from_2_points",
    "normalize",
    "plane_from_3_points",
    "sphere_from_4_points",
]

EPS: float = 1e-10


def normalize(v: np.ndarray) -> np.ndarray | None:
    """Unit vector along *v*, or None when ``|v| < EPS``."""
    norm = float(np.linalg.norm(v))
    if norm < EPS:
        return None
    return v / norm


def circle_from_3_points(
    p1: np.ndarray, p2: np.ndarray, p3: np.ndarray
) -> tuple[np.ndarray, float] | None:
    """Circumcircle of three 2D points.

    Uses the determinant form of the circumcenter. Collinear (or repeated)
    points give ``|d| < EPS`` and are rejected.

    Args:
        p1: First point, shape (2,).
        p2: Second point, shape (2,).
        p3: Third point, shape (2,).

    Returns:
        ``(center, radius)`` with center shape (2,), or None if degenerate.
    """
    ax, ay = float(p1[0]), float(p1[1])
    bx, by = float(p2[0]), float(p2[1])
    cx, cy = float(p3[0]), float(p3[1])

    d = 2.0 * (ax * (by - cy) + bx * (cy - ay) + cx * (ay - by))
    if abs(d) < EPS:
        return None

    a2 = ax * ax + ay * ay
    b2 = bx * bx + by * by
    c2 = cx * cx + cy * cy
    ux = (a2 * (by - cy) + b2 * (cy - ay) + c2 * (ay - by)) / d
    uy = (a2 * (cx - bx) + b2 * (ax - cx) + c2 * (bx - ax)) / d

    center = np.array([ux, uy])
    radius = float(np.hypot(ax - ux, ay - uy))
    return center, radius


def line_from_2_points(
    p0: np.ndarray, p1: np.ndarray
) -> tuple[np.ndarray, np.ndarray] | None:
    """Line through two 3D points as ``(origin, unit_direction)``."""
    direction = normalize(p1 - p0)
    if direction is None:
        return None
    return p0.astype(np.float64, copy=True), direction


def plane_from_3_points(
    p0: np.ndarray, p1: np.ndarray, p2: np.ndarray
) -> tuple[np.ndarray, float] | None:
    """Plane through three 3D points in ``dot(n, p) + d = 0`` form.

    Returns:
        ``(unit_normal, d)``, or None when the points are near-collinear.
    """
    normal = normalize(np.cross(p1 - p0, p2 - p0))
    if normal is None:
        return None
    return normal, -float(np.dot(normal, p0))


def sphere_from_4_points(points: np.ndarray) -> tuple[np.ndarray, float] | None:
    """Circumsphere of four 3D points.

    Translates the sample so the first point is the origin and solves the
    3x3 system by Cramer's rule. Coplanar samples give ``|det| < EPS``.

    Args:
        points: Sample, shape (4, 3).

    Returns:
        ``(center, radius)``, or None if degenerate.
    """
    p0 = points[0]
    a = points[1] - p0
    b = points[2] - p0
    c = points[3] - p0

    d1 = float(a @ a)
    d2 = float(b @ b)
    d3 = float(c @ c)

    det = 2.0 * float(np.dot(a, np.cross(b, c)))
    if abs(det) < EPS:
        return None

    # Cramer's rule on [a; b; c] x = [d1, d2, d3] / 2, expanded via cross products.
    center_rel = (d1 * np.cross(b, c) + d2 * np.cross(c, a) + d3 * np.cross(a, b)) / det
    center = center_rel + p0
    return center, float(np.linalg.norm(center_rel))


def cylinder_axis_from_3_points(
    points: np.ndarray,
) -> tuple[np.ndarray, np.ndarray] | None:
    """Approximate cylinder axis from three surface samples.

    The axis direction is the normal of the plane through the samples and the
    axis point is their centroid. This is a seed for scoring, not an exact
    solve.

    Args:
        points: Sample, shape (3, 3).

    Returns:
        ``(axis_point, axis_direction)``, or None for near-collinear samples.
    """
    direction = normalize(np.cross(points[1] - points[0], points[2] - points[0]))
    if direction is None:
        return None
    return points.mean(axis=0), direction
