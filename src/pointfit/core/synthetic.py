"""Synthetic point generators with known ground-truth geometry.

Every generator takes a :class:`numpy.random.Generator` (or a seed) so the
output is reproducible. Points are returned as ``(N, 3)`` float64 arrays; wrap
them with :meth:`PointSet.from_points` to feed a pipeline.
"""

from __future__ import annotations

import numpy as np

from pointfit.core.fitting.projection import plane_axes

__all__ = [
    "add_outliers",
    "make_circle_points",
    "make_cylinder_points",
    "make_line_points",
    "make_plane_points",
    "make_ring_points",
    "make_sphere_points",
]


def _rng(rng: np.random.Generator | int | None) -> np.random.Generator:
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


def _unit(v: object) -> np.ndarray:
    arr = np.asarray(v, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm < 1e-10:
        raise ValueError("direction must be a non-zero vector")
    return arr / norm


def _jitter(points: np.ndarray, noise: float, rng: np.random.Generator) -> np.ndarray:
    if noise > 0:
        points = points + rng.normal(0.0, noise, size=points.shape)
    return points


def make_circle_points(
    n: int,
    center: object = (0.0, 0.0, 0.0),
    radius: float = 10.0,
    normal: object = (0.0, 0.0, 1.0),
    noise: float = 0.0,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Sample *n* points on a circle in 3D.

    Args:
        n: Number of points.
        center: Circle center.
        radius: Circle radius.
        normal: Normal of the circle's plane.
        noise: Standard deviation of isotropic Gaussian noise.
        rng: Generator or seed.

    Returns:
        Points, shape (n, 3).
    """
    gen = _rng(rng)
    u, v = plane_axes(_unit(normal))
    theta = gen.uniform(0.0, 2.0 * np.pi, n)
    pts = (
        np.asarray(center, dtype=np.float64)
        + radius * np.outer(np.cos(theta), u)
        + radius * np.outer(np.sin(theta), v)
    )
    return _jitter(pts, noise, gen)


def make_ring_points(
    n: int,
    center: object = (0.0, 0.0, 0.0),
    inner_radius: float = 10.0,
    outer_radius: float = 30.0,
    normal: object = (0.0, 0.0, 1.0),
    noise: float = 0.0,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Sample a flat annulus, the typical scan of a surface around a hole.

    Points are uniform over the annulus area, so the hole edge at
    *inner_radius* is only visible as a boundary of the filled region.
    """
    if not 0 <= inner_radius < outer_radius:
        raise ValueError("need 0 <= inner_radius < outer_radius")
    gen = _rng(rng)
    u, v = plane_axes(_unit(normal))
    theta = gen.uniform(0.0, 2.0 * np.pi, n)
    r = np.sqrt(gen.uniform(inner_radius**2, outer_radius**2, n))
    pts = (
        np.asarray(center, dtype=np.float64)
        + np.outer(r * np.cos(theta), u)
        + np.outer(r * np.sin(theta), v)
    )
    return _jitter(pts, noise, gen)


def make_line_points(
    n: int,
    start: object = (0.0, 0.0, 0.0),
    end: object = (100.0, 0.0, 0.0),
    noise: float = 0.0,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Sample *n* points uniformly on the segment from *start* to *end*."""
    gen = _rng(rng)
    a = np.asarray(start, dtype=np.float64)
    b = np.asarray(end, dtype=np.float64)
    t = gen.uniform(0.0, 1.0, n)
    pts = a + np.outer(t, b - a)
    return _jitter(pts, noise, gen)


def make_plane_points(
    n: int,
    point: object = (0.0, 0.0, 0.0),
    normal: object = (0.0, 0.0, 1.0),
    extent: float = 100.0,
    noise: float = 0.0,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Sample a square patch of side *extent* centered on *point*."""
    gen = _rng(rng)
    u, v = plane_axes(_unit(normal))
    s = gen.uniform(-extent / 2.0, extent / 2.0, (n, 2))
    pts = np.asarray(point, dtype=np.float64) + np.outer(s[:, 0], u) + np.outer(s[:, 1], v)
    return _jitter(pts, noise, gen)


def make_sphere_points(
    n: int,
    center: object = (0.0, 0.0, 0.0),
    radius: float = 10.0,
    noise: float = 0.0,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Sample *n* points uniformly on a sphere surface."""
    gen = _rng(rng)
    dirs = gen.normal(size=(n, 3))
    dirs /= np.linalg.norm(dirs, axis=1, keepdims=True)
    pts = np.asarray(center, dtype=np.float64) + radius * dirs
    return _jitter(pts, noise, gen)


def make_cylinder_points(
    n: int,
    axis_point: object = (0.0, 0.0, 0.0),
    axis_direction: object = (0.0, 0.0, 1.0),
    radius: float = 10.0,
    height: float = 50.0,
    noise: float = 0.0,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Sample the lateral surface of a cylinder.

    The cylinder spans ``[-height/2, height/2]`` along the axis around
    *axis_point*.
    """
    gen = _rng(rng)
    axis = _unit(axis_direction)
    u, v = plane_axes(axis)
    theta = gen.uniform(0.0, 2.0 * np.pi, n)
    h = gen.uniform(-height / 2.0, height / 2.0, n)
    pts = (
        np.asarray(axis_point, dtype=np.float64)
        + np.outer(h, axis)
        + radius * np.outer(np.cos(theta), u)
        + radius * np.outer(np.sin(theta), v)
    )
    return _jitter(pts, noise, gen)


def add_outliers(
    points: np.ndarray,
    n: int,
    low: object,
    high: object,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """Append *n* points drawn uniformly from the box ``[low, high]``.

    Returns:
        New array with the original points first, shape (len(points) + n, 3).
    """
    gen = _rng(rng)
    lo = np.asarray(low, dtype=np.float64)
    hi = np.asarray(high, dtype=np.float64)
    outliers = gen.uniform(lo, hi, (n, 3))
    return np.vstack([np.asarray(points, dtype=np.float64).reshape(-1, 3), outliers])
