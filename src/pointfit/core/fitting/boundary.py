"""Grid-based 2D boundary point selection.

For ring and hole inspection targets, restricting RANSAC's 3-point sampling
to points on the visible edge raises the chance that a random triple lies on
the true circle rather than on interior scan noise. Restriction is an
optimisation, never a hard filter: when too few boundary points are found
the full input is returned.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import ndimage

from pointfit.core.fitting.solvers import EPS

__all__ = ["MIN_BOUNDARY_POINTS", "MIN_GRID_CELLS", "boundary_mask", "extract_boundary"]

logger = logging.getLogger(__name__)

# Minimum grid resolution per axis, even for coarse data.
MIN_GRID_CELLS: int = 10

# A boundary set with this many points or fewer falls back to the full input.
MIN_BOUNDARY_POINTS: int = 10

_NEIGHBOURHOOD = np.ones((3, 3), dtype=bool)


def _cell_indices(values: np.ndarray, lo: float, extent: float, cells: int) -> np.ndarray:
    if extent < EPS:
        return np.zeros(values.shape[0], dtype=np.intp)
    idx = np.floor((values - lo) / extent * (cells - 1)).astype(np.intp)
    return np.clip(idx, 0, cells - 1)


def boundary_mask(points2d: np.ndarray, cell_size: float) -> np.ndarray:
    """Mask of the points lying in boundary cells of an occupancy grid.

    The bounding rectangle of *points2d* is divided into
    ``max(10, extent / cell_size)`` cells per axis. A populated cell is a
    boundary cell when any of its 8 neighbours is empty or outside the grid.

    Args:
        points2d: Points, shape (N, 2).
        cell_size: Nominal cell edge length; should be at least twice the
            fitting distance threshold.

    Returns:
        Boolean mask, shape (N,).

    Raises:
        ValueError: If *cell_size* is not positive.
    """
    if cell_size <= 0:
        raise ValueError(f"cell_size must be > 0, got {cell_size}")
    if points2d.shape[0] == 0:
        return np.zeros(0, dtype=bool)

    lo = points2d.min(axis=0)
    extent = points2d.max(axis=0) - lo
    grid_x = max(MIN_GRID_CELLS, int(extent[0] / cell_size))
    grid_y = max(MIN_GRID_CELLS, int(extent[1] / cell_size))

    ix = _cell_indices(points2d[:, 0], lo[0], extent[0], grid_x)
    iy = _cell_indices(points2d[:, 1], lo[1], extent[1], grid_y)

    occupied = np.zeros((grid_x, grid_y), dtype=bool)
    occupied[ix, iy] = True

    # A cell survives erosion only if all 8 neighbours are occupied; cells
    # outside the grid count as empty.
    interior = ndimage.binary_erosion(occupied, structure=_NEIGHBOURHOOD, border_value=0)
    boundary_cells = occupied & ~interior
    return boundary_cells[ix, iy]


def extract_boundary(points2d: np.ndarray, cell_size: float) -> np.ndarray:
    """Return the boundary subset of *points2d*, or all of it as a fallback.

    Args:
        points2d: Points, shape (N, 2).
        cell_size: Nominal grid cell edge length (see :func:`boundary_mask`).

    Returns:
        Points, shape (M, 2). ``M == N`` when the boundary set has
        :data:`MIN_BOUNDARY_POINTS` points or fewer.
    """
    mask = boundary_mask(points2d, cell_size)
    count = int(mask.sum())
    if count <= MIN_BOUNDARY_POINTS:
        logger.debug(
            "Boundary extraction found %d points (<= %d); using all %d points",
            count,
            MIN_BOUNDARY_POINTS,
            points2d.shape[0],
        )
        return points2d
    return points2d[mask]
