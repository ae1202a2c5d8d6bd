"""RANSAC primitive fitting: solvers, shape models, boundary extraction."""

from pointfit.core.fitting.boundary import boundary_mask, extract_boundary
from pointfit.core.fitting.fitter import PrimitiveFitter
from pointfit.core.fitting.models import ShapeModel, get_shape_model
from pointfit.core.fitting.projection import ProjectionFrame, select_projection_frame

__all__ = [
    "PrimitiveFitter",
    "ProjectionFrame",
    "ShapeModel",
    "boundary_mask",
    "extract_boundary",
    "get_shape_model",
    "select_projection_frame",
]
