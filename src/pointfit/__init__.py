"""pointfit: RANSAC primitive fitting for 3D point sets, with a stage pipeline.

``pointfit.core`` holds the geometry, data contracts and stages;
``pointfit.engine`` holds the graph, orchestrator, events and config.
"""

__version__ = "0.1.0"
