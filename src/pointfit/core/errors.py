"""Error taxonomy for fitting stages and pipeline runs.

Geometric failures (too few points, no consensus) are data outcomes carried by
the no-fit sentinel and never raised. Only missing upstream data and other
stage faults stop a run.
"""

from __future__ import annotations

import enum

__all__ = ["ErrorKind", "UpstreamDataMissingError"]


class ErrorKind(enum.Enum):
    """Classification of a stage or run outcome."""

    INSUFFICIENT_DATA = "insufficient_data"
    NO_CONVERGENT_MODEL = "no_convergent_model"
    UPSTREAM_DATA_MISSING = "upstream_data_missing"
    STAGE_FAILURE = "stage_failure"
    CANCELLED = "cancelled"


class UpstreamDataMissingError(LookupError):
    """A stage's required context key is absent or holds the wrong type.

    Args:
        stage_id: Stage that needed the data.
        keys: Context keys that were tried, in lookup order.
    """

    def __init__(self, stage_id: str, keys: list[str]) -> None:
        self.stage_id = stage_id
        self.keys = list(keys)
        tried = ", ".join(self.keys) if self.keys else "none"
        super().__init__(
            f"Stage {stage_id!r} found no usable upstream data (tried: {tried}). "
            "Check that an upstream stage is connected and produced its output."
        )
