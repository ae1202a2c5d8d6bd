"""Typed event dataclasses for the pipeline event system.

Events use a 2-tier taxonomy:
- Run lifecycle: RunStart, RunComplete, RunFailed, RunCancelled
- Stage lifecycle: StageStart, StageComplete, StageFailed

All events are frozen dataclasses with an auto-populated timestamp field.
Events are the sole communication channel between the orchestrator and
observers — observers react to events without mutating run state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Event:
    """Base class for all pipeline events.

    Subscribing to ``Event`` receives every event, since EventBus matches
    subscriptions by type hierarchy.

    Attributes:
        timestamp: Unix timestamp (seconds) at event construction time.
    """

    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Run lifecycle events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunStart(Event):
    """Emitted when a run begins.

    Attributes:
        run_id: Identifier of this run.
        mode: ``"sequential"``, ``"fan_out"`` or ``"parallel"``.
        stage_count: Number of stages scheduled.
    """

    run_id: str = ""
    mode: str = "sequential"
    stage_count: int = 0


@dataclass(frozen=True)
class RunComplete(Event):
    """Emitted after every scheduled stage succeeded.

    Attributes:
        run_id: Identifier of this run.
        elapsed_seconds: Wall-clock time for the entire run.
    """

    run_id: str = ""
    elapsed_seconds: float = 0.0


@dataclass(frozen=True)
class RunFailed(Event):
    """Emitted when a run stops because a stage failed.

    Attributes:
        run_id: Identifier of this run.
        stage_id: First failing stage.
        error: Failure message of that stage.
        elapsed_seconds: Wall-clock time elapsed before failure.
    """

    run_id: str = ""
    stage_id: str = ""
    error: str = ""
    elapsed_seconds: float = 0.0


@dataclass(frozen=True)
class RunCancelled(Event):
    """Emitted when a run stops at a stage boundary because of cancellation.

    Attributes:
        run_id: Identifier of this run.
        completed_stages: Number of stages that finished before stopping.
        elapsed_seconds: Wall-clock time elapsed before stopping.
    """

    run_id: str = ""
    completed_stages: int = 0
    elapsed_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Stage lifecycle events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageStart(Event):
    """Emitted immediately before a stage begins execution.

    Attributes:
        stage_id: Identifier of the stage.
        stage_index: Zero-based position of the stage in the run.
    """

    stage_id: str = ""
    stage_index: int = 0


@dataclass(frozen=True)
class StageComplete(Event):
    """Emitted after a stage finishes execution successfully.

    Attributes:
        stage_id: Identifier of the stage.
        stage_index: Zero-based position of the stage in the run.
        elapsed_seconds: Wall-clock time for this stage.
        written_keys: Context keys the stage added or replaced.
    """

    stage_id: str = ""
    stage_index: int = 0
    elapsed_seconds: float = 0.0
    written_keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class StageFailed(Event):
    """Emitted when a stage raises.

    Attributes:
        stage_id: Identifier of the stage.
        stage_index: Zero-based position of the stage in the run.
        error_kind: Value of the matching ``ErrorKind``.
        error: String form of the exception.
        elapsed_seconds: Wall-clock time until the failure.
    """

    stage_id: str = ""
    stage_index: int = 0
    error_kind: str = ""
    error: str = ""
    elapsed_seconds: float = 0.0


__all__ = [
    "Event",
    "RunCancelled",
    "RunComplete",
    "RunFailed",
    "RunStart",
    "StageComplete",
    "StageFailed",
    "StageStart",
]
