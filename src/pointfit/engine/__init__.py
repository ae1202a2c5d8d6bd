"""Pipeline engine: stage graph, orchestrator, events, observers and config.

Import boundary: engine/ imports from core/, but core/ never imports from
engine/.
"""

from pointfit.core.context import SharedContext, Stage
from pointfit.engine.config import (
    CircleConfig,
    CylinderConfig,
    LineConfig,
    OrchestratorConfig,
    PipelineConfig,
    PlaneConfig,
    SphereConfig,
    build_stage,
    load_config,
    serialize_config,
)
from pointfit.engine.console_observer import ConsoleObserver
from pointfit.engine.events import (
    Event,
    RunCancelled,
    RunComplete,
    RunFailed,
    RunStart,
    StageComplete,
    StageFailed,
    StageStart,
)
from pointfit.engine.graph import PipelineGraph
from pointfit.engine.observers import EventBus, Observer
from pointfit.engine.orchestrator import Orchestrator, RunResult, RunState, StageResult
from pointfit.engine.timing import TimingObserver

__all__ = [
    "CircleConfig",
    "ConsoleObserver",
    "CylinderConfig",
    "Event",
    "EventBus",
    "LineConfig",
    "Observer",
    "Orchestrator",
    "OrchestratorConfig",
    "PipelineConfig",
    "PipelineGraph",
    "PlaneConfig",
    "RunCancelled",
    "RunComplete",
    "RunFailed",
    "RunResult",
    "RunStart",
    "RunState",
    "SharedContext",
    "SphereConfig",
    "Stage",
    "StageComplete",
    "StageFailed",
    "StageResult",
    "StageStart",
    "TimingObserver",
    "build_stage",
    "load_config",
    "serialize_config",
]
