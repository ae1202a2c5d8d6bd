"""Unit tests for Orchestrator sequential, fan-out and parallel execution."""

from __future__ import annotations

import threading

import numpy as np
import pytest

from pointfit.core.context import CancelToken, SharedContext
from pointfit.core.errors import ErrorKind, UpstreamDataMissingError
from pointfit.core.stages import (
    CircleFittingStage,
    PlaneFittingStage,
    PointSetSourceStage,
    RegionFilterStage,
)
from pointfit.core.synthetic import add_outliers, make_circle_points, make_plane_points
from pointfit.core.types import CircleFit, PlaneFit, PointSet
from pointfit.engine.config import load_config
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
from pointfit.engine.orchestrator import Orchestrator, RunState

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class MockStage:
    """Stage that records its execution and writes ``Out_<stage_id>``."""

    def __init__(self, stage_id: str, log: list[str] | None = None) -> None:
        self.stage_id = stage_id
        self.parameters: dict = {}
        self.log = log if log is not None else []
        self.upstream: list[str] | None = None

    def set_upstream(self, stage_ids: list[str]) -> None:
        self.upstream = list(stage_ids)

    def run(self, context, cancel=None):
        self.log.append(self.stage_id)
        context.set(f"Out_{self.stage_id}", len(self.log))
        return context


class FailingStage(MockStage):
    def run(self, context, cancel=None):
        context.set(f"Partial_{self.stage_id}", True)
        raise RuntimeError("deliberate failure")


class MissingInputStage(MockStage):
    def run(self, context, cancel=None):
        raise UpstreamDataMissingError(self.stage_id, ["PointCloud_nowhere"])


class CancellingStage(MockStage):
    """Runs normally, then trips the token."""

    def __init__(self, stage_id: str, token: CancelToken, log: list[str]) -> None:
        super().__init__(stage_id, log)
        self.token = token

    def run(self, context, cancel=None):
        super().run(context, cancel)
        self.token.cancel()
        return context


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[Event] = []

    def on_event(self, event: Event) -> None:
        self.events.append(event)

    def types(self) -> list[type]:
        return [type(e) for e in self.events]


class CancelOnEntry:
    """Wraps a stage and trips the token just before delegating to it."""

    def __init__(self, inner, token: CancelToken) -> None:
        self.inner = inner
        self.token = token
        self.stage_id = inner.stage_id
        self.parameters = inner.parameters

    def set_upstream(self, stage_ids: list[str]) -> None:
        self.inner.set_upstream(stage_ids)

    def run(self, context, cancel=None):
        self.token.cancel()
        return self.inner.run(context, cancel)


class ExplodingObserver:
    def on_event(self, event: Event) -> None:
        raise RuntimeError("observer bug")


def _chain(*stages: MockStage) -> PipelineGraph:
    graph = PipelineGraph()
    for stage in stages:
        graph.add_stage(stage)
    for a, b in zip(stages, stages[1:]):
        graph.add_edge(a.stage_id, b.stage_id)
    return graph


# ---------------------------------------------------------------------------
# Sequential
# ---------------------------------------------------------------------------


def test_sequential_runs_in_order_and_emits_events() -> None:
    log: list[str] = []
    graph = _chain(MockStage("a", log), MockStage("b", log), MockStage("c", log))
    obs = RecordingObserver()

    result = Orchestrator(observers=[obs]).run_sequential(graph, SharedContext(), run_id="r1")

    assert result.success
    assert result.state is RunState.COMPLETED
    assert log == ["a", "b", "c"]
    assert list(result.stage_results) == ["a", "b", "c"]
    assert obs.types() == [
        RunStart,
        StageStart,
        StageComplete,
        StageStart,
        StageComplete,
        StageStart,
        StageComplete,
        RunComplete,
    ]
    assert obs.events[0].run_id == "r1"
    assert obs.events[0].stage_count == 3


def test_sequential_passes_predecessors_to_stages() -> None:
    a, b = MockStage("a"), MockStage("b")
    Orchestrator().run_sequential(_chain(a, b), SharedContext())
    assert a.upstream == []
    assert b.upstream == ["a"]


def test_written_keys_recorded() -> None:
    graph = _chain(MockStage("a"))
    result = Orchestrator().run_sequential(graph, SharedContext())
    assert result.stage_results["a"].written_keys == ("Out_a",)


def test_failure_halts_and_keeps_earlier_writes() -> None:
    log: list[str] = []
    graph = _chain(MockStage("a", log), FailingStage("b", log), MockStage("c", log))
    context = SharedContext()
    obs = RecordingObserver()

    result = Orchestrator(observers=[obs]).run_sequential(graph, context)

    assert result.state is RunState.FAILED
    assert result.first_failing_stage_id == "b"
    assert "deliberate failure" in result.message
    assert "c" not in result.stage_results
    assert context.contains("Out_a")
    assert context.contains("Partial_b")
    failed = result.stage_results["b"]
    assert failed.error_kind is ErrorKind.STAGE_FAILURE
    assert failed.written_keys == ("Partial_b",)
    assert obs.types()[-2:] == [StageFailed, RunFailed]


def test_upstream_missing_classified() -> None:
    graph = _chain(MissingInputStage("fit1"))
    result = Orchestrator().run_sequential(graph, SharedContext())
    assert result.stage_results["fit1"].error_kind is ErrorKind.UPSTREAM_DATA_MISSING
    assert "PointCloud_nowhere" in result.message


def test_context_cleared_by_default() -> None:
    context = SharedContext()
    context.set("Stale", 1)
    Orchestrator().run_sequential(_chain(MockStage("a")), context)
    assert not context.contains("Stale")

    context.set("Kept", 1)
    Orchestrator().run_sequential(_chain(MockStage("a")), context, clear_context=False)
    assert context.contains("Kept")


def test_cancel_before_start() -> None:
    log: list[str] = []
    token = CancelToken()
    token.cancel()
    obs = RecordingObserver()

    result = Orchestrator(observers=[obs]).run_sequential(
        _chain(MockStage("a", log)), SharedContext(), token
    )

    assert result.state is RunState.CANCELLED
    assert log == []
    assert obs.types() == [RunStart, RunCancelled]


def test_cancel_mid_run_stops_before_next_stage() -> None:
    log: list[str] = []
    token = CancelToken()
    graph = _chain(MockStage("a", log), CancellingStage("b", token, log), MockStage("c", log))

    result = Orchestrator().run_sequential(graph, SharedContext(), token)

    assert result.state is RunState.CANCELLED
    assert log == ["a", "b"]
    assert "2 stages" in result.message
    assert result.stage_results["b"].error_kind is ErrorKind.CANCELLED


def test_cancel_inside_last_fitting_stage() -> None:
    """A fit cut short by cancellation is not mistaken for missing data."""
    token = CancelToken()
    points = make_circle_points(200, radius=20.0, rng=0)
    graph = PipelineGraph()
    graph.add_stage(PointSetSourceStage("import1", PointSet.from_points(points)))
    graph.add_stage(CancelOnEntry(CircleFittingStage("c1", auto_run=True, seed=0), token))
    graph.add_edge("import1", "c1")
    context = SharedContext()
    obs = RecordingObserver()

    result = Orchestrator(observers=[obs]).run_sequential(graph, context, token)

    assert result.state is RunState.CANCELLED
    assert result.stage_results["import1"].success
    outcome = result.stage_results["c1"]
    assert outcome.error_kind is ErrorKind.CANCELLED
    assert "CircleFitting_c1" in outcome.written_keys
    assert context.get("CircleFitting_c1", CircleFit).iterations == 0
    assert obs.types()[-1] is RunCancelled


def test_cancel_after_last_stage_is_not_completed() -> None:
    """A token set while the final stage runs still cancels the run."""
    log: list[str] = []
    token = CancelToken()
    graph = _chain(MockStage("a", log), CancellingStage("b", token, log))

    result = Orchestrator().run_sequential(graph, SharedContext(), token)

    assert result.state is RunState.CANCELLED
    assert not result.success
    assert log == ["a", "b"]


def test_run_parallel_cancelled_inside_layer() -> None:
    log: list[str] = []
    token = CancelToken()
    graph = PipelineGraph()
    for stage in (MockStage("a", log), CancellingStage("b", token, log), MockStage("c", log)):
        graph.add_stage(stage)
    graph.add_edge("a", "c")
    graph.add_edge("b", "c")

    result = Orchestrator().run_parallel(graph, SharedContext(), token)

    assert result.state is RunState.CANCELLED
    assert result.first_failing_stage_id is None
    assert "c" not in log


def test_remove_observer_from_every_event_type() -> None:
    obs = RecordingObserver()
    orchestrator = Orchestrator(observers=[obs])
    orchestrator.add_observer(obs, StageStart)

    orchestrator.remove_observer(obs)
    orchestrator.run_sequential(_chain(MockStage("a")), SharedContext())

    assert obs.events == []


def test_failing_observer_does_not_break_run() -> None:
    good = RecordingObserver()
    orchestrator = Orchestrator(observers=[ExplodingObserver(), good])
    result = orchestrator.run_sequential(_chain(MockStage("a")), SharedContext())
    assert result.success
    assert good.types()[-1] is RunComplete


def test_orchestrator_state_tracks_run() -> None:
    orchestrator = Orchestrator()
    assert orchestrator.state is RunState.NOT_STARTED
    orchestrator.run_sequential(_chain(FailingStage("x")), SharedContext())
    assert orchestrator.state is RunState.FAILED


def test_invalid_max_workers() -> None:
    with pytest.raises(ValueError, match="max_workers"):
        Orchestrator(max_workers=0)


def test_from_config() -> None:
    config = load_config(overrides={"orchestrator.max_workers": 2}, run_id="cfg_run")
    obs = RecordingObserver()
    orchestrator = Orchestrator.from_config(config, observers=[obs])
    orchestrator.run_sequential(_chain(MockStage("a")), SharedContext())
    assert obs.events[0].run_id == "cfg_run"


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


def test_fan_out_runs_every_stage() -> None:
    stages = [MockStage(f"s{i}") for i in range(4)]
    context = SharedContext()
    context.set("Existing", 1)
    obs = RecordingObserver()

    result = Orchestrator(observers=[obs], max_workers=2).run_fan_out(stages, context)

    assert result.success
    assert set(result.stage_results) == {"s0", "s1", "s2", "s3"}
    assert context.contains("Existing")
    types = obs.types()
    assert types[:5] == [RunStart] + [StageStart] * 4
    assert types[5:] == [StageComplete] * 4 + [RunComplete]


def test_fan_out_events_emitted_on_calling_thread() -> None:
    threads: set[int] = set()

    class ThreadObserver:
        def on_event(self, event: Event) -> None:
            threads.add(threading.get_ident())

    Orchestrator(observers=[ThreadObserver()]).run_fan_out(
        [MockStage("a"), MockStage("b")], SharedContext()
    )
    assert threads == {threading.get_ident()}


def test_fan_out_continues_past_failure() -> None:
    log: list[str] = []
    stages = [FailingStage("bad", log), MockStage("good", log)]
    result = Orchestrator().run_fan_out(stages, SharedContext())
    assert result.state is RunState.FAILED
    assert result.first_failing_stage_id == "bad"
    assert result.stage_results["good"].success


def test_fan_out_rejects_dependent_ids() -> None:
    graph = _chain(MockStage("a"), MockStage("b"))
    with pytest.raises(ValueError, match="independent"):
        Orchestrator().run_fan_out(["a", "b"], SharedContext(), graph=graph)


def test_fan_out_ids_need_graph() -> None:
    with pytest.raises(ValueError, match="without a graph"):
        Orchestrator().run_fan_out(["a"], SharedContext())


def test_fan_out_cancelled_before_dispatch() -> None:
    log: list[str] = []
    token = CancelToken()
    token.cancel()
    result = Orchestrator().run_fan_out([MockStage("a", log)], SharedContext(), token)
    assert result.state is RunState.CANCELLED
    assert log == []


@pytest.mark.slow
def test_manual_fan_out_triggers_deferred_circle_detection() -> None:
    rng = np.random.default_rng(3)
    source = PointSetSourceStage(
        "import1",
        PointSet.from_points(
            np.vstack(
                [
                    make_circle_points(200, center=(0, 0, 0), radius=20.0, rng=rng),
                    make_circle_points(200, center=(100, 0, 0), radius=40.0, rng=rng),
                ]
            )
        ),
    )
    near = CircleFittingStage("near", seed=1, min_radius=15.0, max_radius=25.0)
    far = CircleFittingStage("far", seed=2, min_radius=35.0, max_radius=45.0)
    graph = PipelineGraph()
    for stage in (source, near, far):
        graph.add_stage(stage)
    graph.add_edge("import1", "near")
    graph.add_edge("import1", "far")
    context = SharedContext()
    orchestrator = Orchestrator()

    prepared = orchestrator.run_sequential(graph, context)
    assert prepared.success
    assert context.get("CircleFitting_near") is None
    assert context.contains("CircleFittingInputCloud_near")

    result = orchestrator.run_fan_out(["near", "far"], context, graph=graph, manual=True)

    assert result.success
    near_fit = context.get("CircleFitting_near", CircleFit)
    far_fit = context.get("CircleFitting_far", CircleFit)
    assert near_fit.radius == pytest.approx(20.0, abs=0.5)
    assert far_fit.radius == pytest.approx(40.0, abs=0.5)
    assert context.contains("DetectedCircleCloud_near")


# ---------------------------------------------------------------------------
# Parallel
# ---------------------------------------------------------------------------


def test_run_parallel_layers() -> None:
    log: list[str] = []
    src, left, right, sink = (MockStage(s, log) for s in ("src", "left", "right", "sink"))
    graph = PipelineGraph()
    for stage in (src, left, right, sink):
        graph.add_stage(stage)
    graph.add_edge("src", "left")
    graph.add_edge("src", "right")
    graph.add_edge("left", "sink")
    graph.add_edge("right", "sink")

    result = Orchestrator(max_workers=2).run_parallel(graph, SharedContext())

    assert result.success
    assert log[0] == "src"
    assert set(log[1:3]) == {"left", "right"}
    assert log[3] == "sink"
    assert sink.upstream == ["left", "right"]


def test_run_parallel_stops_after_failed_layer() -> None:
    log: list[str] = []
    graph = PipelineGraph()
    for stage in (MockStage("a", log), FailingStage("b", log), MockStage("c", log)):
        graph.add_stage(stage)
    graph.add_edge("b", "c")

    result = Orchestrator().run_parallel(graph, SharedContext())

    assert result.state is RunState.FAILED
    assert result.first_failing_stage_id == "b"
    assert "c" not in log


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


def test_source_region_plane_pipeline() -> None:
    rng = np.random.default_rng(11)
    points = make_plane_points(
        400, point=(0, 0, 10), normal=(0, 0, 1), extent=60.0, noise=0.05, rng=rng
    )
    points = add_outliers(points, 40, low=(-30, -30, 20), high=(30, 30, 40), rng=rng)

    graph = PipelineGraph()
    graph.add_stage(PointSetSourceStage("import1", PointSet.from_points(points)))
    graph.add_stage(RegionFilterStage("roi", center=(0, 0, 10), size=(80, 80, 10)))
    graph.add_stage(PlaneFittingStage("plane1", seed=0))
    graph.add_edge("import1", "roi")
    graph.add_edge("roi", "plane1")
    context = SharedContext()

    result = Orchestrator().run_sequential(graph, context)

    assert result.success
    fit = context.get("PlaneFitting_plane1", PlaneFit)
    assert fit is not None and fit.is_valid
    assert abs(fit.normal[2]) == pytest.approx(1.0, abs=1e-2)
    assert fit.inlier_count >= 380
    measurements = context.get("Measurements_plane1", dict)
    assert measurements["InlierRatio"] > 0.9
    assert result.stage_results["plane1"].error_kind is None


def test_no_fit_is_success_with_informational_kind() -> None:
    graph = PipelineGraph()
    graph.add_stage(PointSetSourceStage("import1", PointSet.from_points(np.zeros((2, 3)))))
    graph.add_stage(PlaneFittingStage("plane1", seed=0))
    graph.add_edge("import1", "plane1")

    result = Orchestrator().run_sequential(graph, SharedContext())

    assert result.success
    assert result.stage_results["plane1"].error_kind is ErrorKind.INSUFFICIENT_DATA
