"""Orchestrator — executes a PipelineGraph against a SharedContext.

Three entry points share one per-stage execution path:

- :meth:`Orchestrator.run_sequential` runs ``graph.execution_order()`` one
  stage at a time and halts on the first failure.
- :meth:`Orchestrator.run_fan_out` dispatches a set of mutually independent
  stages onto a thread pool and joins once.
- :meth:`Orchestrator.run_parallel` walks ``graph.execution_levels()``,
  fanning out every layer that holds more than one stage.

Stage exceptions never escape: they are classified into an
:class:`~pointfit.core.errors.ErrorKind`, reported as a failed
:class:`StageResult`, and the run ends in :attr:`RunState.FAILED`. Context
writes made before the failure stay in place.

Fan-out safety rests on stage-scoped key names (``<kind>_<stage_id>``); the
context is not locked. Lifecycle events are always emitted from the calling
thread: during fan-out, start events precede dispatch and completion events
follow the join.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from pointfit.core.context import CancelToken, SharedContext, Stage
from pointfit.core.errors import ErrorKind, UpstreamDataMissingError
from pointfit.core.types import FitResult
from pointfit.engine.config import PipelineConfig, _generate_run_id
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

__all__ = ["Orchestrator", "RunResult", "RunState", "StageResult"]

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    """Lifecycle of a single run. The last three states are terminal."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage execution.

    A stage that ran but found no shape is still a success; its
    ``error_kind`` is then ``INSUFFICIENT_DATA`` or ``NO_CONVERGENT_MODEL``
    for information.

    Attributes:
        stage_id: Identifier of the stage.
        success: False only for ``UPSTREAM_DATA_MISSING``, ``STAGE_FAILURE``
            and ``CANCELLED``.
        message: Human-readable outcome.
        error_kind: Classification, or None for a clean result.
        elapsed_seconds: Wall-clock time of the stage.
        written_keys: Context keys the stage set, in write order.
    """

    stage_id: str
    success: bool
    message: str = ""
    error_kind: ErrorKind | None = None
    elapsed_seconds: float = 0.0
    written_keys: tuple[str, ...] = ()


@dataclass
class RunResult:
    """Aggregate outcome of a run.

    Attributes:
        state: Terminal run state.
        stage_results: Per-stage results keyed by stage id, in execution
            order.
        first_failing_stage_id: First stage that failed, if any.
        message: Summary message.
        elapsed_seconds: Wall-clock time of the run.
        context: The context the run wrote to.
    """

    state: RunState
    stage_results: dict[str, StageResult] = field(default_factory=dict)
    first_failing_stage_id: str | None = None
    message: str = ""
    elapsed_seconds: float = 0.0
    context: SharedContext | None = None

    @property
    def success(self) -> bool:
        return self.state is RunState.COMPLETED


class _RecordingContext(SharedContext):
    """View onto another context's store that records the keys set through it."""

    def __init__(self, base: SharedContext) -> None:
        self._data = base._data
        self.written: list[str] = []

    def set(self, key, value) -> None:
        name = self._name(key)
        super().set(name, value)
        if name not in self.written:
            self.written.append(name)


def _is_failure(result: StageResult) -> bool:
    return not result.success and result.error_kind is not ErrorKind.CANCELLED


def _fit_outcome(ctx: _RecordingContext) -> tuple[ErrorKind | None, str]:
    for key in ctx.written:
        result = ctx.get(key, FitResult)
        if result is None:
            continue
        if result.is_valid:
            return None, (
                f"{result.kind.value} fit: {result.inlier_count} inliers, "
                f"error {result.fit_error:.4f}"
            )
        if result.iterations == 0:
            return ErrorKind.INSUFFICIENT_DATA, f"too few points for a {result.kind.value}"
        return ErrorKind.NO_CONVERGENT_MODEL, (
            f"no {result.kind.value} found after {result.iterations} iterations"
        )
    return None, "ok"


class Orchestrator:
    """Runs pipeline graphs and reports lifecycle events to observers.

    Example::

        orchestrator = Orchestrator(observers=[TimingObserver()])
        result = orchestrator.run_sequential(graph, SharedContext())
        if not result.success:
            print(result.first_failing_stage_id, result.message)

    Args:
        observers: Observers subscribed to every event.
        max_workers: Thread pool size for fan-out. None lets
            :class:`~concurrent.futures.ThreadPoolExecutor` choose.
        clear_context: Default for clearing the context at the start of
            sequential and parallel runs.
        run_id: Default run identifier. Empty means one is generated per
            run.
    """

    def __init__(
        self,
        observers: list[Observer] | None = None,
        max_workers: int | None = None,
        clear_context: bool = True,
        run_id: str = "",
    ) -> None:
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._bus = EventBus()
        self._max_workers = max_workers
        self._clear_context = clear_context
        self._run_id = run_id
        self.state = RunState.NOT_STARTED
        self._started = 0.0
        for observer in observers or []:
            self._bus.subscribe(Event, observer)

    @classmethod
    def from_config(
        cls, config: PipelineConfig, observers: list[Observer] | None = None
    ) -> Orchestrator:
        """Build an orchestrator from the ``orchestrator`` config section."""
        section = config.orchestrator
        return cls(
            observers=observers,
            max_workers=section.max_workers,
            clear_context=section.clear_context,
            run_id=config.run_id,
        )

    def add_observer(self, observer: Observer, event_type: type[Event] = Event) -> None:
        """Subscribe *observer* to *event_type* (default: every event)."""
        self._bus.subscribe(event_type, observer)

    def remove_observer(
        self, observer: Observer, event_type: type[Event] | None = None
    ) -> None:
        """Unsubscribe *observer* from *event_type*, or from everything.

        No-op if not subscribed.
        """
        if event_type is None:
            self._bus.unsubscribe_all(observer)
        else:
            self._bus.unsubscribe(event_type, observer)

    # --- entry points -----------------------------------------------------

    def run_sequential(
        self,
        graph: PipelineGraph,
        context: SharedContext,
        cancel: CancelToken | None = None,
        *,
        clear_context: bool | None = None,
        run_id: str | None = None,
    ) -> RunResult:
        """Execute every stage of *graph* in topological order.

        Args:
            graph: Stages and their dependencies.
            context: Context to run in.
            cancel: Optional token, checked before each stage and passed to
                every stage.
            clear_context: Clear *context* before the first stage. None uses
                the orchestrator default.
            run_id: Identifier reported in run events.

        Returns:
            The run outcome. On failure the run halts at the failing stage. A
            stage that returns with *cancel* set is reported as ``CANCELLED``
            and ends the run in :attr:`RunState.CANCELLED`.
        """
        run_id = run_id or self._run_id or _generate_run_id()
        order = graph.execution_order()
        if clear_context is None:
            clear_context = self._clear_context
        if clear_context:
            context.clear()
        run = self._begin(run_id, "sequential", len(order), context)

        for index, stage_id in enumerate(order):
            if cancel is not None and cancel.cancelled:
                return self._cancel(run, run_id)
            stage = graph.get_stage(stage_id)
            self._bus.emit(StageStart(stage_id=stage_id, stage_index=index))
            outcome = self._execute(stage, context, cancel, graph.predecessors(stage_id))
            self._emit_stage_end(outcome, index)
            run.stage_results[stage_id] = outcome
            if outcome.error_kind is ErrorKind.CANCELLED:
                return self._cancel(run, run_id)
            if not outcome.success:
                return self._fail(run, run_id, outcome)

        if cancel is not None and cancel.cancelled:
            return self._cancel(run, run_id)
        return self._complete(run, run_id)

    def run_fan_out(
        self,
        stages: Iterable[Stage | str],
        context: SharedContext,
        cancel: CancelToken | None = None,
        *,
        graph: PipelineGraph | None = None,
        manual: bool = False,
        run_id: str | None = None,
    ) -> RunResult:
        """Run mutually independent stages concurrently and join once.

        The caller guarantees that no stage in the set reads a key another
        stage in the set writes. When *graph* is given, that is checked
        against its edges and each stage is told its predecessors.

        Args:
            stages: Stage objects, or stage ids resolved through *graph*.
            context: Context to run in. Never cleared.
            cancel: Optional token, checked before dispatch and after the join.
            graph: Optional graph to resolve ids and upstream links.
            manual: Call ``detect()`` instead of ``run()`` on stages that
                have it, which triggers deferred fitting stages.
            run_id: Identifier reported in run events.

        Returns:
            The aggregate outcome. Every stage runs even if another fails.

        Raises:
            ValueError: If *graph* shows a dependency inside the set, or an id
                is given without a graph.
            KeyError: If an id is not in *graph*.
        """
        run_id = run_id or self._run_id or _generate_run_id()
        resolved = self._resolve(stages, graph)
        if graph is not None:
            ids = [s.stage_id for s in resolved if s.stage_id in graph]
            if not graph.are_independent(ids):
                raise ValueError(f"Stages {ids} are not mutually independent")

        run = self._begin(run_id, "fan_out", len(resolved), context)
        if cancel is not None and cancel.cancelled:
            return self._cancel(run, run_id)

        self._fan_out_layer(run, resolved, context, cancel, graph, manual, offset=0)
        failed = [r for r in run.stage_results.values() if _is_failure(r)]
        if failed:
            return self._fail(run, run_id, failed[0])
        if cancel is not None and cancel.cancelled:
            return self._cancel(run, run_id)
        return self._complete(run, run_id)

    def run_parallel(
        self,
        graph: PipelineGraph,
        context: SharedContext,
        cancel: CancelToken | None = None,
        *,
        clear_context: bool | None = None,
        run_id: str | None = None,
    ) -> RunResult:
        """Execute *graph* layer by layer, fanning out independent stages.

        Each layer from :meth:`PipelineGraph.execution_levels` runs to
        completion before the next begins. A layer with a failed stage ends
        the run after that layer's join.
        """
        run_id = run_id or self._run_id or _generate_run_id()
        levels = graph.execution_levels()
        if clear_context is None:
            clear_context = self._clear_context
        if clear_context:
            context.clear()
        run = self._begin(run_id, "parallel", len(graph), context)

        offset = 0
        for level in levels:
            if cancel is not None and cancel.cancelled:
                return self._cancel(run, run_id)
            layer = [graph.get_stage(sid) for sid in level]
            if len(layer) == 1:
                stage = layer[0]
                self._bus.emit(StageStart(stage_id=stage.stage_id, stage_index=offset))
                outcome = self._execute(
                    stage, context, cancel, graph.predecessors(stage.stage_id)
                )
                self._emit_stage_end(outcome, offset)
                run.stage_results[stage.stage_id] = outcome
            else:
                self._fan_out_layer(run, layer, context, cancel, graph, False, offset)
            offset += len(layer)
            outcomes = [run.stage_results[sid] for sid in level]
            failed = [r for r in outcomes if _is_failure(r)]
            if failed:
                return self._fail(run, run_id, failed[0])
            if any(r.error_kind is ErrorKind.CANCELLED for r in outcomes):
                return self._cancel(run, run_id)

        if cancel is not None and cancel.cancelled:
            return self._cancel(run, run_id)
        return self._complete(run, run_id)

    # --- execution --------------------------------------------------------

    def _fan_out_layer(
        self,
        run: RunResult,
        stages: list[Stage],
        context: SharedContext,
        cancel: CancelToken | None,
        graph: PipelineGraph | None,
        manual: bool,
        offset: int,
    ) -> None:
        for i, stage in enumerate(stages):
            self._bus.emit(StageStart(stage_id=stage.stage_id, stage_index=offset + i))

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = [
                pool.submit(
                    self._execute,
                    stage,
                    context,
                    cancel,
                    graph.predecessors(stage.stage_id)
                    if graph is not None and stage.stage_id in graph
                    else None,
                    manual,
                )
                for stage in stages
            ]
            outcomes = [f.result() for f in futures]

        for i, outcome in enumerate(outcomes):
            self._emit_stage_end(outcome, offset + i)
            run.stage_results[outcome.stage_id] = outcome

    def _execute(
        self,
        stage: Stage,
        context: SharedContext,
        cancel: CancelToken | None,
        upstream: list[str] | None,
        manual: bool = False,
    ) -> StageResult:
        if upstream is not None and hasattr(stage, "set_upstream"):
            stage.set_upstream(upstream)

        view = _RecordingContext(context)
        start = time.monotonic()
        try:
            if manual and hasattr(stage, "detect"):
                stage.detect(view, cancel)
            else:
                stage.run(view, cancel)
        except UpstreamDataMissingError as exc:
            logger.error("Stage %s: %s", stage.stage_id, exc)
            return StageResult(
                stage_id=stage.stage_id,
                success=False,
                message=str(exc),
                error_kind=ErrorKind.UPSTREAM_DATA_MISSING,
                elapsed_seconds=time.monotonic() - start,
                written_keys=tuple(view.written),
            )
        except Exception as exc:
            logger.error("Stage %s failed", stage.stage_id, exc_info=True)
            return StageResult(
                stage_id=stage.stage_id,
                success=False,
                message=f"{type(exc).__name__}: {exc}",
                error_kind=ErrorKind.STAGE_FAILURE,
                elapsed_seconds=time.monotonic() - start,
                written_keys=tuple(view.written),
            )

        elapsed = time.monotonic() - start
        if cancel is not None and cancel.cancelled:
            # Outputs written after cancellation are partial.
            logger.info("Stage %s cancelled after %.3fs", stage.stage_id, elapsed)
            return StageResult(
                stage_id=stage.stage_id,
                success=False,
                message="cancelled",
                error_kind=ErrorKind.CANCELLED,
                elapsed_seconds=elapsed,
                written_keys=tuple(view.written),
            )
        kind, message = _fit_outcome(view)
        logger.info("Stage %s done in %.3fs: %s", stage.stage_id, elapsed, message)
        return StageResult(
            stage_id=stage.stage_id,
            success=True,
            message=message,
            error_kind=kind,
            elapsed_seconds=elapsed,
            written_keys=tuple(view.written),
        )

    @staticmethod
    def _resolve(stages: Iterable[Stage | str], graph: PipelineGraph | None) -> list[Stage]:
        resolved: list[Stage] = []
        for item in stages:
            if isinstance(item, str):
                if graph is None:
                    raise ValueError(f"Stage id {item!r} given without a graph")
                resolved.append(graph.get_stage(item))
            else:
                resolved.append(item)
        return resolved

    # --- lifecycle --------------------------------------------------------

    def _begin(self, run_id: str, mode: str, count: int, context: SharedContext) -> RunResult:
        self.state = RunState.RUNNING
        self._started = time.monotonic()
        logger.info("Run %s started (%s, %d stages)", run_id, mode, count)
        self._bus.emit(RunStart(run_id=run_id, mode=mode, stage_count=count))
        return RunResult(state=RunState.RUNNING, context=context)

    def _elapsed(self) -> float:
        return time.monotonic() - self._started

    def _emit_stage_end(self, outcome: StageResult, index: int) -> None:
        if outcome.success:
            self._bus.emit(
                StageComplete(
                    stage_id=outcome.stage_id,
                    stage_index=index,
                    elapsed_seconds=outcome.elapsed_seconds,
                    written_keys=outcome.written_keys,
                )
            )
        else:
            self._bus.emit(
                StageFailed(
                    stage_id=outcome.stage_id,
                    stage_index=index,
                    error_kind=outcome.error_kind.value if outcome.error_kind else "",
                    error=outcome.message,
                    elapsed_seconds=outcome.elapsed_seconds,
                )
            )

    def _finish(self, run: RunResult, state: RunState, message: str) -> RunResult:
        self.state = state
        run.state = state
        run.message = message
        run.elapsed_seconds = self._elapsed()
        return run

    def _complete(self, run: RunResult, run_id: str) -> RunResult:
        self._finish(run, RunState.COMPLETED, f"{len(run.stage_results)} stages completed")
        logger.info("Run %s completed in %.3fs", run_id, run.elapsed_seconds)
        self._bus.emit(RunComplete(run_id=run_id, elapsed_seconds=run.elapsed_seconds))
        return run

    def _fail(self, run: RunResult, run_id: str, outcome: StageResult) -> RunResult:
        run.first_failing_stage_id = outcome.stage_id
        message = f"Stage {outcome.stage_id!r} failed: {outcome.message}"
        self._finish(run, RunState.FAILED, message)
        logger.error("Run %s failed at stage %s", run_id, outcome.stage_id)
        self._bus.emit(
            RunFailed(
                run_id=run_id,
                stage_id=outcome.stage_id,
                error=outcome.message,
                elapsed_seconds=run.elapsed_seconds,
            )
        )
        return run

    def _cancel(self, run: RunResult, run_id: str) -> RunResult:
        done = len(run.stage_results)
        self._finish(run, RunState.CANCELLED, f"Cancelled after {done} stages")
        logger.info("Run %s cancelled after %d stages", run_id, done)
        self._bus.emit(
            RunCancelled(
                run_id=run_id, completed_stages=done, elapsed_seconds=run.elapsed_seconds
            )
        )
        return run

    def __repr__(self) -> str:
        return f"Orchestrator(state={self.state.value}, max_workers={self._max_workers})"
