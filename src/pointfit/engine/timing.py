"""Timing observer for per-stage and total run wall-clock profiling."""

from __future__ import annotations

import logging
from pathlib import Path

from pointfit.engine.events import (
    Event,
    RunCancelled,
    RunComplete,
    RunFailed,
    RunStart,
    StageComplete,
    StageFailed,
)

logger = logging.getLogger(__name__)


class TimingObserver:
    """Collects stage and run durations into a text report.

    Stage rows are listed in completion order with their share of the total
    run time. Failed stages are marked. The report is logged when the run
    ends and, if *output_path* is set, written to that file.

    Args:
        output_path: Optional file the report is written to at run end.

    Example::

        observer = TimingObserver(output_path="/tmp/timing.txt")
        Orchestrator(observers=[observer]).run_sequential(graph, SharedContext())
        print(observer.report())
    """

    def __init__(self, output_path: str | Path | None = None) -> None:
        self._output_path = Path(output_path) if output_path is not None else None
        self.stage_times: dict[str, float] = {}
        self.failed_stages: set[str] = set()
        self.total_time: float | None = None
        self.run_id: str = ""
        self.outcome: str = ""

    def on_event(self, event: Event) -> None:
        if isinstance(event, RunStart):
            self.run_id = event.run_id
            self.stage_times.clear()
            self.failed_stages.clear()
            self.total_time = None
            self.outcome = ""
        elif isinstance(event, StageComplete):
            self.stage_times[event.stage_id] = event.elapsed_seconds
        elif isinstance(event, StageFailed):
            self.stage_times[event.stage_id] = event.elapsed_seconds
            self.failed_stages.add(event.stage_id)
        elif isinstance(event, (RunComplete, RunFailed, RunCancelled)):
            self.total_time = event.elapsed_seconds
            self.outcome = {
                RunComplete: "completed",
                RunFailed: "failed",
                RunCancelled: "cancelled",
            }[type(event)]
            self._finalize()

    def report(self) -> str:
        """Return the formatted multi-line timing report."""
        lines = [f"Timing Report - run: {self.run_id}", "=" * 50]
        total = self.total_time if self.total_time and self.total_time > 0 else None

        for stage_id, elapsed in self.stage_times.items():
            pct = f" ({elapsed / total * 100:5.1f}%)" if total else ""
            mark = " FAILED" if stage_id in self.failed_stages else ""
            lines.append(f"  {stage_id:<30s} {elapsed:8.3f}s{pct}{mark}")

        lines.append("-" * 50)
        if total is not None:
            lines.append(f"  {'TOTAL':<30s} {total:8.3f}s")
        else:
            lines.append(f"  {'TOTAL':<30s}      N/A")

        if self.outcome in ("failed", "cancelled"):
            lines.append("")
            lines.append(f"  ** Run {self.outcome.upper()}, partial timing report **")
        return "\n".join(lines)

    def _finalize(self) -> None:
        report_text = self.report()
        logger.info("\n%s", report_text)
        if self._output_path is not None:
            self._output_path.parent.mkdir(parents=True, exist_ok=True)
            self._output_path.write_text(report_text, encoding="utf-8")
