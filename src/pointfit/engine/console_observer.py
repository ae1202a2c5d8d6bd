"""ConsoleObserver — prints stage-level progress to stderr."""

from __future__ import annotations

import sys
from typing import TextIO

from pointfit.engine.events import (
    Event,
    RunCancelled,
    RunComplete,
    RunFailed,
    RunStart,
    StageComplete,
    StageFailed,
)


class ConsoleObserver:
    """Observer that prints human-readable stage progress.

    Lines look like ``[2/4] plane1... done (0.04s)``. Output goes to stderr
    by default to keep stdout clean for piping.

    Args:
        stream: Text stream to write to. Defaults to ``sys.stderr`` at
            write time.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._total_stages = 0

    def _write(self, text: str) -> None:
        stream = self._stream if self._stream is not None else sys.stderr
        stream.write(text)
        stream.flush()

    def on_event(self, event: Event) -> None:
        if isinstance(event, RunStart):
            self._total_stages = event.stage_count
            self._write(f"Run {event.run_id} ({event.mode}, {event.stage_count} stages)\n")

        elif isinstance(event, StageComplete):
            self._write(
                f"[{event.stage_index + 1}/{self._total_stages}] "
                f"{event.stage_id}... done ({event.elapsed_seconds:.2f}s)\n"
            )

        elif isinstance(event, StageFailed):
            self._write(
                f"[{event.stage_index + 1}/{self._total_stages}] "
                f"{event.stage_id}... FAILED ({event.error_kind}): {event.error}\n"
            )

        elif isinstance(event, RunComplete):
            self._write(f"Run complete ({event.elapsed_seconds:.2f}s)\n")

        elif isinstance(event, RunFailed):
            self._write(
                f"Run FAILED at {event.stage_id} after "
                f"{event.elapsed_seconds:.2f}s: {event.error}\n"
            )

        elif isinstance(event, RunCancelled):
            self._write(
                f"Run cancelled after {event.completed_stages} stages "
                f"({event.elapsed_seconds:.2f}s)\n"
            )
