"""PipelineGraph — stage DAG with cycle-rejecting edges and stable ordering.

Stages are kept in a dense list in insertion order; edges are stored as pairs
of indices into that list. Removing a stage drops its incident edges and
re-indexes the rest.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from collections.abc import Iterable

from pointfit.core.context import Stage

__all__ = ["PipelineGraph"]

logger = logging.getLogger(__name__)


class PipelineGraph:
    """Directed acyclic graph of stages.

    An edge ``source -> target`` means *source* executes before *target* and
    *target* reads its outputs. Edges that would close a cycle are refused.

    Example::

        graph = PipelineGraph()
        graph.add_stage(PointSetSourceStage("import1", cloud))
        graph.add_stage(PlaneFittingStage("plane1"))
        graph.add_edge("import1", "plane1")
        graph.execution_order()   # ["import1", "plane1"]
    """

    def __init__(self) -> None:
        self._stages: list[Stage] = []
        self._index: dict[str, int] = {}
        self._edges: list[tuple[int, int]] = []

    # --- stages -----------------------------------------------------------

    def add_stage(self, stage: Stage) -> None:
        """Append *stage* to the graph.

        Raises:
            ValueError: If a stage with the same id already exists.
        """
        if stage.stage_id in self._index:
            raise ValueError(f"Duplicate stage id: {stage.stage_id!r}")
        self._index[stage.stage_id] = len(self._stages)
        self._stages.append(stage)

    def remove_stage(self, stage_id: str) -> Stage:
        """Remove a stage and every edge touching it.

        Returns:
            The removed stage.

        Raises:
            KeyError: If *stage_id* is unknown.
        """
        idx = self._require(stage_id)
        self._edges = [
            (s if s < idx else s - 1, t if t < idx else t - 1)
            for s, t in self._edges
            if s != idx and t != idx
        ]
        stage = self._stages.pop(idx)
        self._index = {st.stage_id: i for i, st in enumerate(self._stages)}
        return stage

    def get_stage(self, stage_id: str) -> Stage:
        """Return the stage with *stage_id*.

        Raises:
            KeyError: If *stage_id* is unknown.
        """
        return self._stages[self._require(stage_id)]

    @property
    def stages(self) -> list[Stage]:
        """Stages in insertion order."""
        return list(self._stages)

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._index

    def __len__(self) -> int:
        return len(self._stages)

    # --- edges ------------------------------------------------------------

    def add_edge(self, source_id: str, target_id: str) -> bool:
        """Add the edge ``source_id -> target_id``.

        Returns:
            True if the edge exists afterwards (re-adding an existing edge is
            a successful no-op). False, with the graph unchanged, for a
            self-edge or an edge that would close a cycle.

        Raises:
            KeyError: If either id is unknown.
        """
        src = self._require(source_id)
        dst = self._require(target_id)
        if (src, dst) in self._edges:
            return True
        if src == dst or self._reaches(dst, src):
            logger.debug("Rejected edge %s -> %s: would create a cycle", source_id, target_id)
            return False
        self._edges.append((src, dst))
        return True

    def remove_edge(self, source_id: str, target_id: str) -> bool:
        """Remove an edge. Returns False if it did not exist.

        Raises:
            KeyError: If either id is unknown.
        """
        edge = (self._require(source_id), self._require(target_id))
        if edge not in self._edges:
            return False
        self._edges.remove(edge)
        return True

    @property
    def edges(self) -> list[tuple[str, str]]:
        """Edges as ``(source_id, target_id)`` pairs in insertion order."""
        return [(self._stages[s].stage_id, self._stages[t].stage_id) for s, t in self._edges]

    def predecessors(self, stage_id: str) -> list[str]:
        """Ids of stages with an edge into *stage_id*, in edge insertion order."""
        idx = self._require(stage_id)
        return [self._stages[s].stage_id for s, t in self._edges if t == idx]

    def successors(self, stage_id: str) -> list[str]:
        """Ids of stages *stage_id* has an edge to, in edge insertion order."""
        idx = self._require(stage_id)
        return [self._stages[t].stage_id for s, t in self._edges if s == idx]

    def _reaches(self, start: int, goal: int) -> bool:
        # Breadth-first walk along outgoing edges, bounded by the stage count.
        seen = {start}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            if node == goal:
                return True
            for s, t in self._edges:
                if s == node and t not in seen:
                    seen.add(t)
                    queue.append(t)
        return False

    # --- ordering ---------------------------------------------------------

    def execution_order(self) -> list[str]:
        """Topological order; ready stages are taken in insertion order.

        The result is deterministic for a fixed sequence of ``add_stage`` and
        ``add_edge`` calls.
        """
        indegree = [0] * len(self._stages)
        for _, t in self._edges:
            indegree[t] += 1
        ready = [i for i, d in enumerate(indegree) if d == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(self._stages[node].stage_id)
            for s, t in self._edges:
                if s == node:
                    indegree[t] -= 1
                    if indegree[t] == 0:
                        heapq.heappush(ready, t)
        return order

    def execution_levels(self) -> list[list[str]]:
        """Group stages into layers that can run concurrently.

        Layer *k* holds every stage whose longest path from a root has *k*
        edges. Stages within a layer are mutually independent and listed in
        insertion order.
        """
        indegree = [0] * len(self._stages)
        for _, t in self._edges:
            indegree[t] += 1
        layer = [i for i, d in enumerate(indegree) if d == 0]
        levels: list[list[str]] = []
        while layer:
            levels.append([self._stages[i].stage_id for i in layer])
            nxt: list[int] = []
            for node in layer:
                for s, t in self._edges:
                    if s == node:
                        indegree[t] -= 1
                        if indegree[t] == 0:
                            nxt.append(t)
            layer = sorted(nxt)
        return levels

    def are_independent(self, stage_ids: Iterable[str]) -> bool:
        """True if no stage in *stage_ids* can reach another through edges.

        Raises:
            KeyError: If any id is unknown.
        """
        indices = [self._require(sid) for sid in stage_ids]
        for a in indices:
            for b in indices:
                if a != b and self._reaches(a, b):
                    return False
        return True

    def _require(self, stage_id: str) -> int:
        try:
            return self._index[stage_id]
        except KeyError:
            raise KeyError(f"Unknown stage id: {stage_id!r}") from None
