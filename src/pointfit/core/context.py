"""Stage Protocol, SharedContext and cancellation — core data contracts.

SharedContext is the keyed data bus of a single pipeline run. Stages write
their outputs under stage-scoped keys (``<kind>_<stageId>``) and read the
outputs of upstream stages by the same convention, so stages never need
compile-time knowledge of each other.

Retrieval never raises: a missing key and a value of the wrong type are both
reported as ``None``. Values are shared by reference; readers must treat
them as read-only because other stages may still read the original.

These types live in core/ because they carry no orchestration logic; the
engine imports them, never the reverse.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

__all__ = [
    "CancelToken",
    "ContextKey",
    "Keys",
    "SharedContext",
    "Stage",
]

T = TypeVar("T")


@dataclass(frozen=True)
class ContextKey(Generic[T]):
    """Typed handle for a SharedContext entry.

    Example::

        POINT_CLOUD = ContextKey("PointCloud", PointSet)
        key = POINT_CLOUD.scoped("import1")   # "PointCloud_import1"
        cloud = context.get(key)              # PointSet | None

    Attributes:
        name: Key string used in the store.
        value_type: Type a stored value must have to be returned by ``get``.
            ``object`` accepts anything.
    """

    name: str
    value_type: type = object

    def scoped(self, stage_id: str) -> ContextKey[T]:
        """Return the stage-scoped variant ``<name>_<stage_id>``."""
        return ContextKey(f"{self.name}_{stage_id}", self.value_type)

    def __str__(self) -> str:
        return self.name


class SharedContext:
    """Keyed, type-checked value store for one pipeline run.

    Writes are unconditional overwrites. No locking is performed: concurrent
    stages are safe only because they write disjoint stage-scoped keys.

    Example::

        context = SharedContext()
        context.set("PointCloud_import1", cloud)
        context.get("PointCloud_import1", PointSet)   # cloud
        context.get("PointCloud_import1", dict)       # None (type mismatch)
        context.get("missing")                        # None
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    @staticmethod
    def _name(key: ContextKey | str) -> str:
        return key.name if isinstance(key, ContextKey) else key

    def set(self, key: ContextKey | str, value: Any) -> None:
        """Store *value* under *key*, replacing any previous value."""
        self._data[self._name(key)] = value

    def get(self, key: ContextKey[T] | str, expected_type: type | None = None) -> Any:
        """Return the value under *key* if present and of the expected type.

        Args:
            key: A :class:`ContextKey` or a raw key string.
            expected_type: Required type for raw string keys. Ignored when
                *key* is a ContextKey (its ``value_type`` is used). ``None``
                accepts any stored value.

        Returns:
            The stored value, or ``None`` when the key is absent or the value
            is not an instance of the required type.
        """
        if isinstance(key, ContextKey):
            expected_type = key.value_type
        value = self._data.get(self._name(key))
        if value is None:
            return None
        if expected_type is not None and not isinstance(value, expected_type):
            return None
        return value

    def contains(self, key: ContextKey | str) -> bool:
        """True if *key* has been set, regardless of value type."""
        return self._name(key) in self._data

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (str, ContextKey)) and self.contains(key)

    def keys(self) -> list[str]:
        """Snapshot of the current keys in insertion order."""
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def clear(self) -> None:
        """Remove every entry. Called once at the start of a fresh run."""
        self._data.clear()


class CancelToken:
    """Cooperative cancellation flag.

    Long-running loops poll :attr:`cancelled` between units of work; nothing
    is ever interrupted mid-iteration. Setting the flag is thread-safe.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """True once :meth:`cancel` has been called."""
        return self._event.is_set()


class Keys:
    """Well-known base keys. Scope them with ``Keys.X.scoped(stage_id)``.

    Value types are resolved lazily in the modules that own them, so these
    handles accept any value; stages build typed handles from the names.
    """

    POINT_CLOUD = ContextKey("PointCloud")
    FILTERED_CLOUD = ContextKey("FilteredCloud")
    REGION = ContextKey("Region")
    MEASUREMENTS = ContextKey("Measurements", dict)
    DETECTED_CIRCLE_CLOUD = ContextKey("DetectedCircleCloud")

    @staticmethod
    def fitting(label: str) -> ContextKey:
        """Result key base for a shape label, e.g. ``"CircleFitting"``."""
        return ContextKey(f"{label}Fitting")

    @staticmethod
    def fitting_input(label: str) -> ContextKey:
        """Deferred-input key base, e.g. ``"CircleFittingInputCloud"``."""
        return ContextKey(f"{label}FittingInputCloud")


@runtime_checkable
class Stage(Protocol):
    """Structural protocol for all pipeline stages.

    Any class with a ``stage_id``, a ``parameters`` mapping and a
    ``run(context, cancel=None)`` method is a Stage; no inheritance required.
    Stages own no cross-stage state: everything they consume or produce goes
    through the context.

    Stages that need to locate upstream outputs may additionally define
    ``set_upstream(stage_ids: list[str]) -> None``; the orchestrator calls it
    with the stage's direct predecessors before each execution.

    Example::

        class MyStage:
            stage_id = "double1"
            parameters = {}

            def run(self, context, cancel=None):
                context.set(f"Doubled_{self.stage_id}", 2)
                return context
    """

    stage_id: str

    @property
    def parameters(self) -> Mapping[str, Any]:
        """Current values of the stage's exposed parameters."""
        ...

    def run(
        self, context: SharedContext, cancel: CancelToken | None = None
    ) -> SharedContext:
        """Read inputs from *context*, write outputs, and return the context.

        Args:
            context: Shared state of the current run.
            cancel: Optional cooperative cancellation token.

        Returns:
            The same context object with this stage's outputs written.

        """
        ...
