"""Frozen dataclass config hierarchy for fitting pipelines.

Loading precedence: defaults -> YAML file -> overrides -> freeze.

Each shape section mirrors the parameters of its fitting stage and is
validated on construction, so a bad value fails at load time rather than
when the stage is built.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from pointfit.core.stages import FitParameters, create_stage

__all__ = [
    "CircleConfig",
    "CylinderConfig",
    "LineConfig",
    "OrchestratorConfig",
    "PipelineConfig",
    "PlaneConfig",
    "SphereConfig",
    "build_stage",
    "load_config",
    "serialize_config",
]

_SECTIONS = ("circle", "line", "plane", "sphere", "cylinder", "orchestrator")


def _check_fit_section(section: Any) -> None:
    FitParameters(**dataclasses.asdict(section))


# ---------------------------------------------------------------------------
# Shape-specific config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CircleConfig:
    """Config for circle fitting stages.

    Attributes:
        max_iterations: RANSAC iteration budget.
        distance_threshold: Inlier distance in the projection plane.
        min_inlier_ratio: Required inlier fraction.
        min_radius: Smallest accepted radius.
        max_radius: Largest accepted radius.
        auto_run: Fit during the run instead of on ``detect()``.
    """

    max_iterations: int = 2000
    distance_threshold: float = 5.0
    min_inlier_ratio: float = 0.15
    min_radius: float = 5.0
    max_radius: float = 200.0
    auto_run: bool = False

    def __post_init__(self) -> None:
        _check_fit_section(self)


@dataclass(frozen=True)
class LineConfig:
    """Config for line fitting stages."""

    max_iterations: int = 1000
    distance_threshold: float = 1.0
    min_inlier_ratio: float = 0.3
    auto_run: bool = True

    def __post_init__(self) -> None:
        _check_fit_section(self)


@dataclass(frozen=True)
class PlaneConfig:
    """Config for plane fitting stages."""

    max_iterations: int = 1000
    distance_threshold: float = 1.0
    min_inlier_ratio: float = 0.3
    auto_run: bool = True

    def __post_init__(self) -> None:
        _check_fit_section(self)


@dataclass(frozen=True)
class SphereConfig:
    """Config for sphere fitting stages."""

    max_iterations: int = 1000
    distance_threshold: float = 1.0
    min_inlier_ratio: float = 0.3
    min_radius: float = 1.0
    max_radius: float = 500.0
    auto_run: bool = True

    def __post_init__(self) -> None:
        _check_fit_section(self)


@dataclass(frozen=True)
class CylinderConfig:
    """Config for cylinder fitting stages."""

    max_iterations: int = 2000
    distance_threshold: float = 2.0
    min_inlier_ratio: float = 0.2
    min_radius: float = 1.0
    max_radius: float = 500.0
    auto_run: bool = True

    def __post_init__(self) -> None:
        _check_fit_section(self)


@dataclass(frozen=True)
class OrchestratorConfig:
    """Config for the orchestrator.

    Attributes:
        max_workers: Fan-out thread pool size. None lets the pool decide.
        clear_context: Clear the context at the start of full-graph runs.
    """

    max_workers: int | None = None
    clear_context: bool = True

    def __post_init__(self) -> None:
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level frozen config for a pipeline run.

    Attributes:
        run_id: Run identifier (timestamp-based by default).
        seed: Sampling seed handed to every fitting stage. None keeps the
            fits non-deterministic.
        circle: Circle fitting config.
        line: Line fitting config.
        plane: Plane fitting config.
        sphere: Sphere fitting config.
        cylinder: Cylinder fitting config.
        orchestrator: Orchestrator config.
    """

    run_id: str = ""
    seed: int | None = None
    circle: CircleConfig = field(default_factory=CircleConfig)
    line: LineConfig = field(default_factory=LineConfig)
    plane: PlaneConfig = field(default_factory=PlaneConfig)
    sphere: SphereConfig = field(default_factory=SphereConfig)
    cylinder: CylinderConfig = field(default_factory=CylinderConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)


_SECTION_TYPES: dict[str, type] = {
    "circle": CircleConfig,
    "line": LineConfig,
    "plane": PlaneConfig,
    "sphere": SphereConfig,
    "cylinder": CylinderConfig,
    "orchestrator": OrchestratorConfig,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _generate_run_id() -> str:
    """Return a run id of the form ``run_YYYYMMDD_HHMMSS``."""
    return f"run_{datetime.now():%Y%m%d_%H%M%S}"


def _flatten(nested: dict[str, Any]) -> dict[str, Any]:
    """Flatten one level of nesting to dot-notation keys.

    ``{"circle": {"max_iterations": 10}}`` and ``{"circle.max_iterations": 10}``
    both become the latter.
    """
    flat: dict[str, Any] = {}
    for key, value in nested.items():
        if isinstance(value, dict):
            for subkey, subvalue in value.items():
                flat[f"{key}.{subkey}"] = subvalue
        else:
            flat[key] = value
    return flat


def _bucket(flat: dict[str, Any], buckets: dict[str, dict[str, Any]]) -> None:
    """Merge dot-notation keys into per-section buckets in place.

    Raises:
        ValueError: If a dotted key names an unknown section.
    """
    for key, value in flat.items():
        section, dot, name = key.partition(".")
        if not dot:
            buckets["__top__"][key] = value
        elif section in buckets:
            buckets[section][name] = value
        else:
            raise ValueError(
                f"Unknown config section {section!r}. Valid sections: {list(_SECTIONS)}"
            )


# ---------------------------------------------------------------------------
# Public factory
# ---------------------------------------------------------------------------


def load_config(
    yaml_path: str | Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> PipelineConfig:
    """Construct a frozen :class:`PipelineConfig` using layered overrides.

    Precedence, lowest first: dataclass defaults, the YAML file, *overrides*,
    then *run_id*. Overrides may use dot-notation keys
    (``"plane.distance_threshold"``) or nested dicts; YAML files use nested
    dicts.

    Args:
        yaml_path: Optional path to a YAML config file.
        overrides: Optional overrides (highest precedence).
        run_id: Explicit run identifier. Auto-generated if not provided.

    Returns:
        Frozen config with all layers applied.

    Raises:
        ValueError: If a section is unknown or a value is out of range.
        TypeError: If a section receives an unknown field.
    """
    buckets: dict[str, dict[str, Any]] = {name: {} for name in ("__top__", *_SECTIONS)}

    if yaml_path is not None:
        with Path(yaml_path).open() as fh:
            raw: dict[str, Any] = yaml.safe_load(fh) or {}
        _bucket(_flatten(raw), buckets)

    if overrides is not None:
        _bucket(_flatten(overrides), buckets)

    top = buckets["__top__"]
    resolved_run_id = run_id or top.pop("run_id", None) or _generate_run_id()
    sections = {name: _SECTION_TYPES[name](**buckets[name]) for name in _SECTIONS}
    return PipelineConfig(run_id=resolved_run_id, **sections, **top)


def build_stage(kind: str, stage_id: str, config: PipelineConfig, **params: Any) -> Any:
    """Create a registered stage, filling fitting parameters from *config*.

    Fitting kinds (``"<shape>_fitting"``) take their section's values and the
    config seed; other kinds receive only *params*. Explicit *params* win
    over config values.

    Raises:
        ValueError: If *kind* is not registered.
    """
    shape, _, suffix = kind.partition("_")
    if suffix == "fitting" and shape in _SECTION_TYPES:
        merged = dataclasses.asdict(getattr(config, shape))
        merged["seed"] = config.seed
        merged.update(params)
        return create_stage(kind, stage_id, **merged)
    return create_stage(kind, stage_id, **params)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_config(config: PipelineConfig) -> str:
    """Serialize *config* to a YAML string that :func:`load_config` reads back."""
    return yaml.dump(dataclasses.asdict(config), default_flow_style=False, sort_keys=True)
