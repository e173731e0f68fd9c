"""
Run Configuration
=================
Dataclasses describing one simulation run, loaded from and saved to JSON.

Every section has a `validate()` that raises ValueError on bad input;
`SimulationConfig.validate()` checks them all. Unknown keys in a JSON file
are rejected so typos do not silently fall back to defaults.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields
import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Optional

from memorybilliards.model.accumulator import SplatMode
from memorybilliards.model.memory_field import DepositKernel, StepOrder
from memorybilliards.model.tables import TABLE_CATALOG, TableOutline, TableShape

logger = logging.getLogger(__name__)

MEMORY_MODES = ("per_trajectory", "shared")
WEIGHTINGS = ("steps", "time")
SCALES = ("log", "sqrt", "linear")


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValueError(message)


def _positive(value: float) -> bool:
    return value > 0.0 and math.isfinite(value)


@dataclass
class TableConfig:
    """Either a catalog `preset` or an explicit shape with its dimensions/vertices."""
    preset: Optional[str] = "unit-square"
    shape: Optional[str] = None
    dimensions: list[float] = field(default_factory=list)
    vertices: Optional[list[list[float]]] = None

    def validate(self) -> None:
        if self.shape is None:
            _require(self.preset is not None, "Table needs either a preset or a shape.")
            _require(
                self.preset in TABLE_CATALOG,
                f"Unknown table preset '{self.preset}'. Available: {', '.join(TABLE_CATALOG)}.",
            )
        else:
            try:
                TableShape(self.shape)
            except ValueError:
                raise ValueError(
                    f"Unknown table shape '{self.shape}'. Available: {', '.join(s.value for s in TableShape)}."
                ) from None
        # Dimension checks live in TableOutline
        self.outline()

    def outline(self) -> TableOutline:
        if self.shape is None:
            return TABLE_CATALOG[self.preset]
        vertices = tuple(tuple(v) for v in self.vertices) if self.vertices is not None else None
        return TableOutline(shape=TableShape(self.shape), dimensions=tuple(self.dimensions), vertices=vertices)


@dataclass
class MemoryConfig:
    decay_rate: float = 1.0
    deposit_amount: float = 1.0
    kernel: str = DepositKernel.GAUSSIAN.value
    kernel_radius: float = 1.5
    # Cells along the longer side of the table's bounding box
    resolution: int = 128
    order: str = StepOrder.DECAY_THEN_DEPOSIT.value
    mode: str = "per_trajectory"
    gradient_floor: float = 1e-9

    def validate(self) -> None:
        _require(self.decay_rate >= 0.0 and math.isfinite(self.decay_rate),
                 f"memory.decay_rate must be finite and >= 0, got {self.decay_rate}.")
        _require(self.deposit_amount >= 0.0 and math.isfinite(self.deposit_amount),
                 f"memory.deposit_amount must be finite and >= 0, got {self.deposit_amount}.")
        _require(self.kernel in {k.value for k in DepositKernel},
                 f"memory.kernel must be one of {[k.value for k in DepositKernel]}, got '{self.kernel}'.")
        if self.kernel == DepositKernel.GAUSSIAN:
            _require(_positive(self.kernel_radius),
                     f"memory.kernel_radius must be positive, got {self.kernel_radius}.")
        _require(isinstance(self.resolution, int) and self.resolution >= 2,
                 f"memory.resolution must be an integer >= 2, got {self.resolution}.")
        _require(self.order in {o.value for o in StepOrder},
                 f"memory.order must be one of {[o.value for o in StepOrder]}, got '{self.order}'.")
        _require(self.mode in MEMORY_MODES, f"memory.mode must be one of {list(MEMORY_MODES)}, got '{self.mode}'.")
        _require(self.gradient_floor >= 0.0, f"memory.gradient_floor must be >= 0, got {self.gradient_floor}.")


@dataclass
class IntegratorConfig:
    step_size: float = 1e-3
    bias: float = 0.0
    max_steps: int = 1_000_000
    max_time: Optional[float] = None
    max_wall_seconds: Optional[float] = None
    snap_epsilon: float = 1e-9
    weighting: str = "steps"
    max_collisions_per_step: int = 64
    check_containment: bool = False

    def validate(self) -> None:
        _require(_positive(self.step_size), f"integrator.step_size must be positive, got {self.step_size}.")
        _require(self.bias >= 0.0 and math.isfinite(self.bias),
                 f"integrator.bias must be finite and >= 0, got {self.bias}.")
        _require(isinstance(self.max_steps, int) and self.max_steps >= 1,
                 f"integrator.max_steps must be a positive integer, got {self.max_steps}.")
        if self.max_time is not None:
            _require(_positive(self.max_time), f"integrator.max_time must be positive, got {self.max_time}.")
        if self.max_wall_seconds is not None:
            _require(_positive(self.max_wall_seconds),
                     f"integrator.max_wall_seconds must be positive, got {self.max_wall_seconds}.")
        _require(_positive(self.snap_epsilon), f"integrator.snap_epsilon must be positive, got {self.snap_epsilon}.")
        _require(self.snap_epsilon < self.step_size,
                 f"integrator.snap_epsilon ({self.snap_epsilon}) must be smaller than step_size ({self.step_size}).")
        _require(self.weighting in WEIGHTINGS,
                 f"integrator.weighting must be one of {list(WEIGHTINGS)}, got '{self.weighting}'.")
        _require(self.max_collisions_per_step >= 1,
                 f"integrator.max_collisions_per_step must be >= 1, got {self.max_collisions_per_step}.")


@dataclass
class TrapConfig:
    enabled: bool = True
    window: int = 5000
    radius: float = 0.05
    check_interval: int = 100

    def validate(self) -> None:
        _require(self.window >= 2, f"trap.window must be >= 2, got {self.window}.")
        _require(_positive(self.radius), f"trap.radius must be positive, got {self.radius}.")
        _require(self.check_interval >= 1, f"trap.check_interval must be >= 1, got {self.check_interval}.")


@dataclass
class AccumulatorConfig:
    width: int = 1024
    height: int = 1024
    splat: str = SplatMode.NEAREST.value
    # Fraction of the table extent added around it
    margin: float = 0.02

    def validate(self) -> None:
        _require(self.width >= 1 and self.height >= 1,
                 f"accumulator size must be at least 1 x 1, got {self.width} x {self.height}.")
        _require(self.splat in {s.value for s in SplatMode},
                 f"accumulator.splat must be one of {[s.value for s in SplatMode]}, got '{self.splat}'.")
        _require(0.0 <= self.margin < 1.0, f"accumulator.margin must be in [0, 1), got {self.margin}.")


@dataclass
class StartConfig:
    """Fixed start; a missing position or angle is drawn at random."""
    position: Optional[list[float]] = None
    angle_deg: Optional[float] = None

    def validate(self) -> None:
        if self.position is not None:
            _require(len(self.position) == 2 and all(math.isfinite(v) for v in self.position),
                     f"run.start.position must be two finite numbers, got {self.position}.")
        if self.angle_deg is not None:
            _require(math.isfinite(self.angle_deg), f"run.start.angle_deg must be finite, got {self.angle_deg}.")


@dataclass
class RunConfig:
    trajectories: int = 1
    seed: int = 0
    workers: int = 1
    start: StartConfig = field(default_factory=StartConfig)

    def validate(self) -> None:
        _require(self.trajectories >= 1, f"run.trajectories must be >= 1, got {self.trajectories}.")
        _require(self.seed >= 0, f"run.seed must be >= 0, got {self.seed}.")
        _require(self.workers >= 1, f"run.workers must be >= 1, got {self.workers}.")
        self.start.validate()


@dataclass
class OutputConfig:
    path: Optional[str] = "density.tiff"
    scale: str = "log"
    smooth_sigma: float = 0.0
    upsample: int = 1
    checkpoint: Optional[str] = None
    preview: Optional[str] = None

    def validate(self) -> None:
        _require(self.scale in SCALES, f"output.scale must be one of {list(SCALES)}, got '{self.scale}'.")
        _require(self.smooth_sigma >= 0.0, f"output.smooth_sigma must be >= 0, got {self.smooth_sigma}.")
        _require(isinstance(self.upsample, int) and self.upsample >= 1,
                 f"output.upsample must be a positive integer, got {self.upsample}.")


_SECTIONS = {
    "table": TableConfig,
    "memory": MemoryConfig,
    "integrator": IntegratorConfig,
    "trap": TrapConfig,
    "accumulator": AccumulatorConfig,
    "run": RunConfig,
    "output": OutputConfig,
}


def _build_section(cls, data: Dict[str, Any], name: str):
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown key(s) in '{name}': {', '.join(sorted(unknown))}.")
    kwargs = dict(data)
    if cls is RunConfig and isinstance(kwargs.get("start"), dict):
        kwargs["start"] = _build_section(StartConfig, kwargs["start"], "run.start")
    return cls(**kwargs)


@dataclass
class SimulationConfig:
    table: TableConfig = field(default_factory=TableConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    integrator: IntegratorConfig = field(default_factory=IntegratorConfig)
    trap: TrapConfig = field(default_factory=TrapConfig)
    accumulator: AccumulatorConfig = field(default_factory=AccumulatorConfig)
    run: RunConfig = field(default_factory=RunConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def validate(self) -> None:
        for name in _SECTIONS:
            getattr(self, name).validate()

    def table_outline(self) -> TableOutline:
        return self.table.outline()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> SimulationConfig:
        unknown = set(data) - set(_SECTIONS)
        if unknown:
            raise ValueError(f"Unknown configuration section(s): {', '.join(sorted(unknown))}.")
        sections = {
            name: _build_section(cls, data[name], name)
            for name, cls in _SECTIONS.items()
            if name in data
        }
        config = SimulationConfig(**sections)
        config.validate()
        return config

    def to_json(self, path: str | Path) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.debug(f"Configuration written to {path}")

    @staticmethod
    def from_json(path: str | Path) -> SimulationConfig:
        logger.info(f"Loading configuration from: {path}")
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return SimulationConfig.from_dict(data)
