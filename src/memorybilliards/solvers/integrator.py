"""
Trajectory Integrator
=====================
Advances one particle through free flight, wall collisions and memory
deflection until it is trapped or its budget runs out.

Every sub-step of length `step_size` (unit speed, so simulated time equals path
length) does, in order:

1. memory step at the current position (decay and deposit),
2. record the position in the accumulator,
3. bend the direction away from the memory gradient,
4. move, reflecting off the boundary as often as needed.

The integrator keeps a lower bound on the distance to the boundary (the
clearance). While the clearance exceeds the length still to travel, no
intersection query is needed.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import logging
import math
import time
from typing import Callable, Optional, TYPE_CHECKING

import numpy as np

from memorybilliards.errors import GeometryError, NonFiniteStateError
from memorybilliards.model.boundary import CollisionEvent, reflect

if TYPE_CHECKING:
    from memorybilliards.solvers.simulation import SimulationContext

logger = logging.getLogger(__name__)


class TrajectoryState(StrEnum):
    FLIGHT = "flight"
    COLLISION = "collision"
    TRAPPED = "trapped"
    DONE = "done"


@dataclass
class Particle:
    """Position and unit direction of a point particle."""
    x: float
    y: float
    dx: float
    dy: float

    @classmethod
    def from_angle(cls, position: tuple[float, float], angle_rad: float) -> Particle:
        return cls(float(position[0]), float(position[1]), math.cos(angle_rad), math.sin(angle_rad))

    @property
    def position(self) -> tuple[float, float]:
        return self.x, self.y

    @property
    def direction(self) -> tuple[float, float]:
        return self.dx, self.dy

    def is_finite(self) -> bool:
        return (math.isfinite(self.x) and math.isfinite(self.y)
                and math.isfinite(self.dx) and math.isfinite(self.dy))

    def copy(self) -> Particle:
        return Particle(self.x, self.y, self.dx, self.dy)


@dataclass
class TrajectoryResult:
    """
    Summary of one trajectory.

    `outcome` is TRAPPED or DONE for completed trajectories and None when the
    trajectory failed; `error` then holds the failure message.
    """
    index: int
    outcome: Optional[TrajectoryState]
    steps: int = 0
    time: float = 0.0
    collisions: int = 0
    particle: Optional[Particle] = None
    trap_center: Optional[tuple[float, float]] = None
    trap_extent: Optional[float] = None
    error: Optional[str] = None

    @property
    def trapped(self) -> bool:
        return self.outcome == TrajectoryState.TRAPPED

    @property
    def failed(self) -> bool:
        return self.error is not None


class TrapDetector:
    """
    Ring buffer of the last `window` positions.

    The trajectory counts as trapped once the buffer is full and the
    half-diagonal of its bounding box is below `radius`.
    """

    def __init__(self, window: int, radius: float) -> None:
        self.window = window
        self.radius = radius
        self._xs = np.empty(window)
        self._ys = np.empty(window)
        self._head = 0
        self._count = 0

    @property
    def is_full(self) -> bool:
        return self._count >= self.window

    def push(self, x: float, y: float) -> None:
        self._xs[self._head] = x
        self._ys[self._head] = y
        self._head = (self._head + 1) % self.window
        if self._count < self.window:
            self._count += 1

    def extent(self) -> float:
        n = self._count
        if n == 0:
            return 0.0
        xs = self._xs[:n]
        ys = self._ys[:n]
        return 0.5 * math.hypot(float(xs.max() - xs.min()), float(ys.max() - ys.min()))

    def center(self) -> tuple[float, float]:
        n = self._count
        xs = self._xs[:n]
        ys = self._ys[:n]
        return 0.5 * float(xs.max() + xs.min()), 0.5 * float(ys.max() + ys.min())

    def is_trapped(self) -> bool:
        return self.is_full and self.extent() < self.radius

    def clear(self) -> None:
        self._head = 0
        self._count = 0


class Integrator:
    """
    Runs trajectories inside one simulation context.

    Args:
        context: Boundary, memory field, accumulator and configuration.
        on_collision: Optional observer called as on_collision(event, particle)
            after every reflection, with the particle already snapped inside.
        on_step: Optional observer called as on_step(particle, step) after
            every completed sub-step.
    """

    def __init__(
        self,
        context: SimulationContext,
        on_collision: Optional[Callable[[CollisionEvent, Particle], None]] = None,
        on_step: Optional[Callable[[Particle, int], None]] = None,
    ) -> None:
        self.context = context
        self.on_collision = on_collision
        self.on_step = on_step
        self.state = TrajectoryState.FLIGHT
        self._clearance = 0.0

    def run(self, particle: Particle, index: int = 0) -> TrajectoryResult:
        """
        Integrate one trajectory until it is trapped or a budget is exhausted.

        The particle is not modified; the final state is returned in the result.

        Raises:
            GeometryError: The particle starts outside the table, no crossing is
                found, or too many collisions happen in one sub-step.
            NonFiniteStateError: Position or direction stops being finite.
        """
        ctx = self.context
        boundary = ctx.boundary
        memory = ctx.field
        accumulator = ctx.accumulator
        icfg = ctx.config.integrator
        mcfg = ctx.config.memory
        tcfg = ctx.config.trap

        h = icfg.step_size
        weight = 1.0 if icfg.weighting == "steps" else h
        bias = icfg.bias
        deposit = mcfg.deposit_amount
        decay_rate = mcfg.decay_rate
        gradient_floor = mcfg.gradient_floor * deposit / memory.grid.cell_size
        check_interval = tcfg.check_interval
        containment_tolerance = 2.0 * icfg.snap_epsilon

        p = particle.copy()
        if not p.is_finite():
            raise NonFiniteStateError("Initial particle state is not finite.", last_state=particle.copy(), step=0)
        norm = math.hypot(p.dx, p.dy)
        if norm == 0.0:
            raise ValueError("Initial direction must be nonzero.")
        p.dx /= norm
        p.dy /= norm

        self._clearance = boundary.distance_to(p.position)
        if self._clearance <= 0.0 or not boundary.contains(p.position):
            raise GeometryError(f"Start position {p.position} is not strictly inside the table.",
                                last_state=p.copy(), step=0)

        trap = TrapDetector(tcfg.window, tcfg.radius) if tcfg.enabled else None
        wall_start = time.perf_counter()
        steps = 0
        collisions = 0
        self.state = TrajectoryState.FLIGHT
        outcome = TrajectoryState.DONE

        while True:
            if steps >= icfg.max_steps:
                break
            if icfg.max_time is not None and steps * h >= icfg.max_time:
                break

            x, y, dx, dy = p.x, p.y, p.dx, p.dy
            memory.step((x, y), deposit, decay_rate, h)
            accumulator.record((x, y), weight)

            if bias > 0.0:
                gx, gy = memory.gradient((x, y))
                g = math.hypot(gx, gy)
                if g > gradient_floor:
                    bx = p.dx - bias * gx / g
                    by = p.dy - bias * gy / g
                    b = math.hypot(bx, by)
                    if not (b > 0.0 and math.isfinite(b)):
                        raise NonFiniteStateError(
                            f"Direction degenerated while bending (gradient ({gx}, {gy})).",
                            last_state=Particle(x, y, dx, dy), step=steps,
                        )
                    p.dx = bx / b
                    p.dy = by / b

            collisions += self._advance(p, h, steps)

            if not p.is_finite():
                raise NonFiniteStateError("Particle state became non-finite.",
                                          last_state=Particle(x, y, dx, dy), step=steps)

            steps += 1
            if trap is not None:
                trap.push(p.x, p.y)
            if self.on_step is not None:
                self.on_step(p, steps)

            if steps % check_interval == 0:
                if trap is not None and trap.is_trapped():
                    outcome = TrajectoryState.TRAPPED
                    break
                if icfg.max_wall_seconds is not None and time.perf_counter() - wall_start > icfg.max_wall_seconds:
                    logger.debug(f"Trajectory {index}: wall-clock budget exhausted after {steps} steps.")
                    break
                if icfg.check_containment and not boundary.contains(p.position, tolerance=containment_tolerance):
                    raise GeometryError(f"Particle left the table at {p.position}.",
                                        last_state=Particle(x, y, dx, dy), step=steps)

        self.state = outcome
        result = TrajectoryResult(
            index=index,
            outcome=outcome,
            steps=steps,
            time=steps * h,
            collisions=collisions,
            particle=p,
        )
        if outcome == TrajectoryState.TRAPPED:
            result.trap_center = trap.center()
            result.trap_extent = trap.extent()
        logger.debug(
            f"Trajectory {index}: {outcome} after {steps} steps, {collisions} collisions, "
            f"final position ({p.x:.6g}, {p.y:.6g})."
        )
        return result

    def _advance(self, p: Particle, length: float, step: int) -> int:
        """
        Move `p` by `length` along its direction, reflecting off the boundary.

        Returns:
            Number of collisions during the move.
        """
        ctx = self.context
        boundary = ctx.boundary
        icfg = ctx.config.integrator
        eps = icfg.snap_epsilon

        remaining = length
        hits = 0
        while True:
            # The running clearance accumulates rounding; keep it at least eps clear of the wall
            if self._clearance > remaining + eps:
                p.x += remaining * p.dx
                p.y += remaining * p.dy
                self._clearance -= remaining
                return hits

            event = boundary.intersect(p.position, p.direction)
            if event is None:
                raise GeometryError(
                    f"No boundary crossing found from {p.position} along {p.direction}.",
                    last_state=p.copy(), step=step,
                )

            # A move ending within eps of the wall counts as a hit so the particle never lands on it
            if event.distance > remaining + eps:
                p.x += remaining * p.dx
                p.y += remaining * p.dy
                self._clearance = boundary.distance_to(p.position)
                return hits

            hits += 1
            if hits > icfg.max_collisions_per_step:
                raise GeometryError(
                    f"More than {icfg.max_collisions_per_step} collisions in one sub-step.",
                    last_state=p.copy(), step=step,
                )

            self.state = TrajectoryState.COLLISION
            px, py = event.point
            ox, oy = event.offset_normal
            p.dx, p.dy = reflect(p.direction, event.normal)
            p.x = px - eps * ox
            p.y = py - eps * oy
            remaining -= event.distance
            self._clearance = boundary.distance_to(p.position)
            if self.on_collision is not None:
                self.on_collision(event, p)
            self.state = TrajectoryState.FLIGHT
            if remaining <= 0.0:
                return hits
