"""
Error types raised by the simulation.

A malformed table is a configuration problem and surfaces as a ValueError
subclass. Failures during a trajectory are SimulationErrors; they carry the
last valid particle state so a failed run can be diagnosed.
"""
from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from memorybilliards.solvers.integrator import Particle


class BoundaryError(ValueError):
    """The table boundary is open, self-intersecting or has no area."""


class SimulationError(RuntimeError):
    """A single trajectory cannot be continued."""

    def __init__(self, message: str, last_state: Optional[Particle] = None, step: Optional[int] = None) -> None:
        super().__init__(message)
        self.last_state = last_state
        self.step = step

    def __str__(self) -> str:
        text = super().__str__()
        if self.last_state is not None:
            text += f" (step {self.step}, last valid state {self.last_state})"
        return text


class GeometryError(SimulationError):
    """No boundary crossing was found, or the particle left the table."""


class NonFiniteStateError(SimulationError):
    """Position or direction became NaN or infinite."""
