"""
Memory Field
============
Decaying scalar grid recording where a particle has recently been.

The field is stored as raw cell values times one global scale factor.
Decaying every cell by exp(-rate*dt) then only touches the scale factor, and a
deposit of `amount` adds amount / scale to the raw cells. Raw values are folded
back into the grid once the scale factor drops below RENORMALIZE_BELOW.
"""
from __future__ import annotations

from enum import StrEnum
import logging
import math
from typing import TYPE_CHECKING

import numpy as np
import numba as nb

from memorybilliards.model.grid import GridSpec

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

RENORMALIZE_BELOW = 1e-150

# Gaussian footprint is cut off at this many standard deviations
GAUSSIAN_TRUNCATE = 3.0


class DepositKernel(StrEnum):
    POINT = "point"
    GAUSSIAN = "gaussian"


class StepOrder(StrEnum):
    DECAY_THEN_DEPOSIT = "decay_then_deposit"
    DEPOSIT_THEN_DECAY = "deposit_then_decay"


# ---- JIT'd grid kernels ----

@nb.njit(cache=True)
def _splat_point(
    raw: npt.NDArray[np.float64],
    ox: float,
    oy: float,
    cell: float,
    x: float,
    y: float,
    amount: float,
) -> None:
    ny, nx = raw.shape
    col = int(math.floor((x - ox) / cell))
    row = int(math.floor((y - oy) / cell))
    col = min(max(col, 0), nx - 1)
    row = min(max(row, 0), ny - 1)
    raw[row, col] += amount


@nb.njit(cache=True)
def _splat_gaussian(
    raw: npt.NDArray[np.float64],
    ox: float,
    oy: float,
    cell: float,
    x: float,
    y: float,
    sigma_cells: float,
    amount: float,
) -> None:
    """
    Add `amount` spread over a truncated Gaussian footprint.

    Weights are evaluated at cell centres and normalized over the cells that
    exist, so the deposited mass is exactly `amount` even at the grid edge.
    """
    ny, nx = raw.shape
    reach = int(math.ceil(GAUSSIAN_TRUNCATE * sigma_cells))
    fx = (x - ox) / cell
    fy = (y - oy) / cell
    col = min(max(int(math.floor(fx)), 0), nx - 1)
    row = min(max(int(math.floor(fy)), 0), ny - 1)

    r0 = max(row - reach, 0)
    r1 = min(row + reach, ny - 1)
    c0 = max(col - reach, 0)
    c1 = min(col + reach, nx - 1)

    inv_two_var = 1.0 / (2.0 * sigma_cells * sigma_cells)
    cutoff = GAUSSIAN_TRUNCATE * GAUSSIAN_TRUNCATE * sigma_cells * sigma_cells
    weights = np.zeros((r1 - r0 + 1, c1 - c0 + 1))
    total = 0.0
    for r in range(r0, r1 + 1):
        dy = r + 0.5 - fy
        for c in range(c0, c1 + 1):
            dx = c + 0.5 - fx
            dist_sq = dx * dx + dy * dy
            if dist_sq > cutoff:
                continue
            w = math.exp(-dist_sq * inv_two_var)
            weights[r - r0, c - c0] = w
            total += w

    if total <= 0.0:
        raw[row, col] += amount
        return

    scale = amount / total
    for r in range(r0, r1 + 1):
        for c in range(c0, c1 + 1):
            raw[r, c] += weights[r - r0, c - c0] * scale


@nb.njit(cache=True)
def _cell_gradient(raw: npt.NDArray[np.float64], row: int, col: int, cell: float) -> tuple[float, float]:
    """Central differences at a cell centre; one-sided on the border rows/columns."""
    ny, nx = raw.shape
    if nx == 1:
        gx = 0.0
    elif col == 0:
        gx = (raw[row, 1] - raw[row, 0]) / cell
    elif col == nx - 1:
        gx = (raw[row, nx - 1] - raw[row, nx - 2]) / cell
    else:
        gx = (raw[row, col + 1] - raw[row, col - 1]) / (2.0 * cell)

    if ny == 1:
        gy = 0.0
    elif row == 0:
        gy = (raw[1, col] - raw[0, col]) / cell
    elif row == ny - 1:
        gy = (raw[ny - 1, col] - raw[ny - 2, col]) / cell
    else:
        gy = (raw[row + 1, col] - raw[row - 1, col]) / (2.0 * cell)
    return gx, gy


@nb.njit(cache=True)
def _bilinear_gradient(
    raw: npt.NDArray[np.float64],
    ox: float,
    oy: float,
    cell: float,
    x: float,
    y: float,
) -> tuple[float, float]:
    """Cell-centre gradients bilinearly interpolated to (x, y); indices are clamped."""
    ny, nx = raw.shape
    fx = (x - ox) / cell - 0.5
    fy = (y - oy) / cell - 0.5

    c0 = int(math.floor(fx))
    r0 = int(math.floor(fy))
    tx = fx - c0
    ty = fy - r0
    if c0 < 0:
        c0, tx = 0, 0.0
    elif c0 >= nx - 1:
        c0, tx = nx - 1, 0.0
    if r0 < 0:
        r0, ty = 0, 0.0
    elif r0 >= ny - 1:
        r0, ty = ny - 1, 0.0
    c1 = min(c0 + 1, nx - 1)
    r1 = min(r0 + 1, ny - 1)

    g00x, g00y = _cell_gradient(raw, r0, c0, cell)
    g01x, g01y = _cell_gradient(raw, r0, c1, cell)
    g10x, g10y = _cell_gradient(raw, r1, c0, cell)
    g11x, g11y = _cell_gradient(raw, r1, c1, cell)

    w00 = (1.0 - tx) * (1.0 - ty)
    w01 = tx * (1.0 - ty)
    w10 = (1.0 - tx) * ty
    w11 = tx * ty
    gx = w00 * g00x + w01 * g01x + w10 * g10x + w11 * g11x
    gy = w00 * g00y + w01 * g01y + w10 * g10y + w11 * g11y
    return gx, gy


class MemoryField:
    """
    Decaying, non-negative visitation memory on a uniform grid.

    Args:
        grid: Cell layout over the table.
        kernel: Deposit footprint, "point" (nearest cell) or "gaussian".
        kernel_radius: Gaussian standard deviation in cells.
        order: Order in which `step` applies decay and deposit.
    """

    def __init__(
        self,
        grid: GridSpec,
        kernel: DepositKernel | str = DepositKernel.GAUSSIAN,
        kernel_radius: float = 1.5,
        order: StepOrder | str = StepOrder.DECAY_THEN_DEPOSIT,
    ) -> None:
        self.grid = grid
        self.kernel = DepositKernel(kernel)
        self.order = StepOrder(order)
        if self.kernel == DepositKernel.GAUSSIAN and not (kernel_radius > 0.0 and math.isfinite(kernel_radius)):
            raise ValueError(f"Gaussian kernel radius must be positive and finite, got {kernel_radius}.")
        self.kernel_radius = float(kernel_radius)

        self._raw = np.zeros(grid.shape, dtype=np.float64)
        self._scale = 1.0

    def __repr__(self) -> str:
        return (f"MemoryField(shape={self.grid.shape}, kernel={self.kernel}, "
                f"kernel_radius={self.kernel_radius}, order={self.order})")

    @property
    def values(self) -> npt.NDArray[np.float64]:
        """Current cell intensities (a copy)."""
        return self._raw * self._scale

    def total(self) -> float:
        return float(self._raw.sum()) * self._scale

    def max(self) -> float:
        return float(self._raw.max()) * self._scale

    def deposit(self, position: tuple[float, float], amount: float) -> None:
        """Add `amount` (>= 0) around `position` with the configured kernel."""
        if not (amount >= 0.0 and math.isfinite(amount)):
            raise ValueError(f"Deposit amount must be finite and >= 0, got {amount}.")
        if amount == 0.0:
            return
        g = self.grid
        raw_amount = amount / self._scale
        if self.kernel == DepositKernel.POINT:
            _splat_point(self._raw, g.origin_x, g.origin_y, g.cell_size, position[0], position[1], raw_amount)
        else:
            _splat_gaussian(
                self._raw, g.origin_x, g.origin_y, g.cell_size,
                position[0], position[1], self.kernel_radius, raw_amount,
            )

    def decay(self, rate: float, dt: float) -> None:
        """Multiply every cell by exp(-rate * dt)."""
        if rate < 0.0 or dt < 0.0:
            raise ValueError(f"Decay rate and time step must be >= 0, got rate={rate}, dt={dt}.")
        factor = math.exp(-rate * dt)
        if factor == 1.0:
            return
        if factor == 0.0:
            self.reset()
            return

        self._scale *= factor
        if self._scale < RENORMALIZE_BELOW:
            logger.debug(f"Renormalizing memory field (scale {self._scale:.3g}).")
            self._raw *= self._scale
            self._scale = 1.0

    def step(self, position: tuple[float, float], amount: float, rate: float, dt: float) -> None:
        """One memory update at `position` in the configured decay/deposit order."""
        if self.order == StepOrder.DECAY_THEN_DEPOSIT:
            self.decay(rate, dt)
            self.deposit(position, amount)
        else:
            self.deposit(position, amount)
            self.decay(rate, dt)

    def gradient(self, position: tuple[float, float]) -> tuple[float, float]:
        """
        Field gradient at `position`.

        Central differences at the four surrounding cell centres, bilinearly
        interpolated. Indices are clamped at the grid edge, so positions
        outside the grid see the gradient of the nearest border cell.
        """
        g = self.grid
        gx, gy = _bilinear_gradient(self._raw, g.origin_x, g.origin_y, g.cell_size, position[0], position[1])
        return gx * self._scale, gy * self._scale

    def reset(self) -> None:
        self._raw.fill(0.0)
        self._scale = 1.0

    def copy(self) -> MemoryField:
        clone = MemoryField(self.grid, self.kernel, self.kernel_radius, self.order)
        clone._raw = self._raw.copy()
        clone._scale = self._scale
        return clone

    def restore(self, other: MemoryField) -> None:
        """Overwrite this field's contents with those of `other` (same grid)."""
        if other.grid != self.grid:
            raise ValueError("Cannot restore a memory field from a different grid.")
        np.copyto(self._raw, other._raw)
        self._scale = other._scale
