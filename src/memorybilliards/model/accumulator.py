"""
Density Accumulator
===================
Visitation grid summed with Neumaier compensation.

Each cell keeps a running sum and a running compensation term, so adding
billions of small weights to a large total does not lose them to rounding.
The read-only snapshot is sum + compensation.
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


class SplatMode(StrEnum):
    NEAREST = "nearest"
    BILINEAR = "bilinear"


# No fastmath here: it would let LLVM cancel the compensation terms.

@nb.njit(cache=True)
def _neumaier_add(
    values: npt.NDArray[np.float64],
    comp: npt.NDArray[np.float64],
    row: int,
    col: int,
    x: float,
) -> None:
    s = values[row, col]
    t = s + x
    if abs(s) >= abs(x):
        comp[row, col] += (s - t) + x
    else:
        comp[row, col] += (x - t) + s
    values[row, col] = t


@nb.njit(cache=True)
def _record_nearest(
    values: npt.NDArray[np.float64],
    comp: npt.NDArray[np.float64],
    ox: float,
    oy: float,
    cell: float,
    x: float,
    y: float,
    weight: float,
) -> None:
    ny, nx = values.shape
    col = min(max(int(math.floor((x - ox) / cell)), 0), nx - 1)
    row = min(max(int(math.floor((y - oy) / cell)), 0), ny - 1)
    _neumaier_add(values, comp, row, col, weight)


@nb.njit(cache=True)
def _record_bilinear(
    values: npt.NDArray[np.float64],
    comp: npt.NDArray[np.float64],
    ox: float,
    oy: float,
    cell: float,
    x: float,
    y: float,
    weight: float,
) -> None:
    """Spread `weight` over the four cell centres around (x, y)."""
    ny, nx = values.shape
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

    w00 = weight * (1.0 - tx) * (1.0 - ty)
    w01 = weight * tx * (1.0 - ty)
    w10 = weight * (1.0 - tx) * ty
    w11 = weight * tx * ty
    if w00 > 0.0:
        _neumaier_add(values, comp, r0, c0, w00)
    if w01 > 0.0:
        _neumaier_add(values, comp, r0, c1, w01)
    if w10 > 0.0:
        _neumaier_add(values, comp, r1, c0, w10)
    if w11 > 0.0:
        _neumaier_add(values, comp, r1, c1, w11)


@nb.njit(cache=True)
def _merge_into(
    values: npt.NDArray[np.float64],
    comp: npt.NDArray[np.float64],
    other_values: npt.NDArray[np.float64],
    other_comp: npt.NDArray[np.float64],
) -> None:
    ny, nx = values.shape
    for r in range(ny):
        for c in range(nx):
            _neumaier_add(values, comp, r, c, other_values[r, c])
            comp[r, c] += other_comp[r, c]


class Accumulator:
    """
    Monotonically non-decreasing density grid.

    Args:
        grid: Cell layout; its shape equals the output image.
        splat: "nearest" adds the whole weight to one cell, "bilinear" spreads
            it over the four surrounding cell centres.
    """

    def __init__(self, grid: GridSpec, splat: SplatMode | str = SplatMode.NEAREST) -> None:
        self.grid = grid
        self.splat = SplatMode(splat)
        self._values = np.zeros(grid.shape, dtype=np.float64)
        self._comp = np.zeros(grid.shape, dtype=np.float64)
        self.records = 0

    def __repr__(self) -> str:
        return f"Accumulator(shape={self.grid.shape}, splat={self.splat}, records={self.records})"

    @classmethod
    def from_array(
        cls,
        grid: GridSpec,
        values: npt.ArrayLike,
        splat: SplatMode | str = SplatMode.NEAREST,
        records: int = 0,
    ) -> Accumulator:
        """Accumulator pre-filled with a previously saved snapshot."""
        data = np.asarray(values, dtype=np.float64)
        if data.shape != grid.shape:
            raise ValueError(f"Array shape {data.shape} does not match grid shape {grid.shape}.")
        if not np.all(np.isfinite(data)) or np.any(data < 0.0):
            raise ValueError("Accumulator values must be finite and non-negative.")
        acc = cls(grid, splat)
        acc._values[...] = data
        acc.records = int(records)
        return acc

    def record(self, position: tuple[float, float], weight: float = 1.0) -> None:
        """
        Add `weight` at `position`. Positions outside the grid land in the
        nearest edge cell.
        """
        if not (weight >= 0.0 and math.isfinite(weight)):
            raise ValueError(f"Weight must be finite and >= 0, got {weight}.")
        x, y = position
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ValueError(f"Cannot record a non-finite position ({x}, {y}).")

        g = self.grid
        if self.splat == SplatMode.NEAREST:
            _record_nearest(self._values, self._comp, g.origin_x, g.origin_y, g.cell_size, x, y, weight)
        else:
            _record_bilinear(self._values, self._comp, g.origin_x, g.origin_y, g.cell_size, x, y, weight)
        self.records += 1

    def snapshot(self) -> npt.NDArray[np.float64]:
        """Read-only copy of the compensated cell sums."""
        out = self._values + self._comp
        # Compensation can dip a zero-ish cell a hair below zero
        np.maximum(out, 0.0, out=out)
        out.setflags(write=False)
        return out

    @property
    def total_weight(self) -> float:
        return math.fsum(self._values.ravel()) + math.fsum(self._comp.ravel())

    def merge(self, other: Accumulator) -> Accumulator:
        """Add another accumulator on the same grid into this one."""
        if other.grid != self.grid:
            raise ValueError(f"Cannot merge accumulators on different grids: {self.grid} vs {other.grid}.")
        logger.debug(f"Merging {other.records} records into {self!r}.")
        _merge_into(self._values, self._comp, other._values, other._comp)
        self.records += other.records
        return self

    def __iadd__(self, other: Accumulator) -> Accumulator:
        return self.merge(other)

    def reset(self) -> None:
        """Clear the grid. Only for scratch accumulators that are merged elsewhere."""
        self._values.fill(0.0)
        self._comp.fill(0.0)
        self.records = 0
