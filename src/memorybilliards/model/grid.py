"""
Uniform grids over the table plane.

Both the memory field and the density accumulator are flat, row-major
float64 arrays of shape (ny, nx) addressed by integer cell indices; GridSpec
holds the mapping between world coordinates and those indices. Row 0 is the
lowest y.
"""
from __future__ import annotations

from dataclasses import dataclass
import math


@dataclass(frozen=True)
class GridSpec:
    origin_x: float
    origin_y: float
    cell_size: float
    nx: int
    ny: int

    def __post_init__(self):
        if self.nx < 1 or self.ny < 1:
            raise ValueError(f"Grid must have at least one cell, got {self.nx} x {self.ny}.")
        if not (self.cell_size > 0.0 and math.isfinite(self.cell_size)):
            raise ValueError(f"Cell size must be positive and finite, got {self.cell_size}.")

    @classmethod
    def fit(
        cls,
        bounds: tuple[float, float, float, float],
        nx: int,
        ny: int,
        margin: float = 0.0,
    ) -> GridSpec:
        """
        Smallest grid of square cells with `nx` x `ny` cells covering `bounds`.

        Args:
            bounds: (xmin, ymin, xmax, ymax) of the region to cover.
            nx, ny: Number of cells along x and y.
            margin: Extra fraction of the region's extent added on every side.

        Returns:
            A grid centred on the region. The shorter side gets padding so cells
            stay square.
        """
        xmin, ymin, xmax, ymax = bounds
        width = (xmax - xmin) * (1.0 + 2.0 * margin)
        height = (ymax - ymin) * (1.0 + 2.0 * margin)
        cell = max(width / nx, height / ny)
        if cell <= 0.0:
            raise ValueError(f"Cannot fit a grid to degenerate bounds {bounds}.")

        cx = 0.5 * (xmin + xmax)
        cy = 0.5 * (ymin + ymax)
        return cls(
            origin_x=cx - 0.5 * nx * cell,
            origin_y=cy - 0.5 * ny * cell,
            cell_size=cell,
            nx=nx,
            ny=ny,
        )

    @classmethod
    def fit_resolution(
        cls,
        bounds: tuple[float, float, float, float],
        resolution: int,
        pad_cells: int = 0,
    ) -> GridSpec:
        """
        Square-cell grid with `resolution` cells along the longer side of
        `bounds`, plus `pad_cells` extra cells on every side.
        """
        xmin, ymin, xmax, ymax = bounds
        cell = max(xmax - xmin, ymax - ymin) / resolution
        if cell <= 0.0:
            raise ValueError(f"Cannot fit a grid to degenerate bounds {bounds}.")

        nx = max(1, math.ceil((xmax - xmin) / cell - 1e-9)) + 2 * pad_cells
        ny = max(1, math.ceil((ymax - ymin) / cell - 1e-9)) + 2 * pad_cells
        return cls(
            origin_x=0.5 * (xmin + xmax) - 0.5 * nx * cell,
            origin_y=0.5 * (ymin + ymax) - 0.5 * ny * cell,
            cell_size=cell,
            nx=nx,
            ny=ny,
        )

    @property
    def shape(self) -> tuple[int, int]:
        return self.ny, self.nx

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return (
            self.origin_x,
            self.origin_y,
            self.origin_x + self.nx * self.cell_size,
            self.origin_y + self.ny * self.cell_size,
        )

    def cell_index(self, x: float, y: float) -> tuple[int, int]:
        """(row, column) of the cell containing (x, y), clamped to the grid."""
        i = int(math.floor((x - self.origin_x) / self.cell_size))
        j = int(math.floor((y - self.origin_y) / self.cell_size))
        return min(max(j, 0), self.ny - 1), min(max(i, 0), self.nx - 1)

    def cell_center(self, row: int, col: int) -> tuple[float, float]:
        return (
            self.origin_x + (col + 0.5) * self.cell_size,
            self.origin_y + (row + 0.5) * self.cell_size,
        )

    def to_attrs(self) -> dict[str, float | int]:
        return {
            "origin_x": self.origin_x,
            "origin_y": self.origin_y,
            "cell_size": self.cell_size,
            "nx": self.nx,
            "ny": self.ny,
        }

    @classmethod
    def from_attrs(cls, attrs) -> GridSpec:
        return cls(
            origin_x=float(attrs["origin_x"]),
            origin_y=float(attrs["origin_y"]),
            cell_size=float(attrs["cell_size"]),
            nx=int(attrs["nx"]),
            ny=int(attrs["ny"]),
        )
