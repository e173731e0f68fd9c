"""
Density Renderer
================
Turns an accumulator snapshot into a 32-bit floating point grayscale TIFF.

The grid is normalized to [0, 1] (log, sqrt or linear stretch), optionally
smoothed and upsampled, flipped so +y points up, and written with Pillow in
mode "F". A quick-look PNG can be written with matplotlib.
"""
from __future__ import annotations

import logging
import os
from typing import Optional, TYPE_CHECKING

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from PIL import Image
from scipy.ndimage import gaussian_filter

if TYPE_CHECKING:
    import numpy.typing as npt

    from memorybilliards.config import OutputConfig

logger = logging.getLogger(__name__)


def normalize(
    grid: npt.ArrayLike,
    scale: str = "log",
    smooth_sigma: float = 0.0,
) -> npt.NDArray[np.float32]:
    """
    Map a non-negative density grid to float32 values in [0, 1].

    Args:
        grid: Density grid, non-negative and finite.
        scale: "linear" (value / max), "sqrt" or "log". The log stretch is
            log1p(value / m) / log1p(max / m) with m the smallest positive
            value, so the lightest visited cell is still distinguishable from
            an unvisited one.
        smooth_sigma: Standard deviation (in cells) of an optional Gaussian
            blur applied before the stretch.

    Returns:
        Normalized grid; an all-zero grid stays all zero.
    """
    data = np.array(grid, dtype=np.float64)
    if not np.all(np.isfinite(data)) or np.any(data < 0.0):
        raise ValueError("Density grid must be finite and non-negative.")
    if smooth_sigma > 0.0:
        data = gaussian_filter(data, sigma=smooth_sigma, mode="nearest")

    peak = float(data.max()) if data.size else 0.0
    if peak <= 0.0:
        return np.zeros(data.shape, dtype=np.float32)

    match scale:
        case "linear":
            out = data / peak
        case "sqrt":
            out = np.sqrt(data / peak)
        case "log":
            floor = float(data[data > 0.0].min())
            out = np.log1p(data / floor) / np.log1p(peak / floor)
        case _:
            raise ValueError(f"Unknown scale '{scale}'. Use 'log', 'sqrt' or 'linear'.")

    return np.clip(out, 0.0, 1.0).astype(np.float32)


def upsample(grid: npt.NDArray, factor: int) -> npt.NDArray:
    """Nearest-neighbour integer upsampling."""
    if factor < 1:
        raise ValueError(f"Upsample factor must be >= 1, got {factor}.")
    if factor == 1:
        return grid
    return np.repeat(np.repeat(grid, factor, axis=0), factor, axis=1)


def to_image(grid: npt.NDArray) -> npt.NDArray:
    """Grid rows run bottom-up (row 0 is the lowest y); image rows run top-down."""
    return np.ascontiguousarray(np.flipud(grid))


def write_tiff(filepath: str | os.PathLike, pixels: npt.ArrayLike) -> None:
    """Write a single-channel 32-bit float TIFF."""
    data = np.ascontiguousarray(pixels, dtype=np.float32)
    if data.ndim != 2:
        raise ValueError(f"Expected a 2D pixel buffer, got shape {data.shape}.")
    image = Image.fromarray(data)
    if image.mode != "F":
        raise ValueError(f"Expected a 32-bit float image, got mode '{image.mode}'.")
    image.save(filepath, format="TIFF")
    logger.info(f"Density map written to: {filepath} ({data.shape[1]} x {data.shape[0]})")


def save_preview(filepath: str | os.PathLike, pixels: npt.ArrayLike, title: Optional[str] = None) -> None:
    """Quick-look PNG of an already normalized image."""
    fig = plt.figure(figsize=(6, 6))
    ax = fig.add_subplot()
    ax.imshow(pixels, cmap="magma", vmin=0.0, vmax=1.0, interpolation="nearest")
    ax.set_axis_off()
    if title:
        ax.set_title(title)
    fig.savefig(filepath, dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Preview written to: {filepath}")


def render_density(snapshot: npt.ArrayLike, output: OutputConfig) -> npt.NDArray[np.float32]:
    """
    Normalize a snapshot and write the configured outputs.

    Returns:
        The image that was written (top row first).
    """
    pixels = to_image(upsample(normalize(snapshot, output.scale, output.smooth_sigma), output.upsample))
    if output.path:
        write_tiff(output.path, pixels)
    if output.preview:
        save_preview(output.preview, pixels)
    return pixels
