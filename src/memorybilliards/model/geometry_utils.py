from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from math import sqrt, pi
import numpy as np
import numba as nb

if TYPE_CHECKING:
    from numpy import typing as npt

    from memorybilliards.model.geometry_primitives import Point

# Segment parameter slack, so rays through a vertex hit both neighbours
SEGMENT_TOLERANCE = 1e-12


def deg2rad(degrees: float) -> float:
    return degrees * pi / 180


def ellipse_to_polyline(
    center: Point,
    a: float,
    b: float,
    n_segments: int
) -> np.ndarray:
    """
    Discretize an ellipse in XY into an (N,2) polyline (counter-clockwise).

    Args:
        center: (x, y) coordinates of the ellipse center.
        a: Semi-axis along x.
        b: Semi-axis along y.
        n_segments: Number of segments to use for discretization.

    Returns:
        An array of shape (n_segments, 2) containing the (x, y) coordinates of the
        vertices. The first vertex is not repeated at the end.
    """
    theta = np.linspace(0.0, 2.0 * np.pi, n_segments, endpoint=False)
    return np.c_[center.x + a * np.cos(theta), center.y + b * np.sin(theta)]


def ray_circle_parameters(
    ox: float,
    oy: float,
    dx: float,
    dy: float,
    cx: float,
    cy: float,
    r: float,
    eps: float = 1e-15
) -> Optional[tuple[float, float]]:
    """
    Compute the ray parameters where the line P(t) = O + t * d meets a circle.

    Args:
        ox, oy: Ray origin.
        dx, dy: Ray direction (nonzero, need not be unit length).
        cx, cy: Circle center.
        r: Circle radius.
        eps: Tolerance for the degenerate-direction check.

    Returns:
        (t1, t2) with t1 <= t2, or None if the line misses the circle. A tangent
        line returns t1 == t2.

    Notes:
        Solves ||O + t*d - C||^2 = r^2, i.e. a t^2 + b t + c = 0 with
          a = d·d
          b = 2 d·(O - C)
          c = ||O - C||^2 - r^2
        The roots are evaluated in the cancellation-free form
        q = -(b + sign(b) sqrt(disc)) / 2, t = q / a and t = c / q.
    """
    a = dx * dx + dy * dy
    if a < eps:
        return None

    qx = ox - cx
    qy = oy - cy
    b = 2.0 * (dx * qx + dy * qy)
    c = qx * qx + qy * qy - r * r
    disc = b * b - 4.0 * a * c

    # No real intersection
    if disc < 0.0:
        return None

    sqrt_disc = sqrt(disc)
    q = -0.5 * (b + sqrt_disc) if b >= 0.0 else -0.5 * (b - sqrt_disc)
    if q == 0.0:
        # b == 0 and c == 0: origin on the circle, direction tangent
        return 0.0, 0.0

    t1 = q / a
    t2 = c / q
    return (t1, t2) if t1 <= t2 else (t2, t1)


def polygon_signed_area(vertices: npt.NDArray[np.float64]) -> float:
    """Shoelace area of a closed polygon; positive for counter-clockwise order."""
    x = vertices[:, 0]
    y = vertices[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


@nb.njit(cache=True)
def ray_lines_hits(
    ox: float,
    oy: float,
    dx: float,
    dy: float,
    ax: npt.NDArray[np.float64],
    ay: npt.NDArray[np.float64],
    ex: npt.NDArray[np.float64],
    ey: npt.NDArray[np.float64],
    nx: npt.NDArray[np.float64],
    ny: npt.NDArray[np.float64],
    t_out: npt.NDArray[np.float64],
) -> None:
    """
    Ray parameter of the exit crossing with every line segment a + s*e.

    Only segments the ray leaves through (d·n > 0) are considered. Segments
    that are missed get +inf.

    Args:
        ox, oy: Ray origin.
        dx, dy: Ray direction.
        ax, ay: (n, ) segment start points.
        ex, ey: (n, ) segment edge vectors (end - start).
        nx, ny: (n, ) outward unit normals.
        t_out: (n, ) output array, overwritten.
    """
    for k in range(ax.shape[0]):
        t_out[k] = np.inf
        if dx * nx[k] + dy * ny[k] <= 0.0:
            continue
        denom = dx * ey[k] - dy * ex[k]
        if denom == 0.0:
            continue
        qx = ax[k] - ox
        qy = ay[k] - oy
        t = (qx * ey[k] - qy * ex[k]) / denom
        s = (qx * dy - qy * dx) / denom
        if t > 0.0 and s >= -SEGMENT_TOLERANCE and s <= 1.0 + SEGMENT_TOLERANCE:
            t_out[k] = t


@nb.njit(cache=True)
def ray_lines_crossings(
    ox: float,
    oy: float,
    dx: float,
    dy: float,
    ax: npt.NDArray[np.float64],
    ay: npt.NDArray[np.float64],
    ex: npt.NDArray[np.float64],
    ey: npt.NDArray[np.float64],
) -> int:
    """Number of segments crossed by the ray in either direction (half-open in s)."""
    count = 0
    for k in range(ax.shape[0]):
        denom = dx * ey[k] - dy * ex[k]
        if denom == 0.0:
            continue
        qx = ax[k] - ox
        qy = ay[k] - oy
        t = (qx * ey[k] - qy * ex[k]) / denom
        s = (qx * dy - qy * dx) / denom
        if t > 0.0 and s >= 0.0 and s < 1.0:
            count += 1
    return count


@nb.njit(cache=True)
def _orientation(ax: float, ay: float, bx: float, by: float, cx: float, cy: float) -> float:
    return (bx - ax) * (cy - ay) - (by - ay) * (cx - ax)


@nb.njit(cache=True)
def _on_segment(ax: float, ay: float, bx: float, by: float, px: float, py: float) -> bool:
    return (min(ax, bx) <= px and px <= max(ax, bx)
            and min(ay, by) <= py and py <= max(ay, by))


@nb.njit(cache=True)
def _segments_touch(
    ax: float, ay: float, bx: float, by: float,
    cx: float, cy: float, dx: float, dy: float,
) -> bool:
    o1 = _orientation(ax, ay, bx, by, cx, cy)
    o2 = _orientation(ax, ay, bx, by, dx, dy)
    o3 = _orientation(cx, cy, dx, dy, ax, ay)
    o4 = _orientation(cx, cy, dx, dy, bx, by)

    if ((o1 > 0.0 and o2 < 0.0) or (o1 < 0.0 and o2 > 0.0)) and \
            ((o3 > 0.0 and o4 < 0.0) or (o3 < 0.0 and o4 > 0.0)):
        return True

    # Collinear / touching cases
    if o1 == 0.0 and _on_segment(ax, ay, bx, by, cx, cy):
        return True
    if o2 == 0.0 and _on_segment(ax, ay, bx, by, dx, dy):
        return True
    if o3 == 0.0 and _on_segment(cx, cy, dx, dy, ax, ay):
        return True
    if o4 == 0.0 and _on_segment(cx, cy, dx, dy, bx, by):
        return True
    return False


@nb.njit(cache=True)
def polyline_self_intersects(xs: npt.NDArray[np.float64], ys: npt.NDArray[np.float64]) -> bool:
    """
    True iff two non-adjacent edges of the closed polygon (xs, ys) touch or cross.
    """
    n = xs.shape[0]
    for i in range(n):
        i1 = (i + 1) % n
        for j in range(i + 2, n):
            if i == 0 and j == n - 1:
                continue
            j1 = (j + 1) % n
            if _segments_touch(xs[i], ys[i], xs[i1], ys[i1], xs[j], ys[j], xs[j1], ys[j1]):
                return True
    return False
