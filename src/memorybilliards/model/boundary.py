"""
Table Boundaries
================
Collision geometry for the billiard table.

Two boundary variants implement the same capability interface:

- SegmentBoundary: a closed loop of Lines and Arcs (polygons, stadia,
  mushrooms, ...). Line crossings are computed in a numba kernel, arcs
  analytically.
- CircleBoundary: an analytic circle.

Both are immutable after construction and validated there; a malformed loop
raises BoundaryError and must be rebuilt, not retried.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import math
from typing import Optional, Union, TYPE_CHECKING

import numpy as np
import numba as nb

from memorybilliards.errors import BoundaryError
from memorybilliards.model.geometry_primitives import Arc, BoundaryLoop, Line, Point, TWO_PI
from memorybilliards.model.geometry_utils import (
    polygon_signed_area,
    polyline_self_intersects,
    ray_circle_parameters,
    ray_lines_crossings,
    ray_lines_hits,
)
from memorybilliards.model.tables import TableOutline, TableShape

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

# Direction of the parity ray used by contains(); deliberately not axis aligned
_PARITY_ANGLE = 1.0
_PARITY_DIRECTION = (math.cos(_PARITY_ANGLE), math.sin(_PARITY_ANGLE))

# Arcs are polygonized with this many chords per bounding-box diagonal for validation
_VALIDATION_CHORDS = 256


@dataclass(frozen=True)
class CollisionEvent:
    """
    Crossing of a ray with the boundary.

    Attributes:
        point: Crossing point on the boundary.
        normal: Outward unit normal of the selected segment at `point`.
        distance: Distance along the (unit) ray from its origin to `point`.
        segment_index: Index of the selected segment in traversal order.
        offset_normal: Outward unit direction used to snap the particle back
            inside. Equals `normal` except at vertices, where it is the mean of
            the normals of every segment that was hit.
    """
    point: tuple[float, float]
    normal: tuple[float, float]
    distance: float
    segment_index: int
    offset_normal: tuple[float, float]


def reflect(direction: tuple[float, float], normal: tuple[float, float]) -> tuple[float, float]:
    """
    Elastic specular reflection d' = d - 2 (d·n) n, renormalized to unit length.

    Args:
        direction: Incoming direction.
        normal: Unit normal of the reflecting surface.

    Returns:
        The reflected unit direction.
    """
    dx, dy = direction
    nx, ny = normal
    dot = dx * nx + dy * ny
    rx = dx - 2.0 * dot * nx
    ry = dy - 2.0 * dot * ny
    norm = math.hypot(rx, ry)
    if norm == 0.0:
        raise ValueError("Cannot reflect a zero direction.")
    return rx / norm, ry / norm


@nb.njit(cache=True)
def _lines_min_distance(
    px: float,
    py: float,
    ax: npt.NDArray[np.float64],
    ay: npt.NDArray[np.float64],
    ex: npt.NDArray[np.float64],
    ey: npt.NDArray[np.float64],
) -> tuple[float, int]:
    """Distance to the nearest line segment and its index; zero-length slots are skipped."""
    best = np.inf
    best_k = -1
    for k in range(ax.shape[0]):
        length_sq = ex[k] * ex[k] + ey[k] * ey[k]
        if length_sq == 0.0:
            continue
        s = ((px - ax[k]) * ex[k] + (py - ay[k]) * ey[k]) / length_sq
        if s < 0.0:
            s = 0.0
        elif s > 1.0:
            s = 1.0
        qx = px - (ax[k] + s * ex[k])
        qy = py - (ay[k] + s * ey[k])
        d = math.sqrt(qx * qx + qy * qy)
        if d < best:
            best = d
            best_k = k
    return best, best_k


class BoundaryBase(ABC):
    """
    Capability interface shared by every table boundary.
    """

    @property
    @abstractmethod
    def bounds(self) -> tuple[float, float, float, float]:
        """(xmin, ymin, xmax, ymax) of the table."""

    @property
    @abstractmethod
    def area(self) -> float:
        pass

    @property
    @abstractmethod
    def perimeter(self) -> float:
        pass

    @property
    @abstractmethod
    def min_feature_size(self) -> float:
        """Length of the smallest boundary feature (shortest segment or tightest radius)."""

    @abstractmethod
    def intersect(
        self,
        origin: tuple[float, float],
        direction: tuple[float, float],
        max_distance: Optional[float] = None,
    ) -> Optional[CollisionEvent]:
        """
        Nearest crossing of the ray origin + t * direction (t > 0) leaving the table.

        Args:
            origin: Ray origin, strictly inside the table.
            direction: Unit ray direction.
            max_distance: Search distance; defaults to `max_search_distance`.

        Returns:
            The collision, or None if no crossing exists within `max_distance`.
        """

    @abstractmethod
    def distance_to(self, point: tuple[float, float]) -> float:
        """Unsigned distance from `point` to the boundary curve."""

    @abstractmethod
    def normal_at(self, point: tuple[float, float]) -> tuple[float, float]:
        """Outward unit normal at the boundary point nearest to `point`."""

    @abstractmethod
    def _inside_strict(self, point: tuple[float, float]) -> bool:
        pass

    def contains(self, point: tuple[float, float], tolerance: float = 0.0) -> bool:
        """
        True iff `point` lies in the closed interior, or within `tolerance` of
        the boundary. Meant for validation, not for the integration loop.
        """
        if self.distance_to(point) <= max(tolerance, 1e-12 * self.scale):
            return True
        return self._inside_strict(point)

    @staticmethod
    def reflect(direction: tuple[float, float], normal: tuple[float, float]) -> tuple[float, float]:
        return reflect(direction, normal)

    @property
    def scale(self) -> float:
        """Diagonal of the bounding box."""
        xmin, ymin, xmax, ymax = self.bounds
        return math.hypot(xmax - xmin, ymax - ymin)

    @property
    def max_search_distance(self) -> float:
        return 2.0 * self.scale

    def sample_interior(
        self,
        rng: np.random.Generator,
        clearance: float = 0.0,
        max_attempts: int = 100_000,
    ) -> tuple[float, float]:
        """
        Uniformly distributed interior point at least `clearance` away from the
        boundary (rejection sampling in the bounding box).
        """
        xmin, ymin, xmax, ymax = self.bounds
        for _ in range(max_attempts):
            x = float(rng.uniform(xmin, xmax))
            y = float(rng.uniform(ymin, ymax))
            if self._inside_strict((x, y)) and self.distance_to((x, y)) > clearance:
                return x, y
        raise BoundaryError(f"Could not sample an interior point in {max_attempts} attempts.")


class CircleBoundary(BoundaryBase):
    """Analytic circular table."""

    def __init__(self, center: Point, radius: float) -> None:
        if not (radius > 0.0 and math.isfinite(radius)):
            raise BoundaryError(f"Circle radius must be positive and finite, got {radius}.")
        self.center = center
        self.radius = float(radius)

    def __repr__(self) -> str:
        return f"CircleBoundary(center=({self.center.x}, {self.center.y}), radius={self.radius})"

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        c, r = self.center, self.radius
        return c.x - r, c.y - r, c.x + r, c.y + r

    @property
    def area(self) -> float:
        return math.pi * self.radius ** 2

    @property
    def perimeter(self) -> float:
        return TWO_PI * self.radius

    @property
    def min_feature_size(self) -> float:
        return self.radius

    def intersect(
        self,
        origin: tuple[float, float],
        direction: tuple[float, float],
        max_distance: Optional[float] = None,
    ) -> Optional[CollisionEvent]:
        if max_distance is None:
            max_distance = self.max_search_distance
        ox, oy = origin
        dx, dy = direction
        roots = ray_circle_parameters(ox, oy, dx, dy, self.center.x, self.center.y, self.radius)
        if roots is None:
            return None

        # From the inside only the far root lies ahead
        t = roots[1]
        if not (0.0 < t <= max_distance):
            return None

        px = ox + t * dx
        py = oy + t * dy
        normal = self._radial(px, py)
        if dx * normal[0] + dy * normal[1] <= 0.0:
            return None
        return CollisionEvent(
            point=(px, py),
            normal=normal,
            distance=t,
            segment_index=0,
            offset_normal=normal,
        )

    def distance_to(self, point: tuple[float, float]) -> float:
        return abs(self.radius - math.hypot(point[0] - self.center.x, point[1] - self.center.y))

    def normal_at(self, point: tuple[float, float]) -> tuple[float, float]:
        return self._radial(point[0], point[1])

    def _inside_strict(self, point: tuple[float, float]) -> bool:
        return math.hypot(point[0] - self.center.x, point[1] - self.center.y) < self.radius

    def _radial(self, px: float, py: float) -> tuple[float, float]:
        rx = px - self.center.x
        ry = py - self.center.y
        norm = math.hypot(rx, ry)
        if norm == 0.0:
            return 1.0, 0.0
        return rx / norm, ry / norm


@dataclass(frozen=True)
class _ArcSlot:
    """Precomputed arc data for the hot path."""
    index: int
    cx: float
    cy: float
    radius: float
    start_angle: float
    span: float
    ccw: bool

    @property
    def outward_sign(self) -> float:
        # CCW loop: interior lies left of travel, i.e. towards the centre of a CCW arc
        return 1.0 if self.ccw else -1.0

    def on_arc(self, angle: float, tolerance: float = 1e-12) -> bool:
        if self.ccw:
            phi = (angle - self.start_angle) % TWO_PI
        else:
            phi = (self.start_angle - angle) % TWO_PI
        return phi <= self.span + tolerance or phi >= TWO_PI - tolerance


class SegmentBoundary(BoundaryBase):
    """
    Closed loop of Lines and Arcs.

    The loop is validated (closed, no zero-length segments, positive area,
    no self-intersection) and stored counter-clockwise, so every outward
    normal points to the right of the travel direction.
    """

    def __init__(self, loop: BoundaryLoop, closure_tolerance: float = 1e-9) -> None:
        entities = list(loop.entities)
        if not entities:
            raise BoundaryError("Boundary has no segments.")

        for k, entity in enumerate(entities):
            if not entity.length > 0.0:
                raise BoundaryError(f"Segment {k} has zero length.")
            if isinstance(entity, Arc) and not entity.radius > 0.0:
                raise BoundaryError(f"Arc {k} has zero radius.")

        polyline = BoundaryLoop(entities).to_polyline()
        xmin, ymin = polyline.min(axis=0)
        xmax, ymax = polyline.max(axis=0)
        rough_scale = max(math.hypot(xmax - xmin, ymax - ymin), 1e-300)

        tol = closure_tolerance * max(1.0, rough_scale)
        for k, entity in enumerate(entities):
            following = entities[(k + 1) % len(entities)]
            gap = entity.end.distance_to(following.start)
            if gap > tol:
                raise BoundaryError(
                    f"Boundary is not closed: segment {k} ends {gap:.3g} away from the start of segment "
                    f"{(k + 1) % len(entities)}."
                )

        polyline = BoundaryLoop(entities).to_polyline(max_length=rough_scale / _VALIDATION_CHORDS)
        signed_area = polygon_signed_area(polyline)
        if abs(signed_area) <= 1e-12 * rough_scale ** 2:
            raise BoundaryError("Boundary encloses zero area.")
        if polyline_self_intersects(
            np.ascontiguousarray(polyline[:, 0]),
            np.ascontiguousarray(polyline[:, 1]),
        ):
            raise BoundaryError("Boundary is self-intersecting.")

        if signed_area < 0.0:
            logger.debug("Boundary loop is clockwise; reversing it.")
            entities = BoundaryLoop(entities).reversed().entities

        self.entities: tuple[Line | Arc, ...] = tuple(entities)
        self._area = abs(signed_area)
        self._perimeter = sum(e.length for e in self.entities)
        self._bounds = self._compute_bounds()
        self._min_feature = min(
            min(e.length, e.radius) if isinstance(e, Arc) else e.length
            for e in self.entities
        )

        n = len(self.entities)
        self._ax = np.zeros(n)
        self._ay = np.zeros(n)
        self._ex = np.zeros(n)
        self._ey = np.zeros(n)
        self._nx = np.zeros(n)
        self._ny = np.zeros(n)
        self._t = np.empty(n)
        self._arcs: list[_ArcSlot] = []

        # Arc slots keep a zero normal and zero edge in the line arrays,
        # so the line kernels skip them
        for k, entity in enumerate(self.entities):
            if isinstance(entity, Line):
                normal = entity.right_normal()
                self._ax[k] = entity.start.x
                self._ay[k] = entity.start.y
                self._ex[k] = entity.end.x - entity.start.x
                self._ey[k] = entity.end.y - entity.start.y
                self._nx[k] = normal.x
                self._ny[k] = normal.y
            else:
                self._arcs.append(_ArcSlot(
                    index=k,
                    cx=entity.center.x,
                    cy=entity.center.y,
                    radius=entity.radius,
                    start_angle=entity.start_angle,
                    span=abs(entity.sweep),
                    ccw=entity.ccw,
                ))

        self._tie_tolerance = 1e-12 * self.scale
        logger.debug(
            f"Built boundary with {n} segments ({len(self._arcs)} arcs), "
            f"area {self._area:.6g}, perimeter {self._perimeter:.6g}."
        )

    def __repr__(self) -> str:
        return f"SegmentBoundary({len(self.entities)} segments, bounds={self._bounds})"

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return self._bounds

    @property
    def area(self) -> float:
        """Enclosed area (arcs are polygonized, so curved tables are approximate)."""
        return self._area

    @property
    def perimeter(self) -> float:
        return self._perimeter

    @property
    def min_feature_size(self) -> float:
        return self._min_feature

    def intersect(
        self,
        origin: tuple[float, float],
        direction: tuple[float, float],
        max_distance: Optional[float] = None,
    ) -> Optional[CollisionEvent]:
        if max_distance is None:
            max_distance = self.max_search_distance
        ox, oy = origin
        dx, dy = direction

        t = self._t
        ray_lines_hits(ox, oy, dx, dy, self._ax, self._ay, self._ex, self._ey, self._nx, self._ny, t)
        for arc in self._arcs:
            t[arc.index] = self._arc_exit(arc, ox, oy, dx, dy)

        best = float(t.min())
        if not best <= max_distance:
            return None

        # Every candidate already leaves the table (d·n > 0), so its reflection
        # points back inside; ties go to the first segment in traversal order
        tied = np.flatnonzero(t <= best + self._tie_tolerance)
        index = int(tied[0])
        distance = float(t[index])
        px = ox + distance * dx
        py = oy + distance * dy
        normal = self._segment_normal(index, px, py)

        offset_normal = normal
        if len(tied) > 1:
            sx = sy = 0.0
            for k in tied:
                nk = self._segment_normal(int(k), px, py)
                sx += nk[0]
                sy += nk[1]
            norm = math.hypot(sx, sy)
            if norm > 0.0:
                offset_normal = (sx / norm, sy / norm)

        return CollisionEvent(
            point=(px, py),
            normal=normal,
            distance=distance,
            segment_index=index,
            offset_normal=offset_normal,
        )

    def distance_to(self, point: tuple[float, float]) -> float:
        return self._nearest(point)[0]

    def normal_at(self, point: tuple[float, float]) -> tuple[float, float]:
        _, index = self._nearest(point)
        return self._segment_normal(index, point[0], point[1])

    def _inside_strict(self, point: tuple[float, float]) -> bool:
        ox, oy = point
        dx, dy = _PARITY_DIRECTION
        count = ray_lines_crossings(ox, oy, dx, dy, self._ax, self._ay, self._ex, self._ey)
        for arc in self._arcs:
            roots = ray_circle_parameters(ox, oy, dx, dy, arc.cx, arc.cy, arc.radius)
            if roots is None:
                continue
            for t in roots:
                if t > 0.0 and arc.on_arc(math.atan2(oy + t * dy - arc.cy, ox + t * dx - arc.cx)):
                    count += 1
        return count % 2 == 1

    def _nearest(self, point: tuple[float, float]) -> tuple[float, int]:
        px, py = point
        best, index = _lines_min_distance(px, py, self._ax, self._ay, self._ex, self._ey)
        for arc in self._arcs:
            angle = math.atan2(py - arc.cy, px - arc.cx)
            if arc.on_arc(angle):
                d = abs(math.hypot(px - arc.cx, py - arc.cy) - arc.radius)
            else:
                entity = self.entities[arc.index]
                d = min(
                    math.hypot(px - entity.start.x, py - entity.start.y),
                    math.hypot(px - entity.end.x, py - entity.end.y),
                )
            if d < best:
                best = d
                index = arc.index
        return float(best), int(index)

    def _segment_normal(self, index: int, px: float, py: float) -> tuple[float, float]:
        entity = self.entities[index]
        if isinstance(entity, Line):
            return float(self._nx[index]), float(self._ny[index])
        rx = px - entity.center.x
        ry = py - entity.center.y
        norm = math.hypot(rx, ry)
        sign = 1.0 if entity.ccw else -1.0
        return sign * rx / norm, sign * ry / norm

    @staticmethod
    def _arc_exit(arc: _ArcSlot, ox: float, oy: float, dx: float, dy: float) -> float:
        roots = ray_circle_parameters(ox, oy, dx, dy, arc.cx, arc.cy, arc.radius)
        if roots is None:
            return math.inf
        sign = arc.outward_sign
        for t in roots:
            if t <= 0.0:
                continue
            rx = ox + t * dx - arc.cx
            ry = oy + t * dy - arc.cy
            if not arc.on_arc(math.atan2(ry, rx)):
                continue
            if sign * (dx * rx + dy * ry) > 0.0:
                return t
        return math.inf

    def _compute_bounds(self) -> tuple[float, float, float, float]:
        xs: list[float] = []
        ys: list[float] = []
        for entity in self.entities:
            xs.extend((entity.start.x, entity.end.x))
            ys.extend((entity.start.y, entity.end.y))
            if isinstance(entity, Arc):
                # Axis extremes that lie on the arc
                for angle in (0.0, 0.5 * math.pi, math.pi, 1.5 * math.pi):
                    if entity.contains_angle(angle):
                        p = entity.point_at(angle)
                        xs.append(p.x)
                        ys.append(p.y)
        return min(xs), min(ys), max(xs), max(ys)


# Closed set of boundary variants
Boundary = Union[SegmentBoundary, CircleBoundary]


def build_boundary(outline: TableOutline) -> Boundary:
    """Select the boundary variant for a table outline."""
    if outline.shape == TableShape.CIRCLE:
        return CircleBoundary(center=Point(0.0, 0.0), radius=outline.dimensions[0])
    return SegmentBoundary(outline.get_loop())
