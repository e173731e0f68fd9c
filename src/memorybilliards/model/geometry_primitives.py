"""
Geometric Primitives for table boundaries.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Union, TYPE_CHECKING
import numpy as np
import math

if TYPE_CHECKING:
    import numpy.typing as npt

TWO_PI = 2.0 * math.pi


@dataclass
class Vector:
    """
    A vector in the table plane representing direction and magnitude.
    """
    x: float
    y: float

    def __truediv__(self, scalar: float) -> Vector:
        if scalar == 0.0: raise ZeroDivisionError
        return Vector(self.x / scalar, self.y / scalar)

    @property
    def magnitude(self) -> float:
        return math.hypot(self.x, self.y)

    def normalize(self) -> Vector:
        mag = self.magnitude
        if mag == 0.0: return Vector(0.0, 0.0)
        return self / mag



@dataclass
class Point:
    """A simple geometric point in the table plane."""
    x: float
    y: float

    def __sub__(self, other: Union[Vector, Point]) -> Union[Vector, Point]:
        # Point - Point = Vector (Direction)
        if isinstance(other, Point):
            return Vector(self.x - other.x, self.y - other.y)
        # Point - Vector = Point (Inverse translation)
        if isinstance(other, Vector):
            return Point(self.x - other.x, self.y - other.y)
        raise TypeError("Can only subtract a Vector or Point from a Point.")

    def distance_to(self, other: Point) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def to_array(self) -> npt.NDArray[np.float64]:
        return np.array([self.x, self.y])


@dataclass
class Line:
    """A straight boundary segment between two points."""
    start: Point
    end: Point
    label: Optional[str] = None

    def reverse(self) -> Line:
        return Line(start=self.end, end=self.start, label=self.label)

    def discretize(self, max_length: Optional[float] = None) -> npt.NDArray[np.float64]:
        if max_length is None:
            return np.array([self.start.to_array(), self.end.to_array()])

        resolution = max(2, math.ceil(self.length / max_length) + 1)
        return np.linspace(self.start.to_array(), self.end.to_array(), resolution)

    def to_vector(self) -> Vector:
        return self.end - self.start

    def right_normal(self) -> Vector:
        """Unit normal on the right-hand side of the travel direction (outward for CCW loops)."""
        v = self.to_vector()
        return Vector(v.y, -v.x).normalize()

    @property
    def length(self) -> float:
        return self.start.distance_to(self.end)


@dataclass
class Arc:
    """
    A circular arc from `start` to `end` around `center`.

    Unlike a CAD arc, the sweep is not the shortest path: `ccw` fixes the
    travel sense, so half circles and reflex arcs are unambiguous. An arc whose
    start and end coincide is a full circle.
    """
    start: Point
    center: Point
    end: Point
    ccw: bool = True
    label: Optional[str] = None

    def reverse(self) -> Arc:
        return Arc(start=self.end, center=self.center, end=self.start, ccw=not self.ccw, label=self.label)

    @property
    def radius(self) -> float:
        return (self.start - self.center).magnitude

    @property
    def start_angle(self) -> float:
        return math.atan2(self.start.y - self.center.y, self.start.x - self.center.x)

    @property
    def sweep(self) -> float:
        """Signed sweep angle: positive counter-clockwise, negative clockwise."""
        ang_s = self.start_angle
        ang_e = math.atan2(self.end.y - self.center.y, self.end.x - self.center.x)
        if self.ccw:
            diff = (ang_e - ang_s) % TWO_PI
        else:
            diff = (ang_s - ang_e) % TWO_PI
        if diff < 1e-12 or self.start.distance_to(self.end) < 1e-12 * max(self.radius, 1.0):
            diff = TWO_PI
        return diff if self.ccw else -diff

    @property
    def length(self) -> float:
        return self.radius * abs(self.sweep)

    def point_at(self, angle_rad: float) -> Point:
        r = self.radius
        return Point(self.center.x + r * math.cos(angle_rad), self.center.y + r * math.sin(angle_rad))

    def sweep_parameter(self, angle_rad: float) -> float:
        """Angular distance travelled from `start` to reach `angle_rad`, in [0, 2*pi)."""
        if self.ccw:
            return (angle_rad - self.start_angle) % TWO_PI
        return (self.start_angle - angle_rad) % TWO_PI

    def contains_angle(self, angle_rad: float, tolerance: float = 1e-12) -> bool:
        """True iff a point at polar angle `angle_rad` lies on the arc."""
        phi = self.sweep_parameter(angle_rad)
        return phi <= abs(self.sweep) + tolerance or phi >= TWO_PI - tolerance

    def discretize(self, max_length: Optional[float] = None) -> npt.NDArray[np.float64]:
        """
        Generates points along the arc from `start` to `end`, following the
        arc's travel sense.
        """
        if max_length is not None:
            resolution = max(3, math.ceil(self.length / max_length) + 1)
        else:
            resolution = 100

        ang_s = self.start_angle
        angles = np.linspace(ang_s, ang_s + self.sweep, resolution)

        x = self.center.x + self.radius * np.cos(angles)
        y = self.center.y + self.radius * np.sin(angles)
        # Pin the endpoints exactly so neighbouring entities stay welded
        x[0], y[0] = self.start.x, self.start.y
        x[-1], y[-1] = self.end.x, self.end.y

        return np.array([x, y]).T


# Union type for list handling
GeometricEntity = Union[Line, Arc]


@dataclass
class BoundaryLoop:
    """
    A single closed loop of lines and arcs defining the table.
    """
    entities: List[GeometricEntity] = field(default_factory=list)

    def reversed(self) -> BoundaryLoop:
        return BoundaryLoop([e.reverse() for e in reversed(self.entities)])

    def to_polyline(self, max_length: Optional[float] = None) -> npt.NDArray[np.float64]:
        """
        Dense (N, 2) vertex array of the loop, without repeating the first
        vertex at the end.
        """
        parts = [entity.discretize(max_length=max_length)[:-1] for entity in self.entities]
        if not parts:
            return np.empty((0, 2))
        return np.vstack(parts)

    @classmethod
    def from_vertices(cls, vertices: npt.ArrayLike, label: Optional[str] = None) -> BoundaryLoop:
        pts = np.asarray(vertices, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 2:
            raise ValueError(f"Vertices must have shape (n, 2), got {pts.shape}.")
        if len(pts) > 1 and np.allclose(pts[0], pts[-1]):
            pts = pts[:-1]
        points = [Point(float(x), float(y)) for x, y in pts]
        lines = [
            Line(start=p1, end=p2, label=label)
            for p1, p2 in zip(points, points[1:] + points[:1])
        ]
        return cls(lines)
