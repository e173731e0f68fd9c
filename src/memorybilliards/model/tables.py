"""Billiard Table Shapes (Catalog)."""
from __future__ import annotations

from enum import StrEnum
from dataclasses import dataclass
from typing import List, Optional
import math

from memorybilliards.model.geometry_primitives import Point, Line, Arc, BoundaryLoop, GeometricEntity
from memorybilliards.model.geometry_utils import ellipse_to_polyline


# ------------------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------------------
class TableShape(StrEnum):
    """Describes the geometric shape of a table boundary."""
    SQUARE = "square"
    RECTANGLE = "rectangle"
    CORRIDOR = "corridor"
    CIRCLE = "circle"
    STADIUM = "stadium"
    MUSHROOM = "mushroom"
    REGULAR_POLYGON = "regular polygon"
    ELLIPSE = "ellipse"
    POLYGON = "polygon"


# Number of dimensions each parametric shape expects
_DIMENSION_COUNT: dict[TableShape, int] = {
    TableShape.SQUARE: 1,
    TableShape.RECTANGLE: 2,
    TableShape.CORRIDOR: 2,
    TableShape.CIRCLE: 1,
    TableShape.STADIUM: 2,
    TableShape.MUSHROOM: 3,
    TableShape.REGULAR_POLYGON: 2,
    TableShape.ELLIPSE: 2,
}


# ------------------------------------------------------------------------------
# Data Structures
# ------------------------------------------------------------------------------
@dataclass(frozen=True)
class TableOutline:
    """
    Defines ONE closed table boundary.
    """
    shape: TableShape

    # Generic container for dimensions.
    # Interpretation depends on shape:
    # - Square: [side]
    # - Rectangle: [width, height]
    # - Corridor: [length, width]
    # - Circle: [radius]
    # - Stadium: [straight length, radius]
    # - Mushroom: [cap radius, stem width, stem height]
    # - Regular polygon: [number of sides, circumradius]
    # - Ellipse: [semi-axis x, semi-axis y]
    dimensions: tuple[float, ...] = ()

    # Only for TableShape.POLYGON
    vertices: Optional[tuple[tuple[float, float], ...]] = None

    def __post_init__(self):
        object.__setattr__(self, "shape", TableShape(self.shape))
        object.__setattr__(self, "dimensions", tuple(float(d) for d in self.dimensions))
        if self.vertices is not None:
            object.__setattr__(self, "vertices", tuple((float(x), float(y)) for x, y in self.vertices))

        if self.shape == TableShape.POLYGON:
            if not self.vertices or len(self.vertices) < 3:
                raise ValueError("A polygon table needs at least 3 vertices.")
            return

        expected = _DIMENSION_COUNT[self.shape]
        if len(self.dimensions) != expected:
            raise ValueError(
                f"Shape '{self.shape}' expects {expected} dimension(s), got {list(self.dimensions)}."
            )
        if any(d <= 0.0 for d in self.dimensions):
            raise ValueError(f"Table dimensions must be positive, got {list(self.dimensions)}.")

    def get_loop(self, num_points: Optional[int] = None) -> BoundaryLoop:
        """
        Generate the closed loop of Lines/Arcs for this table (CCW direction).

        Args:
            num_points: Number of polygon vertices for curved shapes that are
                polygonized (ellipse). Ignored by the other shapes.
        """
        match self.shape:
            case TableShape.SQUARE:
                side = self.dimensions[0]
                return self._generate_box(side, side)
            case TableShape.RECTANGLE:
                return self._generate_box(*self.dimensions)
            case TableShape.CORRIDOR:
                return self._generate_corridor()
            case TableShape.CIRCLE:
                return BoundaryLoop(self._generate_circle())
            case TableShape.STADIUM:
                return BoundaryLoop(self._generate_stadium())
            case TableShape.MUSHROOM:
                return BoundaryLoop(self._generate_mushroom())
            case TableShape.REGULAR_POLYGON:
                return self._generate_regular_polygon()
            case TableShape.ELLIPSE:
                return self._generate_ellipse(num_points=num_points or 256)
            case TableShape.POLYGON:
                return BoundaryLoop.from_vertices(self.vertices, label="wall")
            case _:
                return BoundaryLoop()

    def _generate_box(self, width: float, height: float) -> BoundaryLoop:
        # Lower-left corner at the origin
        return BoundaryLoop.from_vertices(
            [(0.0, 0.0), (width, 0.0), (width, height), (0.0, height)],
            label="wall",
        )

    def _generate_corridor(self) -> BoundaryLoop:
        length, width = self.dimensions
        if width > length:
            raise ValueError(f"Corridor width ({width}) must not exceed its length ({length}).")
        return BoundaryLoop.from_vertices(
            [(0.0, 0.0), (length, 0.0), (length, width), (0.0, width)],
            label="corridor",
        )

    def _generate_circle(self) -> List[Arc]:
        r = self.dimensions[0]
        p = Point(r, 0.0)
        return [Arc(start=p, center=Point(0.0, 0.0), end=Point(r, 0.0), label="rim")]

    def _generate_stadium(self) -> List[GeometricEntity]:
        length, r = self.dimensions
        half = length / 2

        p1 = Point(-half, -r)
        p2 = Point(half, -r)
        p3 = Point(half, r)
        p4 = Point(-half, r)

        return [
            Line(p1, p2, label="straight"),
            Arc(p2, Point(half, 0.0), p3, label="cap"),
            Line(p3, p4, label="straight"),
            Arc(p4, Point(-half, 0.0), p1, label="cap"),
        ]

    def _generate_mushroom(self) -> List[GeometricEntity]:
        r, stem_width, stem_height = self.dimensions
        half = stem_width / 2
        if half >= r:
            raise ValueError(f"Mushroom stem width ({stem_width}) must be smaller than the cap diameter ({2 * r}).")

        cap_right = Point(r, 0.0)
        cap_left = Point(-r, 0.0)
        stem_tl = Point(-half, 0.0)
        stem_bl = Point(-half, -stem_height)
        stem_br = Point(half, -stem_height)
        stem_tr = Point(half, 0.0)

        return [
            Arc(cap_right, Point(0.0, 0.0), cap_left, label="cap"),
            Line(cap_left, stem_tl, label="cap"),
            Line(stem_tl, stem_bl, label="stem"),
            Line(stem_bl, stem_br, label="stem"),
            Line(stem_br, stem_tr, label="stem"),
            Line(stem_tr, cap_right, label="cap"),
        ]

    def _generate_regular_polygon(self) -> BoundaryLoop:
        sides, radius = self.dimensions
        n = int(round(sides))
        if n < 3 or abs(sides - n) > 1e-9:
            raise ValueError(f"A regular polygon needs an integer number of sides >= 3, got {sides}.")

        # Flat bottom edge
        theta0 = -math.pi / 2 - math.pi / n
        vertices = [
            (radius * math.cos(theta0 + 2 * math.pi * k / n), radius * math.sin(theta0 + 2 * math.pi * k / n))
            for k in range(n)
        ]
        return BoundaryLoop.from_vertices(vertices, label="wall")

    def _generate_ellipse(self, num_points: int) -> BoundaryLoop:
        a, b = self.dimensions
        vertices = ellipse_to_polyline(Point(0.0, 0.0), a, b, num_points)
        return BoundaryLoop.from_vertices(vertices, label="rim")


# ------------------------------------------------------------------------------
# Predefined tables
# ------------------------------------------------------------------------------
TABLE_CATALOG: dict[str, TableOutline] = {
    "unit-square": TableOutline(shape=TableShape.SQUARE, dimensions=(1.0,)),
    "golden-rectangle": TableOutline(shape=TableShape.RECTANGLE, dimensions=((1 + 5 ** 0.5) / 2, 1.0)),
    "unit-circle": TableOutline(shape=TableShape.CIRCLE, dimensions=(1.0,)),
    "bunimovich-stadium": TableOutline(shape=TableShape.STADIUM, dimensions=(2.0, 1.0)),
    "narrow-corridor": TableOutline(shape=TableShape.CORRIDOR, dimensions=(10.0, 0.2)),
    "mushroom": TableOutline(shape=TableShape.MUSHROOM, dimensions=(1.0, 0.5, 1.0)),
    "hexagon": TableOutline(shape=TableShape.REGULAR_POLYGON, dimensions=(6, 1.0)),
    "ellipse": TableOutline(shape=TableShape.ELLIPSE, dimensions=(1.5, 1.0)),
    "l-shape": TableOutline(
        shape=TableShape.POLYGON,
        vertices=((0.0, 0.0), (2.0, 0.0), (2.0, 1.0), (1.0, 1.0), (1.0, 2.0), (0.0, 2.0)),
    ),
}
