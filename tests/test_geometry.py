import math

import numpy as np
import pytest

from memorybilliards.model.boundary import CircleBoundary, SegmentBoundary, build_boundary
from memorybilliards.model.geometry_primitives import Arc, BoundaryLoop, Line, Point, Vector
from memorybilliards.model.geometry_utils import (
    ellipse_to_polyline,
    polygon_signed_area,
    polyline_self_intersects,
    ray_circle_parameters,
)
from memorybilliards.model.tables import TABLE_CATALOG, TableOutline, TableShape


def test_vector_normalize():
    v = Vector(3.0, 4.0)
    assert v.magnitude == pytest.approx(5.0)
    assert v.normalize().magnitude == pytest.approx(1.0)
    assert Vector(0.0, 0.0).normalize() == Vector(0.0, 0.0)


def test_line_right_normal_points_outward_for_ccw_edge():
    bottom = Line(Point(0.0, 0.0), Point(1.0, 0.0))
    n = bottom.right_normal()
    assert (n.x, n.y) == pytest.approx((0.0, -1.0))


def test_arc_sweep_and_reverse():
    half = Arc(Point(1.0, 0.0), Point(0.0, 0.0), Point(-1.0, 0.0))
    assert half.sweep == pytest.approx(math.pi)
    assert half.reverse().sweep == pytest.approx(-math.pi)
    assert half.length == pytest.approx(math.pi)
    assert half.contains_angle(math.pi / 2)
    assert not half.contains_angle(-math.pi / 2)

    full = Arc(Point(2.0, 0.0), Point(0.0, 0.0), Point(2.0, 0.0))
    assert full.sweep == pytest.approx(2 * math.pi)


def test_arc_discretize_pins_endpoints():
    arc = Arc(Point(1.0, 0.0), Point(0.0, 0.0), Point(0.0, 1.0))
    pts = arc.discretize(max_length=0.05)
    assert tuple(pts[0]) == (1.0, 0.0)
    assert tuple(pts[-1]) == (0.0, 1.0)
    radii = np.hypot(pts[:, 0], pts[:, 1])
    assert np.allclose(radii, 1.0)


def test_from_vertices_drops_repeated_closing_vertex():
    loop = BoundaryLoop.from_vertices([(0, 0), (1, 0), (1, 1), (0, 0)])
    assert len(loop.entities) == 3
    assert loop.entities[-1].end == loop.entities[0].start


def test_polygon_signed_area_orientation():
    square = np.array([(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)])
    assert polygon_signed_area(square) == pytest.approx(1.0)
    assert polygon_signed_area(square[::-1]) == pytest.approx(-1.0)


def test_polyline_self_intersects():
    square = np.array([(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)])
    bowtie = np.array([(0.0, 0.0), (2.0, 2.0), (2.0, 0.0), (0.0, 1.0)])
    assert not polyline_self_intersects(square[:, 0].copy(), square[:, 1].copy())
    assert polyline_self_intersects(bowtie[:, 0].copy(), bowtie[:, 1].copy())


def test_ray_circle_parameters():
    assert ray_circle_parameters(0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0) == pytest.approx((-1.0, 1.0))
    assert ray_circle_parameters(0.0, 5.0, 1.0, 0.0, 0.0, 0.0, 1.0) is None


def test_ellipse_to_polyline():
    pts = ellipse_to_polyline(Point(0.0, 0.0), 2.0, 1.0, 64)
    assert pts.shape == (64, 2)
    assert np.allclose((pts[:, 0] / 2.0) ** 2 + pts[:, 1] ** 2, 1.0)


@pytest.mark.parametrize("name", sorted(TABLE_CATALOG))
def test_catalog_tables_build_valid_boundaries(name):
    boundary = build_boundary(TABLE_CATALOG[name])
    assert boundary.area > 0.0
    xmin, ymin, xmax, ymax = boundary.bounds
    center = (0.5 * (xmin + xmax), 0.5 * (ymin + ymax))
    if name != "l-shape":
        assert boundary.contains(center)


def test_table_areas_and_bounds():
    square = build_boundary(TABLE_CATALOG["unit-square"])
    assert isinstance(square, SegmentBoundary)
    assert square.area == pytest.approx(1.0)
    assert square.bounds == pytest.approx((0.0, 0.0, 1.0, 1.0))

    circle = build_boundary(TABLE_CATALOG["unit-circle"])
    assert isinstance(circle, CircleBoundary)
    assert circle.area == pytest.approx(math.pi)

    stadium = build_boundary(TABLE_CATALOG["bunimovich-stadium"])
    assert stadium.area == pytest.approx(4.0 + math.pi, rel=1e-3)
    assert stadium.bounds == pytest.approx((-2.0, -1.0, 2.0, 1.0))

    mushroom = build_boundary(TABLE_CATALOG["mushroom"])
    assert mushroom.bounds == pytest.approx((-1.0, -1.0, 1.0, 1.0))
    assert mushroom.area == pytest.approx(math.pi / 2 + 0.5, rel=1e-3)


def test_regular_polygon_has_flat_bottom():
    loop = TableOutline(TableShape.REGULAR_POLYGON, (6, 1.0)).get_loop()
    assert len(loop.entities) == 6
    first = loop.entities[0]
    assert first.start.y == pytest.approx(first.end.y)
    assert first.start.y < 0.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"shape": TableShape.SQUARE, "dimensions": (1.0, 2.0)},
        {"shape": TableShape.CIRCLE, "dimensions": (-1.0,)},
        {"shape": TableShape.POLYGON, "vertices": ((0.0, 0.0), (1.0, 0.0))},
        {"shape": "triangle", "dimensions": (1.0,)},
    ],
)
def test_invalid_outlines_raise(kwargs):
    with pytest.raises(ValueError):
        TableOutline(**kwargs)


def test_invalid_shape_parameters_raise_on_loop():
    with pytest.raises(ValueError):
        TableOutline(TableShape.CORRIDOR, (0.1, 1.0)).get_loop()
    with pytest.raises(ValueError):
        TableOutline(TableShape.REGULAR_POLYGON, (2.5, 1.0)).get_loop()
    with pytest.raises(ValueError):
        TableOutline(TableShape.MUSHROOM, (1.0, 3.0, 1.0)).get_loop()
