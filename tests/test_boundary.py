import math

import numpy as np
import pytest

from memorybilliards.errors import BoundaryError
from memorybilliards.model.boundary import CircleBoundary, SegmentBoundary, build_boundary, reflect
from memorybilliards.model.geometry_primitives import BoundaryLoop, Line, Point
from memorybilliards.model.tables import TABLE_CATALOG


@pytest.fixture
def square():
    return build_boundary(TABLE_CATALOG["unit-square"])


@pytest.fixture
def stadium():
    return build_boundary(TABLE_CATALOG["bunimovich-stadium"])


def test_reflection_law():
    rng = np.random.default_rng(42)
    for _ in range(200):
        a, b = rng.uniform(0.0, 2.0 * math.pi, size=2)
        d = (math.cos(a), math.sin(a))
        n = (math.cos(b), math.sin(b))
        r = reflect(d, n)
        d_dot_n = d[0] * n[0] + d[1] * n[1]
        assert math.hypot(*r) == pytest.approx(1.0, abs=1e-12)
        assert r[0] * n[0] + r[1] * n[1] == pytest.approx(-d_dot_n, abs=1e-12)


def test_reflect_renormalizes_drifted_direction():
    r = reflect((1.0 + 1e-9, 0.0), (0.0, 1.0))
    assert math.hypot(*r) == pytest.approx(1.0, abs=1e-15)


def test_reflect_zero_direction_raises():
    with pytest.raises(ValueError):
        reflect((0.0, 0.0), (1.0, 0.0))


def test_empty_boundary_raises():
    with pytest.raises(BoundaryError, match="no segments"):
        SegmentBoundary(BoundaryLoop())


def test_open_curve_raises():
    loop = BoundaryLoop([
        Line(Point(0.0, 0.0), Point(1.0, 0.0)),
        Line(Point(1.0, 0.0), Point(1.0, 1.0)),
        Line(Point(1.0, 1.0), Point(0.0, 1.0)),
    ])
    with pytest.raises(BoundaryError, match="not closed"):
        SegmentBoundary(loop)


def test_self_intersecting_boundary_raises():
    loop = BoundaryLoop.from_vertices([(0.0, 0.0), (2.0, 2.0), (2.0, 0.0), (0.0, 1.0)])
    with pytest.raises(BoundaryError, match="self-intersecting"):
        SegmentBoundary(loop)


def test_zero_area_boundary_raises():
    loop = BoundaryLoop.from_vertices([(0.0, 0.0), (1.0, 0.0), (2.0, 0.0)])
    with pytest.raises(BoundaryError, match="zero area"):
        SegmentBoundary(loop)


def test_zero_length_segment_raises():
    loop = BoundaryLoop.from_vertices([(0.0, 0.0), (0.0, 0.0), (1.0, 0.0), (0.0, 1.0)])
    with pytest.raises(BoundaryError, match="zero length"):
        SegmentBoundary(loop)


def test_boundary_error_is_value_error():
    with pytest.raises(ValueError):
        CircleBoundary(Point(0.0, 0.0), 0.0)


def test_clockwise_loop_is_reversed():
    boundary = SegmentBoundary(BoundaryLoop.from_vertices([(0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0)]))
    assert boundary.area == pytest.approx(1.0)
    event = boundary.intersect((0.5, 0.5), (1.0, 0.0))
    assert event.normal == pytest.approx((1.0, 0.0))
    assert event.point == pytest.approx((1.0, 0.5))


def test_intersect_returns_exit_crossing(square):
    event = square.intersect((0.25, 0.5), (0.0, 1.0))
    assert event.point == pytest.approx((0.25, 1.0))
    assert event.normal == pytest.approx((0.0, 1.0))
    assert event.distance == pytest.approx(0.5)
    assert event.offset_normal == event.normal


def test_intersect_respects_max_distance(square):
    assert square.intersect((0.25, 0.5), (0.0, 1.0), max_distance=0.4) is None


def test_vertex_tie_picks_first_segment_in_traversal_order(square):
    d = 1.0 / math.sqrt(2.0)
    event = square.intersect((0.5, 0.5), (d, d))
    # Edges run bottom, right, top, left; the right edge comes first
    assert event.segment_index == 1
    assert event.normal == pytest.approx((1.0, 0.0))
    assert event.point == pytest.approx((1.0, 1.0))
    assert event.distance == pytest.approx(math.sqrt(0.5))
    assert event.offset_normal == pytest.approx((d, d))

    # The reflected direction points back into the table
    r = reflect((d, d), event.normal)
    assert r[0] * event.normal[0] + r[1] * event.normal[1] < 0.0


def test_circle_intersect():
    circle = CircleBoundary(Point(0.0, 0.0), 1.0)
    event = circle.intersect((0.5, 0.0), (-1.0, 0.0))
    assert event.point == pytest.approx((-1.0, 0.0))
    assert event.distance == pytest.approx(1.5)
    assert event.normal == pytest.approx((-1.0, 0.0))


def test_arc_intersect_through_mushroom_stem():
    mushroom = build_boundary(TABLE_CATALOG["mushroom"])
    event = mushroom.intersect((0.0, -0.5), (0.0, 1.0))
    assert event.point == pytest.approx((0.0, 1.0))
    assert event.distance == pytest.approx(1.5)
    assert event.normal == pytest.approx((0.0, 1.0))


def test_stadium_cap_normal_is_radial(stadium):
    event = stadium.intersect((1.0, 0.0), (1.0, 0.0))
    assert event.point == pytest.approx((2.0, 0.0))
    assert event.normal == pytest.approx((1.0, 0.0))


def test_contains(square, stadium):
    assert square.contains((0.5, 0.5))
    assert square.contains((1.0, 0.5))
    assert not square.contains((1.1, 0.5))
    assert square.contains((1.05, 0.5), tolerance=0.1)

    assert stadium.contains((1.9, 0.0))
    assert not stadium.contains((1.9, 0.9))
    assert not stadium.contains((0.0, 1.5))


def test_distance_and_normal(square):
    assert square.distance_to((0.5, 0.5)) == pytest.approx(0.5)
    assert square.distance_to((0.5, 0.9)) == pytest.approx(0.1)
    assert square.normal_at((0.5, 0.9)) == pytest.approx((0.0, 1.0))

    circle = CircleBoundary(Point(0.0, 0.0), 2.0)
    assert circle.distance_to((0.0, 0.5)) == pytest.approx(1.5)
    assert circle.normal_at((0.0, 0.5)) == pytest.approx((0.0, 1.0))


def test_sample_interior(stadium):
    rng = np.random.default_rng(1)
    for _ in range(50):
        p = stadium.sample_interior(rng, clearance=0.01)
        assert stadium.contains(p)
        assert stadium.distance_to(p) > 0.01
