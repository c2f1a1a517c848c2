"""
Tests for corridor construction and path distances.
"""

import pytest

from coordinator.geometry import (
    METERS_PER_DEGREE,
    build_corridor,
    corridor_for_flight_path,
    corridor_for_waypoints,
    path_length_m,
)
from coordinator.models import FlightPathPoint, Position, Waypoint


def wp(lat, lon):
    return Waypoint(lat=lat, lon=lon)


def assert_vertices(actual, expected):
    assert len(actual) == len(expected)
    for (lat, lon), (exp_lat, exp_lon) in zip(actual, expected):
        assert lat == pytest.approx(exp_lat)
        assert lon == pytest.approx(exp_lon)


class TestBuildCorridor:
    """Corridor ring around a waypoint path."""

    def test_straight_east_path(self):
        polygon = build_corridor([wp(0, 0), wp(0, 1)], 0.1)
        # Left side is north of an eastbound path
        assert_vertices(polygon, [(0.1, 0), (0.1, 1), (-0.1, 1), (-0.1, 0)])

    def test_straight_north_path(self):
        polygon = build_corridor([wp(0, 0), wp(1, 0)], 0.5)
        assert_vertices(polygon, [(0, -0.5), (1, -0.5), (1, 0.5), (0, 0.5)])

    @pytest.mark.parametrize("count", [2, 3, 5, 10])
    def test_vertex_count_is_twice_path_length(self, count):
        path = [wp(47.0 + i * 0.001, 8.0 + (i % 2) * 0.001) for i in range(count)]
        assert len(build_corridor(path, 0.0005)) == 2 * count

    @pytest.mark.parametrize("path", [[], [wp(1, 1)]])
    def test_short_path_is_empty(self, path):
        assert build_corridor(path, 0.1) == []

    @pytest.mark.parametrize("half_width", [0, -1.0])
    def test_non_positive_half_width(self, half_width):
        with pytest.raises(ValueError):
            build_corridor([wp(0, 0), wp(0, 1)], half_width)

    def test_repeated_point_reuses_previous_direction(self):
        polygon = build_corridor([wp(0, 0), wp(0, 1), wp(0, 1), wp(0, 2)], 0.1)
        assert len(polygon) == 8
        assert all(lat == pytest.approx(0.1) for lat, _ in polygon[:4])
        assert all(lat == pytest.approx(-0.1) for lat, _ in polygon[4:])

    def test_leading_repeated_point_uses_next_direction(self):
        polygon = build_corridor([wp(0, 0), wp(0, 0), wp(0, 1)], 0.1)
        assert_vertices(polygon, [(0.1, 0), (0.1, 0), (0.1, 1), (-0.1, 1), (-0.1, 0), (-0.1, 0)])

    def test_single_repeated_point_is_empty(self):
        assert build_corridor([wp(5, 5), wp(5, 5), wp(5, 5)], 0.1) == []

    def test_deterministic(self):
        path = [wp(47.39, 8.54), wp(47.40, 8.55), wp(47.41, 8.54)]
        assert build_corridor(path, 0.001) == build_corridor(path, 0.001)

    def test_closed_ring_order(self):
        path = [wp(0, 0), wp(0, 1), wp(1, 1)]
        polygon = build_corridor(path, 0.1)
        # Forward-left then reverse-right: last vertex is the right side of the start
        assert polygon[0] == pytest.approx((0.1, 0))
        assert polygon[-1] == pytest.approx((-0.1, 0))


class TestMetricCorridor:
    """Half widths given in metres."""

    def test_metres_converted_to_degrees(self):
        polygon = corridor_for_waypoints([wp(0, 0), wp(0, 1)], METERS_PER_DEGREE / 10)
        assert_vertices(polygon, [(0.1, 0), (0.1, 1), (-0.1, 1), (-0.1, 0)])

    def test_flight_path_corridor(self):
        points = [FlightPathPoint(Position(0, i * 0.01, 10), timestamp=i) for i in range(4)]
        assert len(corridor_for_flight_path(points, 25.0)) == 8


class TestPathLength:

    def test_one_degree_of_latitude(self):
        assert path_length_m([wp(0, 0), wp(1, 0)]) == pytest.approx(111195, rel=1e-3)

    def test_empty_and_single_point(self):
        assert path_length_m([]) == 0.0
        assert path_length_m([wp(1, 1)]) == 0.0
