# Corridor Geometry Engine
# File: coordinator/geometry.py

"""
Corridor polygons around waypoint paths.

The corridor is built in the (lon, lat) plane as a local planar
approximation; no geodesic correction is applied. Every function here
is pure: the same path always yields the same vertex sequence.
"""

import math
from typing import List, Optional, Sequence, Tuple

from coordinator.models import Waypoint

METERS_PER_DEGREE = 111320.0
EARTH_RADIUS_M = 6371000.0

Vertex = Tuple[float, float]
Direction = Tuple[float, float]


def _unit_direction(start, end) -> Optional[Direction]:
    """Unit vector from start to end as (dlon, dlat), None for a zero-length segment"""
    dx = end.lon - start.lon
    dy = end.lat - start.lat
    length = math.sqrt(dx * dx + dy * dy)
    if length == 0.0:
        return None
    return dx / length, dy / length


def _segment_directions(path: Sequence) -> List[Optional[Direction]]:
    """
    Direction of every segment, with zero-length segments resolved.

    A degenerate segment reuses the previous segment's direction. Leading
    degenerate segments take the first usable direction after them. If no
    segment has a length the result is all None.
    """
    directions = [_unit_direction(path[i], path[i + 1]) for i in range(len(path) - 1)]

    previous = None
    for i, direction in enumerate(directions):
        if direction is None:
            directions[i] = previous
        else:
            previous = direction

    following = None
    for i in range(len(directions) - 1, -1, -1):
        if directions[i] is None:
            directions[i] = following
        else:
            following = directions[i]

    return directions


def _offset(point, direction: Direction, half_width: float) -> Vertex:
    # Left-hand perpendicular of (dx, dy) is (-dy, dx)
    dx, dy = direction
    offset_lon = -dy * half_width
    offset_lat = dx * half_width
    return point.lat + offset_lat, point.lon + offset_lon


def build_corridor(path: Sequence, half_width: float) -> List[Vertex]:
    """
    Build a closed corridor ring around a waypoint path.

    Args:
        path: Ordered points exposing ``lat`` and ``lon``
        half_width: Offset from the path centreline, in degrees

    Returns:
        ``2 * len(path)`` (lat, lon) vertices: the left side walked forward
        followed by the right side walked back, or an empty list when the
        path has fewer than two points or no segment with a length.
    """
    if not half_width > 0:
        raise ValueError(f"half_width must be positive, got {half_width}")
    if len(path) < 2:
        return []

    directions = _segment_directions(path)
    if directions[0] is None:
        return []

    polygon: List[Vertex] = []

    # Forward pass: left side
    for i in range(len(path) - 1):
        if i == 0:
            polygon.append(_offset(path[0], directions[0], half_width))
        polygon.append(_offset(path[i + 1], directions[i], half_width))

    # Reverse pass: segments walked backwards give the right side
    for i in range(len(path) - 1, 0, -1):
        dx, dy = directions[i - 1]
        reverse = (-dx, -dy)
        polygon.append(_offset(path[i], reverse, half_width))
        if i == 1:
            polygon.append(_offset(path[0], reverse, half_width))

    return polygon


def meters_to_degrees(meters: float) -> float:
    """Convert a distance in metres to degrees of latitude"""
    return meters / METERS_PER_DEGREE


def corridor_for_waypoints(waypoints: Sequence[Waypoint], half_width_m: float) -> List[Vertex]:
    """Corridor around a mission with its half width given in metres"""
    return build_corridor(waypoints, meters_to_degrees(half_width_m))


def corridor_for_flight_path(points: Sequence, half_width_m: float) -> List[Vertex]:
    """Corridor around the live flight path buffer"""
    return corridor_for_waypoints([point.position for point in points], half_width_m)


def haversine_distance(start, end) -> float:
    """Great-circle distance in metres between two points"""
    lat1, lon1 = math.radians(start.lat), math.radians(start.lon)
    lat2, lon2 = math.radians(end.lat), math.radians(end.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def path_length_m(path: Sequence) -> float:
    """Total path distance in metres"""
    total = 0.0
    for i in range(len(path) - 1):
        total += haversine_distance(path[i], path[i + 1])
    return total
