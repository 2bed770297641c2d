"""
Geometry Engine — stateless spatial primitives over drawing points.

All functions are pure and safe to call concurrently:
  - distance / polyline_length        (3D, z defaults to 0)
  - angle_between                     (degrees, clamped arccos)
  - segments_intersect                (parametric, 2D)
  - point_near_segment                (clamped perpendicular distance, 2D)

Known limitation: parallel and colinear segments (denominator ≈ 0) are
reported as non-intersecting. Overlap detection is not attempted.
"""
import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from sanitary_bom import config

# Below this the parametric denominator is treated as zero (parallel lines)
PARALLEL_EPSILON = 1e-10


@dataclass(frozen=True)
class Point:
    x: float
    y: float
    z: float = 0.0

    @classmethod
    def from_mapping(cls, data: Mapping) -> "Point":
        """Build a point from an ``{x, y, z?}`` record; a missing or null z is 0."""
        return cls(float(data["x"]), float(data["y"]), float(data.get("z") or 0.0))

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "z": self.z}


def distance(p1: Point, p2: Point) -> float:
    """Euclidean distance in 3D."""
    dx = p2.x - p1.x
    dy = p2.y - p1.y
    dz = p2.z - p1.z
    return math.sqrt(dx * dx + dy * dy + dz * dz)


def polyline_length(vertices: Sequence[Point]) -> float:
    """Sum of consecutive segment lengths; 0.0 for fewer than two vertices."""
    if len(vertices) < 2:
        return 0.0
    return math.fsum(distance(a, b) for a, b in zip(vertices, vertices[1:]))


def angle_between(p1: Point, vertex: Point, p3: Point) -> float:
    """
    Angle at ``vertex`` formed by p1-vertex-p3, in degrees [0, 180].

    A zero-length leg has no direction; 0.0 is returned in that case.
    """
    v1x, v1y = p1.x - vertex.x, p1.y - vertex.y
    v2x, v2y = p3.x - vertex.x, p3.y - vertex.y
    mag1 = math.hypot(v1x, v1y)
    mag2 = math.hypot(v2x, v2y)
    if mag1 == 0.0 or mag2 == 0.0:
        return 0.0
    cos_angle = (v1x * v2x + v1y * v2y) / (mag1 * mag2)
    cos_angle = max(-1.0, min(1.0, cos_angle))
    return math.degrees(math.acos(cos_angle))


def _parameters(a1: Point, a2: Point, b1: Point, b2: Point) -> Optional[tuple[float, float]]:
    denominator = (b2.y - b1.y) * (a2.x - a1.x) - (b2.x - b1.x) * (a2.y - a1.y)
    if abs(denominator) < PARALLEL_EPSILON:
        return None
    ua = ((b2.x - b1.x) * (a1.y - b1.y) - (b2.y - b1.y) * (a1.x - b1.x)) / denominator
    ub = ((a2.x - a1.x) * (a1.y - b1.y) - (a2.y - a1.y) * (a1.x - b1.x)) / denominator
    return ua, ub


def segments_intersect(a1: Point, a2: Point, b1: Point, b2: Point) -> bool:
    """
    True when segment a1-a2 crosses or touches segment b1-b2.

    Parallel, colinear and zero-length segments return False.
    """
    params = _parameters(a1, a2, b1, b2)
    if params is None:
        return False
    ua, ub = params
    return 0.0 <= ua <= 1.0 and 0.0 <= ub <= 1.0


def intersection_point(a1: Point, a2: Point, b1: Point, b2: Point) -> Optional[Point]:
    """Crossing point of two segments, or None. z is interpolated along a1-a2."""
    params = _parameters(a1, a2, b1, b2)
    if params is None:
        return None
    ua, ub = params
    if not (0.0 <= ua <= 1.0 and 0.0 <= ub <= 1.0):
        return None
    return Point(
        a1.x + ua * (a2.x - a1.x),
        a1.y + ua * (a2.y - a1.y),
        a1.z + ua * (a2.z - a1.z),
    )


def point_near_segment(
    point: Point,
    seg_start: Point,
    seg_end: Point,
    tolerance: float = config.CONNECTION_TOLERANCE,
) -> bool:
    """
    True when the clamped 2D distance from ``point`` to the segment is within
    ``tolerance``. A degenerate segment falls back to point-to-point distance.
    """
    cx = seg_end.x - seg_start.x
    cy = seg_end.y - seg_start.y
    length_sq = cx * cx + cy * cy
    if length_sq == 0.0:
        return math.hypot(point.x - seg_start.x, point.y - seg_start.y) <= tolerance

    t = ((point.x - seg_start.x) * cx + (point.y - seg_start.y) * cy) / length_sq
    t = max(0.0, min(1.0, t))
    nearest_x = seg_start.x + t * cx
    nearest_y = seg_start.y + t * cy
    return math.hypot(point.x - nearest_x, point.y - nearest_y) <= tolerance


def point_touches_polyline(
    point: Point,
    vertices: Sequence[Point],
    tolerance: float = config.CONNECTION_TOLERANCE,
) -> bool:
    return any(
        point_near_segment(point, a, b, tolerance)
        for a, b in zip(vertices, vertices[1:])
    )


def has_angle_near(
    vertices: Sequence[Point],
    target_deg: float = config.BEND_ANGLE_DEG,
    tolerance_deg: float = config.BEND_ANGLE_TOLERANCE_DEG,
) -> bool:
    """True when any interior vertex angle lies within tolerance of ``target_deg``."""
    for i in range(1, len(vertices) - 1):
        angle = angle_between(vertices[i - 1], vertices[i], vertices[i + 1])
        if abs(angle - target_deg) < tolerance_deg:
            return True
    return False


def polylines_intersect(first: Sequence[Point], second: Sequence[Point]) -> bool:
    for a1, a2 in zip(first, first[1:]):
        for b1, b2 in zip(second, second[1:]):
            if segments_intersect(a1, a2, b1, b2):
                return True
    return False


def find_intersection_points(first: Sequence[Point], second: Sequence[Point]) -> list[Point]:
    points = []
    for a1, a2 in zip(first, first[1:]):
        for b1, b2 in zip(second, second[1:]):
            hit = intersection_point(a1, a2, b1, b2)
            if hit is not None:
                points.append(hit)
    return points
