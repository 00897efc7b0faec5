"""Ear-clipping triangulation of planar faces.

Faces are flattened into their own plane, then ears are clipped one at a
time, smallest angle first. Whenever a new triangle comes out thin (smallest
angle below 30 degrees) the edge opposite its largest angle is flipped with
the neighbouring triangle if that makes the pair less thin.
"""

from __future__ import annotations

import logging
import math
from typing import FrozenSet, List, Sequence, Tuple

from photomatch.geometry import flatten_to_plane, is_clockwise, is_point_inside_triangle
from photomatch.vectors import EPSILON, Vector2, Vector3

logger = logging.getLogger(__name__)

IndexTriangle = Tuple[int, int, int]

MIN_TRIANGLE_ANGLE = math.pi / 6


def vertex_angle(prev: Vector2, act: Vector2, next_: Vector2) -> float:
    """Signed interior angle at a polygon vertex, positive when convex for CCW order."""
    ab = prev - act
    cb = next_ - act
    return math.atan2(cb.x * ab.y - cb.y * ab.x, ab.dot(cb))


def triangle_angles(a: Vector2, b: Vector2, c: Vector2) -> Tuple[float, float, float]:
    """Interior angles of a triangle at a, b and c."""

    def angle(p: Vector2, q: Vector2, r: Vector2) -> float:
        u = (q - p).normalized()
        v = (r - p).normalized()
        if not (u.valid and v.valid):
            return 0.0
        return math.acos(max(-1.0, min(1.0, u.dot(v))))

    return angle(a, b, c), angle(b, c, a), angle(c, a, b)


def _signed_area(a: Vector2, b: Vector2, c: Vector2) -> float:
    return (b - a).cross(c - a) / 2.0


def _find_ear(points: Sequence[Vector2], remaining: List[int]) -> int:
    """Position in `remaining` of the smallest-angle ear, or -1."""
    best = -1
    best_angle = math.inf
    n = len(remaining)
    for i in range(n):
        prev_idx, act_idx, next_idx = remaining[i - 1], remaining[i], remaining[(i + 1) % n]
        prev, act, next_ = points[prev_idx], points[act_idx], points[next_idx]

        angle = vertex_angle(prev, act, next_)
        if not (EPSILON < angle < math.pi - EPSILON):
            continue
        if angle >= best_angle:
            continue

        if any(
            is_point_inside_triangle(points[other], prev, act, next_)
            for other in remaining
            if other not in (prev_idx, act_idx, next_idx)
        ):
            continue

        best = i
        best_angle = angle
    return best


def _edge_key(a: int, b: int) -> FrozenSet[int]:
    return frozenset((a, b))


def _has_edge(triangle: IndexTriangle, edge: FrozenSet[int]) -> bool:
    return any(_edge_key(triangle[i - 1], triangle[i]) == edge for i in range(3))


def _try_edge_swap(points: Sequence[Vector2], triangles: List[IndexTriangle], index: int) -> None:
    """Flip the longest edge of a thin triangle if it improves the pair."""
    triangle = triangles[index]
    corners = [points[i] for i in triangle]
    angles = triangle_angles(*corners)
    if min(angles) >= MIN_TRIANGLE_ANGLE:
        return

    # Rotate so the largest angle comes first: (last, start, end)
    k = angles.index(max(angles))
    last, start, end = triangle[k], triangle[(k + 1) % 3], triangle[(k + 2) % 3]

    shared = _edge_key(start, end)
    for other_index, other in enumerate(triangles):
        if other_index == index or not _has_edge(other, shared):
            continue
        other_last = next(v for v in other if v not in shared)

        first = (last, start, other_last)
        second = (other_last, end, last)
        if _signed_area(*(points[i] for i in first)) <= 0 or _signed_area(*(points[i] for i in second)) <= 0:
            return

        old_min = min(min(angles), min(triangle_angles(*(points[i] for i in other))))
        new_min = min(
            min(triangle_angles(*(points[i] for i in first))),
            min(triangle_angles(*(points[i] for i in second))),
        )
        if old_min < new_min:
            triangles[index] = first
            triangles[other_index] = second
        return


def triangulate_polygon(points: Sequence[Vector2]) -> List[IndexTriangle]:
    """Triangulate a simple polygon.

    Args:
        points: Polygon vertices in order (either winding)

    Returns:
        Triangles as index triples into points, counter-clockwise
    """
    n = len(points)
    if n < 3:
        return []

    order = list(range(n))
    if is_clockwise(points):
        order.reverse()

    remaining = order
    triangles: List[IndexTriangle] = []
    while len(remaining) > 3:
        ear = _find_ear(points, remaining)
        if ear < 0:
            logger.warning(f"No ear found with {len(remaining)} vertices left, falling back to a fan")
            for i in range(1, len(remaining) - 1):
                triangles.append((remaining[0], remaining[i], remaining[i + 1]))
            return triangles

        m = len(remaining)
        triangles.append((remaining[ear - 1], remaining[ear], remaining[(ear + 1) % m]))
        _try_edge_swap(points, triangles, len(triangles) - 1)
        remaining = remaining[:ear] + remaining[ear + 1:]

    triangles.append((remaining[0], remaining[1], remaining[2]))
    _try_edge_swap(points, triangles, len(triangles) - 1)
    return triangles


def triangulate_face(positions: Sequence[Vector3], normal: Vector3) -> List[IndexTriangle]:
    """Triangulate a planar 3D polygon in its own plane.

    Args:
        positions: Polygon vertices
        normal: Polygon normal; vertices are counter-clockwise about it

    Returns:
        Triangles as index triples into positions
    """
    return triangulate_polygon(flatten_to_plane(positions, normal))
