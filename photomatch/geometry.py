"""Geometric queries in 2D and 3D.

This module implements the stateless intersection and projection algorithms
that drive every interactive tool: point-to-ray projection, line-line and
ray-ray closest approach, ray-plane and ray-polygon intersection, point in
polygon tests and ray-box intersection.

Degenerate configurations (parallel lines, zero length directions) never
raise: they come back as invalid results carrying a reason.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence, Union

from photomatch.primitives import (
    ClosestPoints3D,
    Line2D,
    LineIntersection2D,
    Plane3D,
    Ray2D,
    Ray3D,
    RayPlaneIntersection,
    RayPolygonIntersection,
    VectorPlaneProjection,
    VectorRayProjection2D,
    VectorRayProjection3D,
    invalid_line_intersection,
    invalid_plane_intersection,
)
from photomatch.vectors import EPSILON, Matrix3x3, Vector2, Vector3, solve_linear_system

logger = logging.getLogger(__name__)


def project_vector_to_ray(
    vector: Union[Vector2, Vector3], ray: Union[Ray2D, Ray3D]
) -> Union[VectorRayProjection2D, VectorRayProjection3D]:
    """Project a point orthogonally onto the infinite line of a ray.

    Args:
        vector: Point to project (2D or 3D, matching the ray)
        ray: Ray defining the line

    Returns:
        Projection result with the projected point, its distance from the
        original point and its position along the ray (0 at the start,
        negative behind it)
    """
    result_type = VectorRayProjection3D if isinstance(ray, Ray3D) else VectorRayProjection2D
    invalid = Vector3.invalid() if isinstance(ray, Ray3D) else Vector2.invalid()

    if not ray.valid:
        return result_type(invalid, math.nan, math.nan, "invalid ray")
    if not vector.valid:
        return result_type(invalid, math.nan, math.nan, "invalid point")

    t = (vector - ray.start).dot(ray.direction)
    projected = ray.start + ray.direction * t
    return result_type(projected, (projected - vector).magnitude, t)


def get_line_line_intersection(line_a: Line2D, line_b: Line2D) -> LineIntersection2D:
    """Intersect two 2D lines.

    Uses the determinant form from
    https://en.wikipedia.org/wiki/Line%E2%80%93line_intersection.

    Args:
        line_a: First line
        line_b: Second line

    Returns:
        Intersection point with the relative position on each line (0 at
        start, 1 at end); invalid when the lines are parallel
    """
    x1, y1 = line_a.start.x, line_a.start.y
    x2, y2 = line_a.end.x, line_a.end.y
    x3, y3 = line_b.start.x, line_b.start.y
    x4, y4 = line_b.end.x, line_b.end.y

    denominator = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)

    # Relative to the segment lengths so the test does not depend on scale
    scale = line_a.length * line_b.length
    if not (scale > 0.0) or abs(denominator) <= EPSILON * scale:
        return invalid_line_intersection("parallel lines")

    t = ((x1 - x3) * (y3 - y4) - (y1 - y3) * (x3 - x4)) / denominator
    u = ((y1 - y2) * (x1 - x3) - (x1 - x2) * (y1 - y3)) / denominator

    return LineIntersection2D(Vector2(x1 + t * (x2 - x1), y1 + t * (y2 - y1)), t, u)


def get_ray_inside_box_intersection(ray: Ray2D, corner1: Vector2, corner2: Vector2) -> Vector2:
    """Find where a ray leaves an axis-aligned box.

    Args:
        ray: 2D ray
        corner1: Box corner with the smaller coordinates
        corner2: Box corner with the bigger coordinates

    Returns:
        The point where the ray crosses the box boundary in its forward
        direction, or an invalid vector if it does not reach the box
    """
    if corner1.x > corner2.x or corner1.y > corner2.y:
        raise ValueError("corner1 needs to have smaller coordinates than corner2")

    if not ray.valid:
        return Vector2.invalid()

    top_left = Vector2(corner1.x, corner1.y)
    top_right = Vector2(corner2.x, corner1.y)
    bottom_left = Vector2(corner1.x, corner2.y)
    bottom_right = Vector2(corner2.x, corner2.y)

    sides = []
    if ray.start.y > corner1.y:
        sides.append(Line2D(top_left, top_right))
    if ray.start.y < corner2.y:
        sides.append(Line2D(bottom_left, bottom_right))
    if ray.start.x > corner1.x:
        sides.append(Line2D(top_left, bottom_left))
    if ray.start.x < corner2.x:
        sides.append(Line2D(top_right, bottom_right))

    ray_line = ray.as_line()
    for side in sides:
        intersection = get_line_line_intersection(ray_line, side)
        if not intersection.valid:
            continue
        if intersection.line_a_relative >= 0 and 0 <= intersection.line_b_relative <= 1:
            return intersection.intersection

    return Vector2.invalid()


def is_point_inside_polygon(point: Vector2, vertices: Sequence[Vector2]) -> bool:
    """Even-odd test of a point against a simple polygon.

    Args:
        point: Point to test
        vertices: Polygon vertices in order (closing edge implied)

    Returns:
        True if the point is inside the polygon
    """
    inside = False
    n = len(vertices)
    if n < 3:
        return False

    j = n - 1
    for i in range(n):
        vi, vj = vertices[i], vertices[j]
        if (vi.y > point.y) != (vj.y > point.y):
            x_cross = vi.x + (point.y - vi.y) * (vj.x - vi.x) / (vj.y - vi.y)
            if point.x < x_cross:
                inside = not inside
        j = i

    return inside


def _is_right(line_start: Vector2, line_end: Vector2, point: Vector2) -> bool:
    return (line_end - line_start).cross(point - line_start) <= 0


def is_point_inside_triangle(point: Vector2, a: Vector2, b: Vector2, c: Vector2) -> bool:
    """Test a point against a triangle of either winding, boundary included."""
    if _is_right(a, b, c):
        return _is_right(a, b, point) and _is_right(b, c, point) and _is_right(c, a, point)
    return _is_right(a, c, point) and _is_right(c, b, point) and _is_right(b, a, point)


def is_clockwise(vertices: Sequence[Vector2]) -> bool:
    """Whether a (possibly non-convex) polygon is wound clockwise.

    Clockwise is meant in a y-up coordinate system (shoelace sign test).
    """
    total = 0.0
    for i, end in enumerate(vertices):
        start = vertices[i - 1]
        total += (end.x - start.x) * (end.y + start.y)
    return total > 0


def polygon_area(vertices: Sequence[Vector2]) -> float:
    """Unsigned shoelace area of a simple polygon."""
    total = 0.0
    for i, end in enumerate(vertices):
        start = vertices[i - 1]
        total += start.x * end.y - end.x * start.y
    return abs(total) / 2.0


def get_ray_ray_closest(ray_a: Ray3D, ray_b: Ray3D) -> ClosestPoints3D:
    """Find the closest points between two 3D rays (treated as lines).

    The segment between the closest points is perpendicular to both rays,
    so with ``n`` the common normal:

        ray_a.start + t1 * ray_a.direction + t3 * n = ray_b.start + t2 * ray_b.direction

    which is a 3x3 linear system in (t1, t2, t3).

    Args:
        ray_a: First ray
        ray_b: Second ray

    Returns:
        Closest point on each ray, their relative positions along the rays
        and the distance between them. Parallel rays give an invalid result
        whose distance is the constant separation of the lines.
    """
    nan = math.nan
    if not (ray_a.valid and ray_b.valid):
        return ClosestPoints3D(Vector3.invalid(), Vector3.invalid(), nan, nan, nan, "invalid ray")

    cross = ray_b.direction.cross(ray_a.direction)
    if cross.magnitude < EPSILON:
        separation = project_vector_to_ray(ray_b.start, ray_a).distance
        return ClosestPoints3D(Vector3.invalid(), Vector3.invalid(), separation, nan, nan, "parallel rays")

    tangent = cross.normalized()
    lhs = Matrix3x3.from_columns(ray_a.direction, -ray_b.direction, tangent)
    rhs = ray_b.start - ray_a.start
    solution = solve_linear_system(lhs, rhs)
    if not solution.valid:
        return ClosestPoints3D(Vector3.invalid(), Vector3.invalid(), nan, nan, nan, "singular system")

    return ClosestPoints3D(
        ray_a_closest=ray_a.point_at(solution.x),
        ray_b_closest=ray_b.point_at(solution.y),
        distance=abs(solution.z),
        ray_a_relative=solution.x,
        ray_b_relative=solution.y,
    )


def project_vector_to_plane(vector: Vector3, plane: Plane3D) -> VectorPlaneProjection:
    """Project a point onto a plane.

    Args:
        vector: Point to project
        plane: Target plane

    Returns:
        Projected point and the signed distance, positive on the side the
        plane normal points to
    """
    if not (plane.valid and vector.valid):
        return VectorPlaneProjection(Vector3.invalid(), math.nan, "invalid input")

    signed_distance = (vector - plane.point).dot(plane.normal)
    return VectorPlaneProjection(vector - plane.normal * signed_distance, signed_distance)


def get_ray_plane_intersection(ray: Ray3D, plane: Plane3D) -> RayPlaneIntersection:
    """Intersect a ray with a plane.

    See https://en.wikipedia.org/wiki/Line%E2%80%93plane_intersection.

    Args:
        ray: Ray to intersect
        plane: Plane to intersect with

    Returns:
        Intersection point and its position along the ray (negative when
        behind the ray start); invalid when the ray is parallel to the plane
    """
    if not (ray.valid and plane.valid):
        return invalid_plane_intersection("invalid input")

    denominator = ray.direction.dot(plane.normal)
    if abs(denominator) < EPSILON:
        return invalid_plane_intersection("ray parallel to plane")

    d = (plane.point - ray.start).dot(plane.normal) / denominator
    return RayPlaneIntersection(ray.point_at(d), d)


def flatten_to_plane(points: Sequence[Vector3], normal: Vector3) -> List[Vector2]:
    """Rotate points so the normal faces +Z and drop the Z coordinate."""
    rotation = Matrix3x3.rotate_align(normal, Vector3(0.0, 0.0, 1.0))
    return [(rotation @ p).xy() for p in points]


def get_ray_polygon_intersection(
    ray: Ray3D,
    vertices: Sequence[Vector3],
    normal: Vector3,
    check_inside: bool = False,
) -> RayPolygonIntersection:
    """Intersect a ray with the supporting plane of a planar polygon.

    Args:
        ray: Ray to intersect
        vertices: Polygon vertices, all lying in one plane
        normal: Polygon plane normal
        check_inside: Also test whether the intersection lies inside the
            polygon (in the polygon's own plane)

    Returns:
        Intersection with the polygon plane and its position along the ray;
        ``intersected_polygon`` is set only when check_inside is requested
    """
    if len(vertices) < 3:
        return RayPolygonIntersection(Vector3.invalid(), math.nan, None, "polygon needs 3 vertices")

    unit_normal = normal.normalized()
    plane_hit = get_ray_plane_intersection(ray, Plane3D(vertices[0], unit_normal))
    if not plane_hit.valid:
        return RayPolygonIntersection(Vector3.invalid(), math.nan, None, plane_hit.reason)

    inside = None
    if check_inside:
        flat = flatten_to_plane([plane_hit.intersection, *vertices], unit_normal)
        inside = is_point_inside_polygon(flat[0], flat[1:])

    return RayPolygonIntersection(plane_hit.intersection, plane_hit.ray_relative, inside)
