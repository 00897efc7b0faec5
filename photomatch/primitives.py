"""Geometric primitives and result types.

Lines, rays and planes in 2D and 3D are immutable value types. Ray directions
and plane normals are normalized on construction, so relative positions along
a ray are measured in world units. Every intersection or projection query
returns one of the result dataclasses defined here: either the geometric value
or a degeneracy reason, never an exception.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from photomatch.vectors import Vector2, Vector3


@dataclass(frozen=True)
class Line2D:
    """Line segment in 2D given by its endpoints."""

    start: Vector2
    end: Vector2

    @classmethod
    def invalid(cls) -> Line2D:
        return cls(Vector2.invalid(), Vector2.invalid())

    @property
    def valid(self) -> bool:
        return self.start.valid and self.end.valid

    @property
    def length(self) -> float:
        return (self.end - self.start).magnitude

    def with_start(self, start: Vector2) -> Line2D:
        return Line2D(start, self.end)

    def with_end(self, end: Vector2) -> Line2D:
        return Line2D(self.start, end)

    def as_ray(self) -> Ray2D:
        return Ray2D(self.start, self.end - self.start)


@dataclass(frozen=True)
class Ray2D:
    """Ray in 2D from a start point along a unit direction."""

    start: Vector2
    direction: Vector2

    def __post_init__(self):
        object.__setattr__(self, "direction", self.direction.normalized())

    @classmethod
    def invalid(cls) -> Ray2D:
        return cls(Vector2.invalid(), Vector2.invalid())

    @property
    def valid(self) -> bool:
        return self.start.valid and self.direction.valid

    def point_at(self, t: float) -> Vector2:
        return self.start + self.direction * t

    def with_start(self, start: Vector2) -> Ray2D:
        return Ray2D(start, self.direction)

    def with_direction(self, direction: Vector2) -> Ray2D:
        return Ray2D(self.start, direction)

    def as_line(self) -> Line2D:
        return Line2D(self.start, self.start + self.direction)


@dataclass(frozen=True)
class Line3D:
    """Line segment in 3D given by its endpoints."""

    start: Vector3
    end: Vector3

    @classmethod
    def invalid(cls) -> Line3D:
        return cls(Vector3.invalid(), Vector3.invalid())

    @property
    def valid(self) -> bool:
        return self.start.valid and self.end.valid

    @property
    def length(self) -> float:
        return (self.end - self.start).magnitude

    def with_start(self, start: Vector3) -> Line3D:
        return Line3D(start, self.end)

    def with_end(self, end: Vector3) -> Line3D:
        return Line3D(self.start, end)

    def as_ray(self) -> Ray3D:
        return Ray3D(self.start, self.end - self.start)


@dataclass(frozen=True)
class Ray3D:
    """Ray in 3D from a start point along a unit direction."""

    start: Vector3
    direction: Vector3

    def __post_init__(self):
        object.__setattr__(self, "direction", self.direction.normalized())

    @classmethod
    def invalid(cls) -> Ray3D:
        return cls(Vector3.invalid(), Vector3.invalid())

    @property
    def valid(self) -> bool:
        return self.start.valid and self.direction.valid

    def point_at(self, t: float) -> Vector3:
        return self.start + self.direction * t

    def with_start(self, start: Vector3) -> Ray3D:
        return Ray3D(start, self.direction)

    def with_direction(self, direction: Vector3) -> Ray3D:
        return Ray3D(self.start, direction)

    def as_line(self) -> Line3D:
        return Line3D(self.start, self.start + self.direction)


@dataclass(frozen=True)
class Plane3D:
    """Plane through a point with a unit normal."""

    point: Vector3
    normal: Vector3

    def __post_init__(self):
        object.__setattr__(self, "normal", self.normal.normalized())

    @classmethod
    def invalid(cls) -> Plane3D:
        return cls(Vector3.invalid(), Vector3.invalid())

    @property
    def valid(self) -> bool:
        return self.point.valid and self.normal.valid


class _Checked:
    """Validity protocol shared by the result dataclasses."""

    reason: Optional[str]

    @property
    def valid(self) -> bool:
        return self.reason is None


@dataclass(frozen=True)
class LineIntersection2D(_Checked):
    """Intersection of two 2D lines.

    Relative positions are 0 at a line's start and 1 at its end; the
    intersection may lie outside either segment.
    """

    intersection: Vector2
    line_a_relative: float
    line_b_relative: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class VectorRayProjection2D(_Checked):
    projection: Vector2
    distance: float
    ray_relative: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class VectorRayProjection3D(_Checked):
    """Orthogonal projection of a point onto a ray's line."""

    projection: Vector3
    distance: float
    ray_relative: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class VectorPlaneProjection(_Checked):
    """Projection of a point onto a plane.

    The signed distance is positive on the side the plane normal points to.
    """

    projection: Vector3
    signed_distance: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class ClosestPoints3D(_Checked):
    """Closest points between two 3D rays.

    Relative positions are measured along each ray's unit direction. For
    parallel rays the closest points are not unique: the points and
    relatives are invalid, but the distance still holds the separation.
    """

    ray_a_closest: Vector3
    ray_b_closest: Vector3
    distance: float
    ray_a_relative: float
    ray_b_relative: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class RayPlaneIntersection(_Checked):
    intersection: Vector3
    ray_relative: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class RayPolygonIntersection(_Checked):
    """Intersection of a ray with a polygon's supporting plane.

    ``intersected_polygon`` is None unless in-plane containment was
    requested from the query.
    """

    intersection: Vector3
    ray_relative: float
    intersected_polygon: Optional[bool] = None
    reason: Optional[str] = None


def invalid_line_intersection(reason: str) -> LineIntersection2D:
    return LineIntersection2D(Vector2.invalid(), math.nan, math.nan, reason)


def invalid_plane_intersection(reason: str) -> RayPlaneIntersection:
    return RayPlaneIntersection(Vector3.invalid(), math.nan, reason)
