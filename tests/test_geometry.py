"""Tests for geometry module.

This module tests the 2D and 3D intersection and projection queries,
using configurations whose answers are known in closed form.
"""

import math
import sys
import unittest
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photomatch import geometry
from photomatch.primitives import Line2D, Plane3D, Ray2D, Ray3D
from photomatch.vectors import Vector2, Vector3


class TestGeometry2D(unittest.TestCase):
    """Test 2D queries."""

    def test_project_vector_to_ray_2d(self):
        """Test projection of a point behind the start of a 2D ray."""
        ray = Ray2D(Vector2(0, 0), Vector2(5, 0))
        result = geometry.project_vector_to_ray(Vector2(-1, 2), ray)

        self.assertTrue(result.valid)
        self.assertAlmostEqual(result.projection.x, -1)
        self.assertAlmostEqual(result.projection.y, 0)
        self.assertAlmostEqual(result.distance, 2)
        self.assertAlmostEqual(result.ray_relative, -1)

    def test_line_line_intersection(self):
        """Test intersection of two crossing diagonals."""
        result = geometry.get_line_line_intersection(
            Line2D(Vector2(0, 0), Vector2(2, 2)),
            Line2D(Vector2(0, 2), Vector2(2, 0)),
        )

        self.assertTrue(result.valid)
        self.assertAlmostEqual(result.intersection.x, 1)
        self.assertAlmostEqual(result.intersection.y, 1)
        self.assertAlmostEqual(result.line_a_relative, 0.5)
        self.assertAlmostEqual(result.line_b_relative, 0.5)

    def test_line_line_intersection_outside_segments(self):
        """Relative positions outside [0, 1] mean the segments do not overlap."""
        result = geometry.get_line_line_intersection(
            Line2D(Vector2(0, 0), Vector2(1, 0)),
            Line2D(Vector2(3, 1), Vector2(3, 2)),
        )

        self.assertTrue(result.valid)
        self.assertAlmostEqual(result.line_a_relative, 3)
        self.assertAlmostEqual(result.line_b_relative, -1)

    def test_parallel_lines(self):
        """Parallel lines give an invalid result instead of raising."""
        result = geometry.get_line_line_intersection(
            Line2D(Vector2(0, 0), Vector2(1, 1)),
            Line2D(Vector2(0, 1), Vector2(1, 2)),
        )

        self.assertFalse(result.valid)
        self.assertFalse(result.intersection.valid)
        self.assertIsNotNone(result.reason)

    def test_ray_inside_box_intersection(self):
        """Test where a ray starting inside a box leaves it."""
        ray = Ray2D(Vector2(5, 5), Vector2(1, 0))
        exit_point = geometry.get_ray_inside_box_intersection(ray, Vector2(0, 0), Vector2(10, 10))

        self.assertTrue(exit_point.valid)
        self.assertAlmostEqual(exit_point.x, 10)
        self.assertAlmostEqual(exit_point.y, 5)

        # Diagonal ray leaves through the bottom edge
        ray = Ray2D(Vector2(5, 5), Vector2(1, 2))
        exit_point = geometry.get_ray_inside_box_intersection(ray, Vector2(0, 0), Vector2(10, 10))
        self.assertAlmostEqual(exit_point.x, 7.5)
        self.assertAlmostEqual(exit_point.y, 10)

    def test_ray_misses_box(self):
        """A ray pointing away from the box does not reach it."""
        ray = Ray2D(Vector2(15, 5), Vector2(1, 0))
        result = geometry.get_ray_inside_box_intersection(ray, Vector2(0, 0), Vector2(10, 10))

        self.assertFalse(result.valid)

    def test_ray_inside_box_rejects_swapped_corners(self):
        """Test that corner1 must be the minimum corner."""
        ray = Ray2D(Vector2(5, 5), Vector2(1, 0))
        with pytest.raises(ValueError):
            geometry.get_ray_inside_box_intersection(ray, Vector2(10, 10), Vector2(0, 0))

    def test_point_inside_polygon(self):
        """Test the even-odd rule on a concave L-shaped polygon."""
        polygon = [
            Vector2(0, 0), Vector2(2, 0), Vector2(2, 1),
            Vector2(1, 1), Vector2(1, 2), Vector2(0, 2),
        ]

        self.assertTrue(geometry.is_point_inside_polygon(Vector2(0.5, 0.5), polygon))
        self.assertTrue(geometry.is_point_inside_polygon(Vector2(0.5, 1.5), polygon))
        self.assertTrue(geometry.is_point_inside_polygon(Vector2(1.5, 0.5), polygon))
        # Notch of the L
        self.assertFalse(geometry.is_point_inside_polygon(Vector2(1.5, 1.5), polygon))
        self.assertFalse(geometry.is_point_inside_polygon(Vector2(-1, 0.5), polygon))

    def test_point_inside_triangle(self):
        """Test triangle containment for both windings, boundary included."""
        a, b, c = Vector2(0, 0), Vector2(1, 0), Vector2(0, 1)

        for triangle in ((a, b, c), (a, c, b)):
            self.assertTrue(geometry.is_point_inside_triangle(Vector2(0.2, 0.2), *triangle))
            self.assertTrue(geometry.is_point_inside_triangle(Vector2(0.5, 0), *triangle))
            self.assertFalse(geometry.is_point_inside_triangle(Vector2(1, 1), *triangle))
            self.assertFalse(geometry.is_point_inside_triangle(Vector2(-0.1, 0.5), *triangle))

    def test_is_clockwise(self):
        """Test winding detection in a y-up frame."""
        clockwise = [Vector2(0, 0), Vector2(0, 1), Vector2(1, 1), Vector2(1, 0)]

        self.assertTrue(geometry.is_clockwise(clockwise))
        self.assertFalse(geometry.is_clockwise(list(reversed(clockwise))))

    def test_polygon_area(self):
        """Test the shoelace area of a concave polygon."""
        polygon = [
            Vector2(0, 0), Vector2(2, 0), Vector2(2, 1),
            Vector2(1, 1), Vector2(1, 2), Vector2(0, 2),
        ]

        self.assertAlmostEqual(geometry.polygon_area(polygon), 3)
        self.assertAlmostEqual(geometry.polygon_area(list(reversed(polygon))), 3)


class TestGeometry3D(unittest.TestCase):
    """Test 3D queries."""

    def test_project_vector_to_ray(self):
        """Test orthogonal projection onto a ray's line."""
        ray = Ray3D(Vector3(0, 0, 0), Vector3(2, 0, 0))
        result = geometry.project_vector_to_ray(Vector3(3, 4, 0), ray)

        self.assertTrue(result.valid)
        np.testing.assert_allclose(result.projection.to_array(), [3, 0, 0], atol=1e-12)
        self.assertAlmostEqual(result.distance, 4)
        self.assertAlmostEqual(result.ray_relative, 3)

    def test_project_vector_to_invalid_ray(self):
        """A zero direction makes the ray, and the projection, invalid."""
        ray = Ray3D(Vector3(0, 0, 0), Vector3(0, 0, 0))
        result = geometry.project_vector_to_ray(Vector3(1, 1, 1), ray)

        self.assertFalse(ray.valid)
        self.assertFalse(result.valid)

    def test_ray_ray_closest(self):
        """Test closest points between two skew rays."""
        ray_a = Ray3D(Vector3(0, 0, 0), Vector3(1, 0, 0))
        ray_b = Ray3D(Vector3(2, 1, -3), Vector3(0, 0, 1))
        result = geometry.get_ray_ray_closest(ray_a, ray_b)

        self.assertTrue(result.valid)
        np.testing.assert_allclose(result.ray_a_closest.to_array(), [2, 0, 0], atol=1e-9)
        np.testing.assert_allclose(result.ray_b_closest.to_array(), [2, 1, 0], atol=1e-9)
        self.assertAlmostEqual(result.distance, 1)
        self.assertAlmostEqual(result.ray_a_relative, 2)
        self.assertAlmostEqual(result.ray_b_relative, 3)

    def test_ray_ray_closest_intersecting(self):
        """Intersecting rays have zero distance at their common point."""
        ray_a = Ray3D(Vector3(0, 0, 0), Vector3(1, 1, 0))
        ray_b = Ray3D(Vector3(2, 0, 0), Vector3(-1, 1, 0))
        result = geometry.get_ray_ray_closest(ray_a, ray_b)

        self.assertTrue(result.valid)
        self.assertAlmostEqual(result.distance, 0)
        np.testing.assert_allclose(result.ray_a_closest.to_array(), [1, 1, 0], atol=1e-9)
        self.assertAlmostEqual(result.ray_a_relative, math.sqrt(2))

    def test_parallel_rays(self):
        """Parallel rays are invalid but keep their separation."""
        ray_a = Ray3D(Vector3(0, 0, 0), Vector3(1, 0, 0))
        ray_b = Ray3D(Vector3(0, 2, 0), Vector3(-1, 0, 0))
        result = geometry.get_ray_ray_closest(ray_a, ray_b)

        self.assertFalse(result.valid)
        self.assertAlmostEqual(result.distance, 2)

    def test_project_vector_to_plane(self):
        """Signed distance is positive on the normal's side."""
        plane = Plane3D(Vector3(0, 0, 1), Vector3(0, 0, 2))

        above = geometry.project_vector_to_plane(Vector3(1, 2, 3), plane)
        self.assertAlmostEqual(above.signed_distance, 2)
        np.testing.assert_allclose(above.projection.to_array(), [1, 2, 1], atol=1e-12)

        below = geometry.project_vector_to_plane(Vector3(1, 2, -1), plane)
        self.assertAlmostEqual(below.signed_distance, -2)

    def test_ray_plane_intersection(self):
        """Test intersections in front of and behind the ray start."""
        ray = Ray3D(Vector3(0, 0, 0), Vector3(0, 0, 1))

        front = geometry.get_ray_plane_intersection(ray, Plane3D(Vector3(0, 0, 5), Vector3(0, 0, -1)))
        self.assertTrue(front.valid)
        self.assertAlmostEqual(front.ray_relative, 5)
        np.testing.assert_allclose(front.intersection.to_array(), [0, 0, 5], atol=1e-12)

        behind = geometry.get_ray_plane_intersection(ray, Plane3D(Vector3(0, 0, -5), Vector3(0, 0, 1)))
        self.assertTrue(behind.valid)
        self.assertAlmostEqual(behind.ray_relative, -5)

    def test_ray_parallel_to_plane(self):
        """Test that a ray parallel to a plane gives an invalid result."""
        ray = Ray3D(Vector3(0, 0, 1), Vector3(1, 0, 0))
        result = geometry.get_ray_plane_intersection(ray, Plane3D(Vector3(0, 0, 0), Vector3(0, 0, 1)))

        self.assertFalse(result.valid)
        self.assertTrue(math.isnan(result.ray_relative))

    def test_ray_polygon_intersection(self):
        """Test intersection with a square's plane and the containment flag."""
        square = [Vector3(-1, -1, 2), Vector3(1, -1, 2), Vector3(1, 1, 2), Vector3(-1, 1, 2)]
        normal = Vector3(0, 0, 1)

        hit = geometry.get_ray_polygon_intersection(
            Ray3D(Vector3(0.5, 0.5, 0), Vector3(0, 0, 1)), square, normal, check_inside=True
        )
        self.assertTrue(hit.valid)
        self.assertTrue(hit.intersected_polygon)
        self.assertAlmostEqual(hit.ray_relative, 2)
        np.testing.assert_allclose(hit.intersection.to_array(), [0.5, 0.5, 2], atol=1e-12)

        miss = geometry.get_ray_polygon_intersection(
            Ray3D(Vector3(3, 0, 0), Vector3(0, 0, 1)), square, normal, check_inside=True
        )
        self.assertTrue(miss.valid)
        self.assertFalse(miss.intersected_polygon)

        # Containment is only computed on request
        plane_only = geometry.get_ray_polygon_intersection(
            Ray3D(Vector3(3, 0, 0), Vector3(0, 0, 1)), square, normal
        )
        self.assertIsNone(plane_only.intersected_polygon)
        self.assertAlmostEqual(plane_only.ray_relative, 2)

    def test_ray_polygon_intersection_tilted(self):
        """Containment is tested in the polygon's own plane."""
        square = [Vector3(0, 0, 0), Vector3(1, 0, 0), Vector3(1, 1, 1), Vector3(0, 1, 1)]
        normal = Vector3(0, -1, 1)

        hit = geometry.get_ray_polygon_intersection(
            Ray3D(Vector3(0.5, 0.5, 5), Vector3(0, 0, -1)), square, normal, check_inside=True
        )
        self.assertTrue(hit.intersected_polygon)
        np.testing.assert_allclose(hit.intersection.to_array(), [0.5, 0.5, 0.5], atol=1e-9)


if __name__ == "__main__":
    unittest.main()
