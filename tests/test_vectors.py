"""Tests for vectors module.

This module tests the vector and matrix value types and the 3x3 solver.
"""

import math
import sys
import unittest
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photomatch.vectors import Matrix3x3, Vector2, Vector3, is_singular, solve_linear_system


class TestVectors(unittest.TestCase):
    """Test vector arithmetic and the invalid sentinel."""

    def test_arithmetic(self):
        """Test component-wise operators."""
        a = Vector3(1, 2, 3)
        b = Vector3(4, 5, 6)

        self.assertEqual(a + b, Vector3(5, 7, 9))
        self.assertEqual(b - a, Vector3(3, 3, 3))
        self.assertEqual(-a, Vector3(-1, -2, -3))
        self.assertEqual(2 * a, Vector3(2, 4, 6))
        self.assertEqual(a / 2, Vector3(0.5, 1, 1.5))
        self.assertAlmostEqual(a.dot(b), 32)

    def test_cross(self):
        """Test right-handed cross products."""
        x = Vector3(1, 0, 0)
        y = Vector3(0, 1, 0)

        self.assertEqual(x.cross(y), Vector3(0, 0, 1))
        self.assertEqual(y.cross(x), Vector3(0, 0, -1))
        self.assertAlmostEqual(Vector2(1, 0).cross(Vector2(0, 1)), 1)

    def test_normalized(self):
        """Test that normalizing a zero vector yields the invalid sentinel."""
        v = Vector3(3, 0, 4).normalized()
        self.assertAlmostEqual(v.magnitude, 1)
        self.assertAlmostEqual(v.x, 0.6)

        self.assertFalse(Vector3(0, 0, 0).normalized().valid)
        self.assertFalse(Vector2(0, 0).normalized().valid)
        self.assertFalse(Vector3.invalid().valid)

    def test_with_components(self):
        """Test component replacement and conversions."""
        v = Vector3(1, 2, 3)

        self.assertEqual(v.with_x(7), Vector3(7, 2, 3))
        self.assertEqual(v.with_z(0).xy(), Vector2(1, 2))
        self.assertEqual(Vector3.from_array(np.array([1.0, 2.0, 3.0])), v)
        np.testing.assert_allclose(v.to_array(), [1, 2, 3])


class TestMatrix3x3(unittest.TestCase):
    """Test matrix operations."""

    def setUp(self):
        """Set up a well-conditioned matrix."""
        self.values = np.array([
            [2.0, 1.0, 0.5],
            [-1.0, 3.0, 2.0],
            [0.5, 0.25, 4.0],
        ])
        self.matrix = Matrix3x3(self.values)

    def test_shape_check(self):
        """Test that only 3x3 input is accepted."""
        with pytest.raises(ValueError):
            Matrix3x3(np.eye(4))

    def test_immutable(self):
        """Test that the backing array cannot be written."""
        with pytest.raises(ValueError):
            self.matrix.values[0, 0] = 5.0

    def test_adjugate(self):
        """The adjugate equals determinant times inverse."""
        expected = np.linalg.det(self.values) * np.linalg.inv(self.values)
        np.testing.assert_allclose(self.matrix.adjugate().values, expected, atol=1e-12)

    def test_rows_and_columns(self):
        """Test construction from rows and columns."""
        rows = Matrix3x3.from_rows(Vector3(1, 2, 3), Vector3(4, 5, 6), Vector3(7, 8, 9))
        columns = Matrix3x3.from_columns(Vector3(1, 2, 3), Vector3(4, 5, 6), Vector3(7, 8, 9))

        self.assertEqual(rows.transposed(), columns)
        self.assertEqual(rows.row(1), Vector3(4, 5, 6))
        self.assertEqual(rows.column(1), Vector3(2, 5, 8))

    def test_matmul(self):
        """Test products with matrices and vectors."""
        identity = Matrix3x3.identity()

        self.assertEqual(identity @ self.matrix, self.matrix)
        result = self.matrix @ Vector3(1, 0, 0)
        self.assertEqual(result, Vector3(2.0, -1.0, 0.5))

    def test_transform_point(self):
        """Test homogeneous application with division."""
        scale_shift = Matrix3x3([[2, 0, 1], [0, 2, 3], [0, 0, 2]])
        point = scale_shift.transform_point(Vector2(1, 1))

        self.assertAlmostEqual(point.x, 1.5)
        self.assertAlmostEqual(point.y, 2.5)
        self.assertFalse(Matrix3x3.invalid().transform_point(Vector2(1, 1)).valid)

    def test_rotate_align(self):
        """Test rotations between unit vectors, including opposite ones."""
        cases = [
            (Vector3(1, 0, 0), Vector3(0, 1, 0)),
            (Vector3(0, 0, 1), Vector3(0, 0, 1)),
            (Vector3(0, 0, -1), Vector3(0, 0, 1)),
            (Vector3(1, 0, 0), Vector3(-1, 0, 0)),
            (Vector3(1, 2, 3).normalized(), Vector3(-2, 0.5, 1).normalized()),
        ]
        for v1, v2 in cases:
            rotation = Matrix3x3.rotate_align(v1, v2)
            np.testing.assert_allclose((rotation @ v1).to_array(), v2.to_array(), atol=1e-9)
            np.testing.assert_allclose(rotation.values @ rotation.values.T, np.eye(3), atol=1e-9)
            self.assertAlmostEqual(rotation.determinant(), 1.0)


class TestLinearSystem(unittest.TestCase):
    """Test the 3x3 solver."""

    def test_solve(self):
        """Test a regular system against numpy."""
        lhs = Matrix3x3([[3, 2, -1], [2, -2, 4], [-1, 0.5, -1]])
        solution = solve_linear_system(lhs, Vector3(1, -2, 0))

        self.assertTrue(solution.valid)
        np.testing.assert_allclose(solution.to_array(), [1, -2, -2], atol=1e-12)

    def test_singular_system(self):
        """A singular system gives the invalid sentinel."""
        lhs = Matrix3x3([[1, 2, 3], [2, 4, 6], [0, 1, 1]])
        solution = solve_linear_system(lhs, Vector3(1, 2, 3))

        self.assertTrue(is_singular(lhs))
        self.assertFalse(solution.valid)
        self.assertTrue(math.isnan(solution.x))

    def test_singularity_is_scale_independent(self):
        """Pixel-sized and unit-sized versions of a matrix are judged alike."""
        lhs = Matrix3x3([[0, 1, 0], [0, 0, 1], [1, 1, 1]])

        self.assertFalse(is_singular(lhs))
        self.assertFalse(is_singular(lhs * 1000.0))
        self.assertFalse(is_singular(lhs * 0.001))


if __name__ == "__main__":
    unittest.main()
