"""Vector and matrix primitives.

This module implements the small linear algebra value types the geometric
kernel is built on: 2D/3D vectors with an "invalid" sentinel, an immutable
3x3 matrix backed by numpy, and a direct solver for 3x3 linear systems.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Union

import numpy as np
from scipy import linalg

logger = logging.getLogger(__name__)

# Tolerance for every "on the line/plane", "parallel" and "inside" decision.
EPSILON = 1e-6


@dataclass(frozen=True)
class Vector2:
    """A 2D vector. NaN components mark the invalid sentinel."""

    x: float
    y: float

    @classmethod
    def invalid(cls) -> Vector2:
        return cls(math.nan, math.nan)

    @classmethod
    def from_array(cls, arr: Iterable[float]) -> Vector2:
        x, y = (float(v) for v in list(arr)[:2])
        return cls(x, y)

    @property
    def valid(self) -> bool:
        return not (math.isnan(self.x) or math.isnan(self.y))

    @property
    def magnitude_squared(self) -> float:
        return self.x * self.x + self.y * self.y

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.magnitude_squared)

    def normalized(self) -> Vector2:
        mag = self.magnitude
        if mag == 0.0 or not self.valid:
            return Vector2.invalid()
        return Vector2(self.x / mag, self.y / mag)

    def dot(self, other: Vector2) -> float:
        return self.x * other.x + self.y * other.y

    def cross(self, other: Vector2) -> float:
        """Z component of the 3D cross product of the two vectors."""
        return self.x * other.y - self.y * other.x

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=np.float64)

    def __add__(self, other: Vector2) -> Vector2:
        return Vector2(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Vector2) -> Vector2:
        return Vector2(self.x - other.x, self.y - other.y)

    def __neg__(self) -> Vector2:
        return Vector2(-self.x, -self.y)

    def __mul__(self, scalar: float) -> Vector2:
        return Vector2(self.x * scalar, self.y * scalar)

    def __rmul__(self, scalar: float) -> Vector2:
        return self * scalar

    def __truediv__(self, scalar: float) -> Vector2:
        return Vector2(self.x / scalar, self.y / scalar)

    def __str__(self) -> str:
        return f"({self.x}, {self.y})"


@dataclass(frozen=True)
class Vector3:
    """A 3D vector. NaN components mark the invalid sentinel."""

    x: float
    y: float
    z: float

    @classmethod
    def invalid(cls) -> Vector3:
        return cls(math.nan, math.nan, math.nan)

    @classmethod
    def from_array(cls, arr: Iterable[float]) -> Vector3:
        x, y, z = (float(v) for v in list(arr)[:3])
        return cls(x, y, z)

    @classmethod
    def from_vector2(cls, vector: Vector2, z: float) -> Vector3:
        return cls(vector.x, vector.y, z)

    @property
    def valid(self) -> bool:
        return not (math.isnan(self.x) or math.isnan(self.y) or math.isnan(self.z))

    @property
    def magnitude_squared(self) -> float:
        return self.x * self.x + self.y * self.y + self.z * self.z

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.magnitude_squared)

    def normalized(self) -> Vector3:
        """Unit vector in the same direction, or the invalid sentinel for zero length."""
        mag = self.magnitude
        if mag == 0.0 or not self.valid:
            return Vector3.invalid()
        return Vector3(self.x / mag, self.y / mag, self.z / mag)

    def dot(self, other: Vector3) -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: Vector3) -> Vector3:
        return Vector3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def with_x(self, x: float) -> Vector3:
        return Vector3(x, self.y, self.z)

    def with_y(self, y: float) -> Vector3:
        return Vector3(self.x, y, self.z)

    def with_z(self, z: float) -> Vector3:
        return Vector3(self.x, self.y, z)

    def xy(self) -> Vector2:
        return Vector2(self.x, self.y)

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    def __add__(self, other: Vector3) -> Vector3:
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: Vector3) -> Vector3:
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __neg__(self) -> Vector3:
        return Vector3(-self.x, -self.y, -self.z)

    def __mul__(self, scalar: float) -> Vector3:
        return Vector3(self.x * scalar, self.y * scalar, self.z * scalar)

    def __rmul__(self, scalar: float) -> Vector3:
        return self * scalar

    def __truediv__(self, scalar: float) -> Vector3:
        return Vector3(self.x / scalar, self.y / scalar, self.z / scalar)

    def __str__(self) -> str:
        return f"({self.x}, {self.y}, {self.z})"


class Matrix3x3:
    """Immutable 3x3 matrix of doubles.

    The values are held in a read-only numpy array, so a matrix can be shared
    freely between cameras and geometry queries.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Union[np.ndarray, Iterable[Iterable[float]]]):
        arr = np.array(values, dtype=np.float64)
        if arr.shape != (3, 3):
            raise ValueError(f"Expected 3x3 matrix, got shape {arr.shape}")
        arr.setflags(write=False)
        self._values = arr

    @classmethod
    def identity(cls) -> Matrix3x3:
        return cls(np.eye(3))

    @classmethod
    def invalid(cls) -> Matrix3x3:
        return cls(np.full((3, 3), np.nan))

    @classmethod
    def from_rows(cls, row0: Vector3, row1: Vector3, row2: Vector3) -> Matrix3x3:
        return cls(np.vstack((row0.to_array(), row1.to_array(), row2.to_array())))

    @classmethod
    def from_columns(cls, col0: Vector3, col1: Vector3, col2: Vector3) -> Matrix3x3:
        return cls(np.column_stack((col0.to_array(), col1.to_array(), col2.to_array())))

    @classmethod
    def rotate_align(cls, v1: Vector3, v2: Vector3) -> Matrix3x3:
        """Rotation matrix that maps unit vector v1 onto unit vector v2.

        Rodrigues' formula in the form from
        https://gist.github.com/kevinmoran/b45980723e53edeb8a5a43c49f134724.
        The antiparallel case has no unique axis, so the rotation is composed
        from two rotations through an intermediate vector.
        """
        axis = v1.cross(v2)
        cos_a = v1.dot(v2)

        if cos_a <= -1.0 + 1e-12:
            if abs(v1.x) >= 0.5:
                mid = (v1 + Vector3(0.0, 0.5, 0.0)).normalized()
            else:
                mid = (v1 + Vector3(0.5, 0.0, 0.0)).normalized()
            return cls.rotate_align(mid, v2) @ cls.rotate_align(v1, mid)

        k = 1.0 / (1.0 + cos_a)
        return cls([
            [axis.x * axis.x * k + cos_a, axis.y * axis.x * k - axis.z, axis.z * axis.x * k + axis.y],
            [axis.x * axis.y * k + axis.z, axis.y * axis.y * k + cos_a, axis.z * axis.y * k - axis.x],
            [axis.x * axis.z * k - axis.y, axis.y * axis.z * k + axis.x, axis.z * axis.z * k + cos_a],
        ])

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def valid(self) -> bool:
        return bool(np.all(np.isfinite(self._values)))

    def row(self, i: int) -> Vector3:
        return Vector3.from_array(self._values[i, :])

    def column(self, i: int) -> Vector3:
        return Vector3.from_array(self._values[:, i])

    def transposed(self) -> Matrix3x3:
        return Matrix3x3(self._values.T)

    def determinant(self) -> float:
        return float(np.linalg.det(self._values))

    def adjugate(self) -> Matrix3x3:
        """Adjugate matrix, equal to det * inverse.

        Used in place of the inverse wherever the result only matters up to
        a scale factor (homogeneous coordinates).
        """
        a = self._values
        return Matrix3x3([
            [a[1, 1] * a[2, 2] - a[1, 2] * a[2, 1], a[2, 1] * a[0, 2] - a[0, 1] * a[2, 2], a[0, 1] * a[1, 2] - a[0, 2] * a[1, 1]],
            [a[2, 0] * a[1, 2] - a[1, 0] * a[2, 2], a[0, 0] * a[2, 2] - a[2, 0] * a[0, 2], a[1, 0] * a[0, 2] - a[0, 0] * a[1, 2]],
            [a[1, 0] * a[2, 1] - a[2, 0] * a[1, 1], a[2, 0] * a[0, 1] - a[0, 0] * a[2, 1], a[0, 0] * a[1, 1] - a[1, 0] * a[0, 1]],
        ])

    def transform_point(self, point: Vector2) -> Vector2:
        """Apply the matrix to a 2D point in homogeneous coordinates."""
        if not self.valid or not point.valid:
            return Vector2.invalid()
        x, y, w = self._values @ np.array([point.x, point.y, 1.0])
        if abs(w) < 1e-12:
            return Vector2.invalid()
        return Vector2(float(x / w), float(y / w))

    def __matmul__(self, other):
        if isinstance(other, Matrix3x3):
            return Matrix3x3(self._values @ other._values)
        if isinstance(other, Vector3):
            return Vector3.from_array(self._values @ other.to_array())
        return NotImplemented

    def __mul__(self, scalar: float) -> Matrix3x3:
        return Matrix3x3(self._values * scalar)

    def __rmul__(self, scalar: float) -> Matrix3x3:
        return self * scalar

    def __neg__(self) -> Matrix3x3:
        return Matrix3x3(-self._values)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Matrix3x3):
            return NotImplemented
        return bool(np.array_equal(self._values, other._values))

    def __hash__(self) -> int:
        return hash(self._values.tobytes())

    def __repr__(self) -> str:
        return f"Matrix3x3({self._values.tolist()})"


def is_singular(matrix: Matrix3x3) -> bool:
    """Check a matrix for (numerical) singularity.

    The determinant is compared against the Hadamard bound (product of the
    column lengths), which makes the test independent of the coordinate
    scale: pixel coordinates in the thousands and unit coordinates are
    judged alike.
    """
    if not matrix.valid:
        return True
    norms = np.linalg.norm(matrix.values, axis=0)
    bound = float(np.prod(norms))
    if bound == 0.0:
        return True
    return abs(matrix.determinant()) <= EPSILON * bound


def solve_linear_system(lhs: Matrix3x3, rhs: Vector3) -> Vector3:
    """Solve the 3x3 linear system lhs @ x = rhs.

    Args:
        lhs: Coefficient matrix, one equation per row
        rhs: Right hand side values

    Returns:
        Solution vector, or the invalid sentinel if the system is singular
    """
    if is_singular(lhs) or not rhs.valid:
        logger.debug(f"Singular 3x3 system, det={lhs.determinant():.3e}")
        return Vector3.invalid()

    try:
        solution = linalg.solve(lhs.values, rhs.to_array())
    except linalg.LinAlgError as e:
        logger.debug(f"Linear solve failed: {e}")
        return Vector3.invalid()

    return Vector3.from_array(solution)
