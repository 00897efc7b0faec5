"""Perspective camera for a single calibrated photograph.

This module implements the pinhole camera derived from a calibration: the
mapping of 3D world points to image pixels and of pixels back to world rays.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np
from scipy import linalg

from photomatch.primitives import Ray3D
from photomatch.vectors import EPSILON, Matrix3x3, Vector2, Vector3, is_singular

logger = logging.getLogger(__name__)


class PerspectiveCamera:
    """Immutable projective camera.

    The camera is a 3x4 projection matrix P = [M | t] acting on homogeneous
    world points. A calibration change builds a new instance; points and rays
    computed from an old instance are never touched.
    """

    __slots__ = (
        "_homography",
        "_projection",
        "_image_width",
        "_image_height",
        "_focal_length",
        "_reason",
        "_m_inv",
        "_center",
    )

    def __init__(
        self,
        homography: Matrix3x3,
        projection: np.ndarray,
        image_width: int,
        image_height: int,
        focal_length: float = math.nan,
        reason: Optional[str] = None,
    ):
        """Initialize the camera.

        Args:
            homography: Calibration-plane to pixel transform the camera was
                derived from
            projection: 3x4 projection matrix
            image_width: Image width in pixels
            image_height: Image height in pixels
            focal_length: Focal length in pixels
            reason: Why the camera is invalid, None for a valid camera
        """
        projection = np.array(projection, dtype=np.float64)
        if projection.shape != (3, 4):
            raise ValueError(f"Expected 3x4 projection matrix, got shape {projection.shape}")
        projection.setflags(write=False)

        self._homography = homography
        self._projection = projection
        self._image_width = int(image_width)
        self._image_height = int(image_height)
        self._focal_length = float(focal_length)
        self._m_inv = None
        self._center = Vector3.invalid()

        if reason is None:
            if not np.all(np.isfinite(projection)):
                reason = "projection matrix has non-finite values"
            elif is_singular(Matrix3x3(projection[:, :3])):
                reason = "singular projection matrix"

        if reason is None:
            self._m_inv = linalg.inv(projection[:, :3])
            self._center = Vector3.from_array(-self._m_inv @ projection[:, 3])

        self._reason = reason

    @classmethod
    def invalid(cls, image_width: int, image_height: int, reason: str) -> PerspectiveCamera:
        return cls(Matrix3x3.invalid(), np.full((3, 4), np.nan), image_width, image_height, reason=reason)

    @property
    def valid(self) -> bool:
        return self._reason is None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def image_width(self) -> int:
        return self._image_width

    @property
    def image_height(self) -> int:
        return self._image_height

    @property
    def homography(self) -> Matrix3x3:
        return self._homography

    @property
    def projection_matrix(self) -> np.ndarray:
        return self._projection

    @property
    def focal_length(self) -> float:
        return self._focal_length

    @property
    def camera_center(self) -> Vector3:
        """World position of the centre of projection."""
        return self._center

    def world_to_screen(self, point: Vector3) -> Vector2:
        """Project a world point to pixel coordinates.

        Args:
            point: World point

        Returns:
            Pixel position, or an invalid vector for an invalid point, an
            invalid camera or a point on the camera plane
        """
        if not (self.valid and point.valid):
            return Vector2.invalid()

        x, y, w = self._projection @ np.array([point.x, point.y, point.z, 1.0])
        if abs(w) < EPSILON:
            return Vector2.invalid()
        return Vector2(float(x / w), float(y / w))

    def screen_to_world(self, pixel: Vector2) -> Vector3:
        """World point on the pixel's ray at unit projective depth."""
        if not (self.valid and pixel.valid):
            return Vector3.invalid()
        direction = self._m_inv @ np.array([pixel.x, pixel.y, 1.0])
        return self._center + Vector3.from_array(direction)

    def screen_to_world_ray(self, pixel: Vector2) -> Ray3D:
        """Ray of world points that project onto a pixel.

        The ray starts at unit projective depth and points away from the
        camera centre; every point on it projects back onto the pixel.

        Args:
            pixel: Pixel position

        Returns:
            World ray, invalid for an invalid pixel or camera
        """
        if not (self.valid and pixel.valid):
            return Ray3D.invalid()
        direction = Vector3.from_array(self._m_inv @ np.array([pixel.x, pixel.y, 1.0]))
        return Ray3D(self._center + direction, direction)

    def axis_direction_at(self, pixel: Vector2, axis: int) -> Vector2:
        """Unit screen direction in which a world axis runs through a pixel.

        Args:
            pixel: Pixel position
            axis: World axis index (0 = X, 1 = Y, 2 = Z)

        Returns:
            Unit 2D direction, invalid when the axis points straight at the
            camera at that pixel
        """
        if axis not in (0, 1, 2):
            raise ValueError(f"Axis index must be 0, 1 or 2, got {axis}")
        if not (self.valid and pixel.valid):
            return Vector2.invalid()

        # Derivative of the projection along the axis at unit depth
        m = self._projection[:, axis]
        direction = Vector2(float(m[0] - pixel.x * m[2]), float(m[1] - pixel.y * m[2]))
        if direction.magnitude < EPSILON * float(np.linalg.norm(m)):
            return Vector2.invalid()
        return direction.normalized()

    def __repr__(self) -> str:
        state = "valid" if self.valid else f"invalid: {self._reason}"
        return f"PerspectiveCamera({self._image_width}x{self._image_height}, {state})"
