"""Single-image camera calibration.

This module turns the four pixel corners of a calibration square (drawn by
the user on the photograph) into a PerspectiveCamera. The square spans one
unit along each of the two selected calibration axes; its projective
transform fixes the camera's intrinsics and orientation up to the usual
single-image ambiguities, which the axis selection and inversion flags
resolve.
"""

from __future__ import annotations

import enum
import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from photomatch.camera import PerspectiveCamera
from photomatch.geometry import project_vector_to_ray
from photomatch.primitives import Ray2D
from photomatch.vectors import EPSILON, Matrix3x3, Vector2, Vector3, solve_linear_system

logger = logging.getLogger(__name__)

AXIS_NAMES = ("x", "y", "z")

# Canonical calibration square in calibration-plane coordinates, ordered
# top-left, top-right, bottom-left, bottom-right.
UNIT_SQUARE = (
    Vector2(0.0, 0.0),
    Vector2(1.0, 0.0),
    Vector2(0.0, 1.0),
    Vector2(1.0, 1.0),
)


class CalibrationAxes(enum.Enum):
    """Which world axes the two sides of the calibration square follow.

    The first letter is the axis along the top edge (top-left to top-right),
    the second the axis along the left edge (top-left to bottom-left).
    """

    XY = "XY"
    YX = "YX"
    XZ = "XZ"
    ZX = "ZX"
    YZ = "YZ"
    ZY = "ZY"

    @classmethod
    def parse(cls, name: str) -> CalibrationAxes:
        try:
            return cls(str(name).upper())
        except ValueError:
            raise ValueError(f"Unknown calibration axes: {name!r}") from None

    @property
    def first(self) -> int:
        return AXIS_NAMES.index(self.value[0].lower())

    @property
    def second(self) -> int:
        return AXIS_NAMES.index(self.value[1].lower())

    @property
    def third(self) -> int:
        return 3 - self.first - self.second


@dataclass(frozen=True)
class InvertedAxes:
    """Per-axis sign flips applied during calibration."""

    x: bool = False
    y: bool = False
    z: bool = False

    @classmethod
    def from_config(cls, config) -> InvertedAxes:
        """Build from a mapping of axis name to flag, or a list of inverted axis names."""
        if config is None:
            return cls()
        if isinstance(config, dict):
            unknown = set(config) - set(AXIS_NAMES)
            if unknown:
                raise ValueError(f"Unknown inverted axes: {sorted(unknown)}")
            return cls(**{name: bool(value) for name, value in config.items()})
        names = [str(name).lower() for name in config]
        unknown = set(names) - set(AXIS_NAMES)
        if unknown:
            raise ValueError(f"Unknown inverted axes: {sorted(unknown)}")
        return cls(**{name: True for name in names})

    @staticmethod
    def invertible(axes: CalibrationAxes) -> Tuple[str, str]:
        """Names of the axes that may be inverted for an axis pair."""
        return AXIS_NAMES[axes.first], AXIS_NAMES[axes.second]

    def is_inverted(self, axis: int) -> bool:
        return getattr(self, AXIS_NAMES[axis])

    def for_axes(self, axes: CalibrationAxes) -> InvertedAxes:
        """Copy with the axis outside the calibration pair forced to not inverted."""
        allowed = self.invertible(axes)
        return InvertedAxes(**{name: getattr(self, name) and name in allowed for name in AXIS_NAMES})


def is_degenerate_quadrilateral(points: Sequence[Vector2]) -> bool:
    """Check whether any three of four points are (nearly) collinear.

    Args:
        points: Four points (top-left, top-right, bottom-left, bottom-right)

    Returns:
        True if the quadrilateral cannot define a projective transform
    """
    if len(points) != 4:
        raise ValueError(f"Expected 4 points, got {len(points)}")
    if not all(p.valid for p in points):
        return True

    for a, b, c in itertools.combinations(points, 3):
        ab = b - a
        ac = c - a
        if abs(ab.cross(ac)) <= EPSILON * ab.magnitude * ac.magnitude:
            return True
    return False


def _calculate_map(points: Sequence[Vector2]) -> Matrix3x3:
    """Matrix mapping the projective basis onto a quadrilateral.

    The columns are the homogeneous top-left, top-right and bottom-left
    points, weighted so that their sum is the bottom-right point.
    """
    tl, tr, bl, br = points
    lhs = Matrix3x3.from_rows(
        Vector3(tl.x, tr.x, bl.x),
        Vector3(tl.y, tr.y, bl.y),
        Vector3(1.0, 1.0, 1.0),
    )
    weights = solve_linear_system(lhs, Vector3(br.x, br.y, 1.0))
    if not weights.valid:
        return Matrix3x3.invalid()
    return Matrix3x3(lhs.values * weights.to_array())


def calculate_projective_transformation_matrix(
    source: Sequence[Vector2], target: Sequence[Vector2]
) -> Matrix3x3:
    """Compute the projective transform mapping one quadrilateral onto another.

    Args:
        source: Four source points (top-left, top-right, bottom-left, bottom-right)
        target: Four target points in the same order

    Returns:
        3x3 matrix, determined up to scale, that maps each source point onto
        the corresponding target point; invalid if either quadrilateral has
        three collinear points
    """
    if is_degenerate_quadrilateral(source) or is_degenerate_quadrilateral(target):
        logger.warning("Degenerate quadrilateral, cannot compute projective transform")
        return Matrix3x3.invalid()

    source_map = _calculate_map(source)
    target_map = _calculate_map(target)
    if not (source_map.valid and target_map.valid):
        logger.warning("Singular quadrilateral map, cannot compute projective transform")
        return Matrix3x3.invalid()

    return target_map @ source_map.adjugate()


@dataclass(frozen=True)
class CalibrationInput:
    """Everything the solver needs to build a camera.

    Attributes:
        image_width: Image width in pixels
        image_height: Image height in pixels
        corners: Pixel corners of the calibration square (top-left is the
            world origin, top-right is +scale along the first axis, bottom-left
            +scale along the second axis, bottom-right +scale along both)
        axes: World axes followed by the square's sides
        inverted: Axis sign flips
        scale: Model units per side of the calibration square
        focal_length: Focal length in pixels used when the square's
            perspective does not determine it
    """

    image_width: int
    image_height: int
    corners: Tuple[Vector2, ...]
    axes: CalibrationAxes = CalibrationAxes.XY
    inverted: InvertedAxes = field(default_factory=InvertedAxes)
    scale: float = 1.0
    focal_length: Optional[float] = None

    def validate(self) -> None:
        """Raise ValueError on malformed input."""
        if self.image_width <= 0 or self.image_height <= 0:
            raise ValueError(f"Image size must be positive, got {self.image_width}x{self.image_height}")
        if len(self.corners) != 4:
            raise ValueError(f"Expected 4 calibration corners, got {len(self.corners)}")
        if not isinstance(self.axes, CalibrationAxes):
            raise ValueError(f"Invalid calibration axes: {self.axes!r}")
        if not (self.scale > 0 and math.isfinite(self.scale)):
            raise ValueError(f"Calibration scale must be positive, got {self.scale}")
        if self.focal_length is not None and not self.focal_length > 0:
            raise ValueError(f"Focal length must be positive, got {self.focal_length}")

    @classmethod
    def from_config(cls, config: Dict) -> CalibrationInput:
        """Build from a calibration configuration section.

        Args:
            config: Dictionary with image_width, image_height, corners (four
                [x, y] pairs) and optionally axes, inverted, scale and
                focal_length

        Returns:
            Validated calibration input
        """
        try:
            corners = tuple(Vector2(float(x), float(y)) for x, y in config["corners"])
            width = int(config["image_width"])
            height = int(config["image_height"])
        except KeyError as e:
            raise ValueError(f"Missing calibration key: {e.args[0]}") from None
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed calibration input: {e}") from None

        focal_length = config.get("focal_length")
        calibration_input = cls(
            image_width=width,
            image_height=height,
            corners=corners,
            axes=CalibrationAxes.parse(config.get("axes", "XY")),
            inverted=InvertedAxes.from_config(config.get("inverted")),
            scale=float(config.get("scale", 1.0)),
            focal_length=float(focal_length) if focal_length is not None else None,
        )
        calibration_input.validate()
        return calibration_input


def _estimate_focal_length(homography: np.ndarray, cx: float, cy: float) -> Optional[float]:
    """Focal length from the orthogonality of the two calibration axes.

    Returns None when the square's vanishing points do not constrain it
    (one of the axes is parallel to the image plane).
    """
    h1 = homography[:, 0]
    h2 = homography[:, 1]
    denominator = h1[2] * h2[2]
    if abs(denominator) < 1e-12:
        return None

    g1 = np.array([h1[0] - cx * h1[2], h1[1] - cy * h1[2]])
    g2 = np.array([h2[0] - cx * h2[2], h2[1] - cy * h2[2]])
    f_squared = -float(g1 @ g2) / denominator
    if not (f_squared > 0 and math.isfinite(f_squared)):
        return None
    return math.sqrt(f_squared)


class CalibrationSolver:
    """Builds PerspectiveCamera instances from calibration input."""

    def solve(self, calibration_input: CalibrationInput) -> PerspectiveCamera:
        """Compute a camera from the calibration square.

        Args:
            calibration_input: Image size, square corners and axis selection

        Returns:
            New camera; invalid (with a reason) for degenerate corners
        """
        calibration_input.validate()
        width = calibration_input.image_width
        height = calibration_input.image_height

        if is_degenerate_quadrilateral(calibration_input.corners):
            logger.warning("Calibration corners are degenerate (three points collinear)")
            return PerspectiveCamera.invalid(width, height, "degenerate calibration corners")

        homography = calculate_projective_transformation_matrix(UNIT_SQUARE, calibration_input.corners)
        if not homography.valid:
            return PerspectiveCamera.invalid(width, height, "singular calibration homography")

        H = homography.values
        if abs(H[2, 2]) < EPSILON:
            return PerspectiveCamera.invalid(width, height, "calibration origin at infinity")
        H = H / H[2, 2]

        cx, cy = width / 2.0, height / 2.0
        focal_length = _estimate_focal_length(H, cx, cy)
        if focal_length is None:
            if calibration_input.focal_length is not None:
                focal_length = calibration_input.focal_length
            else:
                focal_length = float(max(width, height))
            logger.debug(f"Focal length not constrained by calibration, using {focal_length:.2f}")

        K = np.array([[focal_length, 0.0, cx], [0.0, focal_length, cy], [0.0, 0.0, 1.0]])
        K_inv = np.linalg.inv(K)

        axes = calibration_input.axes
        inverted = calibration_input.inverted.for_axes(axes)
        scale = calibration_input.scale

        columns = [None, None, None]
        for axis, h in ((axes.first, H[:, 0]), (axes.second, H[:, 1])):
            sign = -1.0 if inverted.is_inverted(axis) else 1.0
            columns[axis] = h * sign / scale

        # Third axis completes a right-handed frame: X x Y = Z, Y x Z = X, Z x X = Y
        third = axes.third
        a = K_inv @ columns[(third + 1) % 3]
        b = K_inv @ columns[(third + 2) % 3]
        normalizer = math.sqrt(np.linalg.norm(a) * np.linalg.norm(b))
        columns[third] = K @ (np.cross(a, b) / normalizer)

        projection = np.column_stack(columns + [H[:, 2]])
        camera = PerspectiveCamera(Matrix3x3(H), projection, width, height, focal_length)
        if camera.valid:
            logger.info(f"Calibrated camera: axes={axes.value}, focal length={focal_length:.2f}px")
        else:
            logger.warning(f"Calibration produced an invalid camera: {camera.reason}")
        return camera

    def match_world_point(self, camera: PerspectiveCamera, pixel: Vector2, world_point: Vector3) -> PerspectiveCamera:
        """Move the world origin so that a model point projects onto a pixel.

        Orientation, scale and intrinsics are kept; only the image position
        of the origin changes.

        Args:
            camera: Current camera
            pixel: Pixel the point should project onto
            world_point: Model point to anchor

        Returns:
            New camera, invalid when the point lies on the camera plane
        """
        width, height = camera.image_width, camera.image_height
        if not (camera.valid and pixel.valid and world_point.valid):
            return PerspectiveCamera.invalid(width, height, "invalid camera or match point")

        projection = camera.projection_matrix
        M = projection[:, :3]
        tz = projection[2, 3]
        a = M @ world_point.to_array()
        depth = a[2] + tz
        if abs(depth) < EPSILON:
            return PerspectiveCamera.invalid(width, height, "match point on the camera plane")

        translation = np.array([pixel.x * depth - a[0], pixel.y * depth - a[1], tz])
        logger.debug(f"Origin translation moved to {translation}")
        return self._rebuild(camera, 1.0, translation)

    def match_world_points(
        self,
        camera: PerspectiveCamera,
        fixed_pixel: Vector2,
        fixed_point: Vector3,
        scale_pixel: Vector2,
        scale_point: Vector3,
    ) -> PerspectiveCamera:
        """Move the origin and rescale the model from two matched points.

        The fixed point lands exactly on its pixel. The scale point slides
        along its image line through the fixed pixel, so it lands on the
        point of that line closest to its pixel.

        Args:
            camera: Current camera
            fixed_pixel: Pixel the fixed point should project onto
            fixed_point: Model point kept in place
            scale_pixel: Pixel the scale point should get closest to
            scale_point: Model point whose distance sets the scale

        Returns:
            New camera, invalid when no positive scale matches the points
        """
        width, height = camera.image_width, camera.image_height
        anchored = self.match_world_point(camera, fixed_pixel, fixed_point)
        if not (anchored.valid and scale_pixel.valid and scale_point.valid):
            return PerspectiveCamera.invalid(width, height, "invalid camera or match point")

        current = anchored.world_to_screen(scale_point)
        target = project_vector_to_ray(scale_pixel, Ray2D(fixed_pixel, current - fixed_pixel))
        if not target.valid:
            return PerspectiveCamera.invalid(width, height, "match points project onto the same pixel")
        ps = target.projection

        M = camera.projection_matrix[:, :3]
        tz = camera.projection_matrix[2, 3]
        a = M @ fixed_point.to_array()
        a2 = M @ scale_point.to_array()
        s = fixed_pixel

        # The scale equation holds in both image coordinates; use the better conditioned one
        candidates = [
            (s.x - ps.x, a[0] - s.x * a[2] - a2[0] + ps.x * a2[2]),
            (s.y - ps.y, a[1] - s.y * a[2] - a2[1] + ps.y * a2[2]),
        ]
        numerator, denominator = max(candidates, key=lambda c: abs(c[1]))
        if abs(denominator) < EPSILON:
            return PerspectiveCamera.invalid(width, height, "scale undetermined by match points")

        scale = tz * numerator / denominator
        if not (scale > EPSILON and math.isfinite(scale)):
            logger.debug(f"Rejected non-positive model scale {scale}")
            return PerspectiveCamera.invalid(width, height, "match points require a non-positive scale")

        translation = np.array([
            s.x * (scale * a[2] + tz) - scale * a[0],
            s.y * (scale * a[2] + tz) - scale * a[1],
            tz,
        ])
        logger.debug(f"Model rescaled by {scale:.4f}")
        return self._rebuild(camera, scale, translation)

    @staticmethod
    def _rebuild(camera: PerspectiveCamera, scale: float, translation: np.ndarray) -> PerspectiveCamera:
        projection = camera.projection_matrix.copy()
        projection[:, :3] *= scale
        projection[:, 3] = translation

        homography = camera.homography.values.copy()
        homography[:, :2] *= scale
        homography[:, 2] = translation
        return PerspectiveCamera(
            Matrix3x3(homography), projection, camera.image_width, camera.image_height, camera.focal_length
        )


def reprojection_rmse(
    camera: PerspectiveCamera,
    world_points: Sequence[Vector3],
    pixels: Sequence[Vector2],
) -> float:
    """Calculate the root mean square reprojection error.

    Args:
        camera: Calibrated camera
        world_points: 3D points
        pixels: Observed pixel position of each 3D point

    Returns:
        Root mean square reprojection error in pixels, inf when no point
        could be projected
    """
    if len(world_points) != len(pixels):
        raise ValueError(f"Got {len(world_points)} world points but {len(pixels)} pixels")

    squared_errors = []
    for point, observed in zip(world_points, pixels):
        projected = camera.world_to_screen(point)
        if not projected.valid:
            continue
        squared_errors.append((projected - observed).magnitude_squared)

    if not squared_errors:
        logger.warning("No valid reprojections for error calculation")
        return float("inf")

    return float(np.sqrt(np.mean(squared_errors)))
