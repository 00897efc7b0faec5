"""View frustum of a calibrated camera.

The frustum is bounded by four planes through the camera centre, one per
image border. It decides which parts of the model are visible and clips
edges to the image so they can be drawn.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Iterator, Tuple

from photomatch.camera import PerspectiveCamera
from photomatch.geometry import (
    get_ray_plane_intersection,
    get_ray_polygon_intersection,
    project_vector_to_plane,
)
from photomatch.primitives import Line3D, Plane3D, Ray3D
from photomatch.vectors import EPSILON, Vector2, Vector3

logger = logging.getLogger(__name__)


class ViewFrustum:
    """Four clip planes (left, right, top, bottom) derived from a camera.

    The planes are recomputed wholesale whenever the camera changes; their
    normals point into the visible region.
    """

    def __init__(self, camera: PerspectiveCamera):
        self.camera = camera
        self.left = Plane3D.invalid()
        self.right = Plane3D.invalid()
        self.top = Plane3D.invalid()
        self.bottom = Plane3D.invalid()
        self.update_frustum()

    @property
    def planes(self) -> Tuple[Plane3D, Plane3D, Plane3D, Plane3D]:
        return self.left, self.right, self.top, self.bottom

    @property
    def valid(self) -> bool:
        return all(plane.valid for plane in self.planes)

    def set_camera(self, camera: PerspectiveCamera) -> None:
        """Switch to a new camera and rebuild the planes."""
        self.camera = camera
        self.update_frustum()

    def update_frustum(self) -> None:
        """Rebuild the clip planes from the camera's screen-corner rays."""
        camera = self.camera
        if not camera.valid:
            logger.debug(f"Camera invalid ({camera.reason}), frustum cleared")
            self.left = self.right = self.top = self.bottom = Plane3D.invalid()
            return

        max_x = camera.image_width - 1
        max_y = camera.image_height - 1
        tl = camera.screen_to_world_ray(Vector2(0.0, 0.0))
        tr = camera.screen_to_world_ray(Vector2(max_x, 0.0))
        bl = camera.screen_to_world_ray(Vector2(0.0, max_y))
        br = camera.screen_to_world_ray(Vector2(max_x, max_y))

        # Each plane holds a corner ray and the start of the next corner ray
        left = Plane3D(tl.start, -tl.direction.cross(bl.start - tl.start))
        bottom = Plane3D(bl.start, -bl.direction.cross(br.start - bl.start))
        right = Plane3D(br.start, -br.direction.cross(tr.start - br.start))
        top = Plane3D(tr.start, -tr.direction.cross(tl.start - tr.start))

        # Orient every normal towards the image centre's ray
        centre = camera.screen_to_world(Vector2(max_x / 2.0, max_y / 2.0))
        oriented = []
        for plane in (left, right, top, bottom):
            if plane.valid and project_vector_to_plane(centre, plane).signed_distance < 0:
                plane = Plane3D(plane.point, -plane.normal)
            oriented.append(plane)
        self.left, self.right, self.top, self.bottom = oriented

        if not self.valid:
            logger.warning("Degenerate view frustum, image corners do not span a cone")

    def is_vector_inside(self, point: Vector3) -> bool:
        """Whether a point lies inside all four planes (within EPSILON)."""
        if not (self.valid and point.valid):
            return False
        return all(project_vector_to_plane(point, plane).signed_distance >= -EPSILON for plane in self.planes)

    def get_closest_intersection(self, ray: Ray3D) -> Vector3:
        """First point where a ray leaves one of the half-spaces it starts in.

        Args:
            ray: Ray to follow

        Returns:
            Nearest forward crossing of a plane whose inside holds the ray
            start, or an invalid vector if there is none
        """
        closest = Vector3.invalid()
        closest_relative = math.inf
        for plane in self.planes:
            if project_vector_to_plane(ray.start, plane).signed_distance < 0:
                continue
            intersection = get_ray_plane_intersection(ray, plane)
            if not intersection.valid or intersection.ray_relative < 0:
                continue
            if intersection.ray_relative < closest_relative:
                closest_relative = intersection.ray_relative
                closest = intersection.intersection
        return closest

    def clip_line(self, line: Line3D) -> Line3D:
        """Part of a line segment that lies inside the frustum.

        Args:
            line: Segment to clip

        Returns:
            The clipped segment (the line itself when fully inside), or a
            fully invalid line when nothing is visible
        """
        if not (self.valid and line.valid):
            return Line3D.invalid()

        start_inside = self.is_vector_inside(line.start)
        end_inside = self.is_vector_inside(line.end)

        if start_inside and end_inside:
            return line

        start_ray = Ray3D(line.start, line.end - line.start)
        end_ray = Ray3D(line.end, line.start - line.end)
        if not start_ray.valid:
            return Line3D.invalid()

        if start_inside:
            end = self.get_closest_intersection(start_ray)
            return line.with_end(end) if end.valid else Line3D.invalid()

        if end_inside:
            start = self.get_closest_intersection(end_ray)
            return line.with_start(start) if start.valid else Line3D.invalid()

        candidate = Line3D(self.get_closest_intersection(end_ray), self.get_closest_intersection(start_ray))
        if (
            candidate.valid
            and self.is_vector_inside(candidate.start)
            and self.is_vector_inside(candidate.end)
        ):
            return candidate
        return Line3D.invalid()

    def visible_edges(self, edges: Iterable) -> Iterator[Tuple[object, Line3D]]:
        """Yield (edge, clipped line) for every edge with a visible part."""
        for edge in edges:
            clipped = self.clip_line(edge.as_line())
            if clipped.valid:
                yield edge, clipped

    def is_face_visible(self, face) -> bool:
        """Whether any part of a face can be seen in the image."""
        if not self.valid:
            return False

        positions = [vertex.position for vertex in face.vertices]
        for i, end in enumerate(positions):
            if self.clip_line(Line3D(positions[i - 1], end)).valid:
                return True

        # A face can enclose the whole image without any visible border
        camera = self.camera
        centre = Vector2((camera.image_width - 1) / 2.0, (camera.image_height - 1) / 2.0)
        view_ray = camera.screen_to_world_ray(centre)
        ray = Ray3D(camera.camera_center, view_ray.direction)
        hit = get_ray_polygon_intersection(ray, positions, face.normal, check_inside=True)
        return bool(hit.valid and hit.intersected_polygon and hit.ray_relative > 0)
