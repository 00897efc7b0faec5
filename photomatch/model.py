"""Model graph of vertices, edges and planar faces.

This module implements the document the user builds on top of the
photograph. Entities live in an arena owned by a ModelGraph and are
addressed through lightweight handles (Vertex, Edge, Face) holding a stable
integer id. Every public mutation is an atomic group: its change events are
queued while the graph is being modified and delivered to the subscribed
listeners, in order, once the graph is consistent again.
"""

from __future__ import annotations

import contextlib
import functools
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from photomatch.geometry import flatten_to_plane, get_ray_polygon_intersection, is_clockwise
from photomatch.primitives import Line3D, Ray3D
from photomatch.triangulation import triangulate_face
from photomatch.vectors import EPSILON, Vector3

logger = logging.getLogger(__name__)


class ModelError(ValueError):
    """Invalid operation on a model graph."""


class DegenerateEntityError(ModelError):
    """An entity would be degenerate (equal edge endpoints, face with too few vertices)."""


class ForeignEntityError(ModelError):
    """An entity does not belong to the graph, or was already removed."""


# Change events


@dataclass(frozen=True)
class VertexAdded:
    vertex: Vertex
    position: Vector3


@dataclass(frozen=True)
class VertexRemoved:
    vertex: Vertex
    position: Vector3


@dataclass(frozen=True)
class VertexMoved:
    vertex: Vertex
    old_position: Vector3
    position: Vector3


@dataclass(frozen=True)
class EdgeAdded:
    edge: Edge
    start: Vertex
    end: Vertex


@dataclass(frozen=True)
class EdgeRemoved:
    edge: Edge
    start: Vertex
    end: Vertex
    start_position: Vector3
    end_position: Vector3


@dataclass(frozen=True)
class EdgeEndpointMoved:
    """An endpoint of an edge moved; ``endpoint`` is 0 for the start, 1 for the end."""

    edge: Edge
    vertex: Vertex
    endpoint: int
    position: Vector3


@dataclass(frozen=True)
class FaceAdded:
    face: Face
    vertices: Tuple[Vertex, ...]


@dataclass(frozen=True)
class FaceRemoved:
    face: Face
    vertices: Tuple[Vertex, ...]
    positions: Tuple[Vector3, ...]


@dataclass(frozen=True)
class FaceVertexMoved:
    """A face corner moved; ``index`` is the vertex's position in the face's vertex list."""

    face: Face
    vertex: Vertex
    index: int
    position: Vector3


@dataclass(frozen=True)
class FaceReversed:
    face: Face
    reversed: bool


# Handles


class _Handle:
    __slots__ = ("_graph", "id")

    def __init__(self, graph: ModelGraph, entity_id: int):
        self._graph = graph
        self.id = entity_id

    @property
    def graph(self) -> ModelGraph:
        return self._graph

    @property
    def alive(self) -> bool:
        return self in self._graph

    def __eq__(self, other) -> bool:
        return type(other) is type(self) and other._graph is self._graph and other.id == self.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, id(self._graph), self.id))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id})"


class Vertex(_Handle):
    """Handle to a model vertex."""

    __slots__ = ()

    @property
    def position(self) -> Vector3:
        return self._graph._vertex_record(self).position

    @position.setter
    def position(self, position: Vector3) -> None:
        self._graph.move_vertex(self, position)

    @property
    def edges(self) -> List[Edge]:
        return [Edge(self._graph, i) for i in self._graph._vertex_record(self).edges]

    @property
    def faces(self) -> List[Face]:
        return [Face(self._graph, i) for i in self._graph._vertex_record(self).faces]

    def remove(self) -> None:
        self._graph.remove_vertex(self)


class Edge(_Handle):
    """Handle to a model edge."""

    __slots__ = ()

    @property
    def start(self) -> Vertex:
        return Vertex(self._graph, self._graph._edge_record(self).start)

    @property
    def end(self) -> Vertex:
        return Vertex(self._graph, self._graph._edge_record(self).end)

    def other(self, vertex: Vertex) -> Vertex:
        """The endpoint opposite to the given one."""
        record = self._graph._edge_record(self)
        if vertex.id == record.start:
            return Vertex(self._graph, record.end)
        if vertex.id == record.end:
            return Vertex(self._graph, record.start)
        raise ModelError(f"{vertex!r} is not an endpoint of {self!r}")

    def as_line(self) -> Line3D:
        return Line3D(self.start.position, self.end.position)

    def remove(self, prune: bool = True) -> None:
        self._graph.remove_edge(self, prune=prune)


class Triangle(NamedTuple):
    """Triangle of a face triangulation, counter-clockwise about the face normal."""

    a: Vertex
    b: Vertex
    c: Vertex


class Face(_Handle):
    """Handle to a planar model face."""

    __slots__ = ()

    @property
    def vertices(self) -> Tuple[Vertex, ...]:
        return tuple(Vertex(self._graph, i) for i in self._graph._face_record(self).vertices)

    @property
    def positions(self) -> Tuple[Vector3, ...]:
        return tuple(v.position for v in self.vertices)

    @property
    def normal(self) -> Vector3:
        """Unit normal; the vertex order is counter-clockwise about it."""
        return self._graph._face_normal(self)

    @property
    def triangulated(self) -> List[Triangle]:
        return self._graph._face_triangles(self)

    @property
    def face_point(self) -> Vector3:
        """A point strictly inside the face, taken from its first triangle."""
        triangles = self.triangulated
        if not triangles:
            return Vector3.invalid()
        a, b, c = (v.position for v in triangles[0])
        return a * 0.5 + b * 0.16 + c * 0.34

    @property
    def user_reversed(self) -> Optional[bool]:
        return self._graph._face_record(self).user_reversed

    @property
    def reversed(self) -> bool:
        """Whether the face is seen from the back.

        The user's explicit choice wins; otherwise a face is reversed when
        an odd number of other faces lie in front of it.
        """
        user_reversed = self.user_reversed
        if user_reversed is not None:
            return user_reversed
        return len(self._graph.faces_in_front(self)) % 2 == 1

    def user_reverse(self) -> None:
        """Flip the face's orientation as seen by the user."""
        self._graph.set_user_reversed(self, not self.reversed)

    def remove(self) -> None:
        self._graph.remove_face(self)


# Arena records


class _VertexRecord:
    __slots__ = ("position", "edges", "faces")

    def __init__(self, position: Vector3):
        self.position = position
        # dicts used as insertion-ordered sets
        self.edges: Dict[int, None] = {}
        self.faces: Dict[int, None] = {}


class _EdgeRecord:
    __slots__ = ("start", "end")

    def __init__(self, start: int, end: int):
        self.start = start
        self.end = end


class _FaceRecord:
    __slots__ = ("vertices", "user_reversed", "normal", "triangles")

    def __init__(self, vertices: List[int], normal: Vector3, user_reversed: Optional[bool] = None):
        self.vertices = vertices
        self.user_reversed = user_reversed
        self.normal: Optional[Vector3] = normal
        self.triangles: Optional[List[Tuple[int, int, int]]] = None


# Snapshot


@dataclass(frozen=True)
class FaceSnapshot:
    vertices: Tuple[int, ...]
    user_reversed: Optional[bool] = None


@dataclass(frozen=True)
class ModelSnapshot:
    """Plain data copy of a model graph.

    Edges and faces refer to vertices by their index in ``vertices``.
    """

    vertices: Tuple[Tuple[float, float, float], ...]
    edges: Tuple[Tuple[int, int], ...]
    faces: Tuple[FaceSnapshot, ...]

    def to_dict(self) -> Dict:
        return {
            "vertices": [list(p) for p in self.vertices],
            "edges": [list(e) for e in self.edges],
            "faces": [
                {"vertices": list(f.vertices), "user_reversed": f.user_reversed} for f in self.faces
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> ModelSnapshot:
        return cls(
            vertices=tuple((float(x), float(y), float(z)) for x, y, z in data.get("vertices", [])),
            edges=tuple((int(a), int(b)) for a, b in data.get("edges", [])),
            faces=tuple(
                FaceSnapshot(tuple(int(i) for i in f["vertices"]), f.get("user_reversed"))
                for f in data.get("faces", [])
            ),
        )


def compute_face_normal(positions: Sequence[Vector3]) -> Vector3:
    """Normal of a planar polygon, oriented so its vertices run counter-clockwise.

    Args:
        positions: Polygon vertices

    Returns:
        Unit normal from the first non-collinear vertex triple, or an invalid
        vector when all vertices are collinear
    """
    if len(positions) < 3:
        return Vector3.invalid()

    origin = positions[0]
    normal = Vector3.invalid()
    for p, q in zip(positions[1:], positions[2:]):
        u = p - origin
        v = q - origin
        cross = u.cross(v)
        if cross.magnitude > EPSILON * u.magnitude * v.magnitude:
            normal = cross.normalized()
            break

    if not normal.valid:
        return normal
    if is_clockwise(flatten_to_plane(positions, normal)):
        normal = -normal
    return normal


class ModelGraph:
    """Arena of vertices, edges and faces with change notification."""

    def __init__(self):
        self._vertices: Dict[int, _VertexRecord] = {}
        self._edges: Dict[int, _EdgeRecord] = {}
        self._faces: Dict[int, _FaceRecord] = {}
        self._ids = itertools.count()
        self._listeners: List[Callable] = []
        self._pending: List[object] = []
        self._depth = 0

    # Queries

    @property
    def vertices(self) -> List[Vertex]:
        return [Vertex(self, i) for i in self._vertices]

    @property
    def edges(self) -> List[Edge]:
        return [Edge(self, i) for i in self._edges]

    @property
    def faces(self) -> List[Face]:
        return [Face(self, i) for i in self._faces]

    def __contains__(self, handle) -> bool:
        if not isinstance(handle, _Handle) or handle.graph is not self:
            return False
        if isinstance(handle, Vertex):
            return handle.id in self._vertices
        if isinstance(handle, Edge):
            return handle.id in self._edges
        if isinstance(handle, Face):
            return handle.id in self._faces
        return False

    def find_edge(self, start: Vertex, end: Vertex) -> Optional[Edge]:
        """Edge connecting two vertices in either direction, if any."""
        self._vertex_record(end)
        for edge_id in self._vertex_record(start).edges:
            record = self._edges[edge_id]
            if end.id in (record.start, record.end):
                return Edge(self, edge_id)
        return None

    def faces_in_front(self, face: Face) -> List[Face]:
        """Other faces hit by the ray from the face's inner point along its normal."""
        normal = self._face_normal(face)
        origin = face.face_point
        if not (normal.valid and origin.valid):
            return []

        ray = Ray3D(origin, normal)
        in_front = []
        for other in self.faces:
            if other == face:
                continue
            other_normal = self._face_normal(other)
            if not other_normal.valid:
                continue
            hit = get_ray_polygon_intersection(ray, other.positions, other_normal, check_inside=True)
            if hit.valid and hit.intersected_polygon and hit.ray_relative >= 0:
                in_front.append(other)
        return in_front

    # Subscription

    def subscribe(self, listener: Callable) -> Callable[[], None]:
        """Register a listener called with every change event.

        A listener that raises is logged and skipped; the other listeners
        still receive the event.

        Returns:
            Callable that unsubscribes the listener, same as unsubscribe()
        """
        self._listeners.append(listener)
        return functools.partial(self.unsubscribe, listener)

    def unsubscribe(self, listener: Callable) -> None:
        """Remove a listener; ValueError if it is not subscribed."""
        if listener not in self._listeners:
            raise ValueError("Listener is not subscribed")
        self._listeners.remove(listener)

    @contextlib.contextmanager
    def _mutation(self) -> Iterator[None]:
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._flush()

    def _emit(self, event) -> None:
        self._pending.append(event)

    def _flush(self) -> None:
        events, self._pending = self._pending, []
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception as e:
                    logger.exception(f"Listener {listener!r} failed on {type(event).__name__}: {e}")

    # Record access

    def _vertex_record(self, vertex: Vertex) -> _VertexRecord:
        if not isinstance(vertex, Vertex) or vertex.graph is not self:
            raise ForeignEntityError(f"{vertex!r} does not belong to this graph")
        try:
            return self._vertices[vertex.id]
        except KeyError:
            raise ForeignEntityError(f"{vertex!r} was removed") from None

    def _edge_record(self, edge: Edge) -> _EdgeRecord:
        if not isinstance(edge, Edge) or edge.graph is not self:
            raise ForeignEntityError(f"{edge!r} does not belong to this graph")
        try:
            return self._edges[edge.id]
        except KeyError:
            raise ForeignEntityError(f"{edge!r} was removed") from None

    def _face_record(self, face: Face) -> _FaceRecord:
        if not isinstance(face, Face) or face.graph is not self:
            raise ForeignEntityError(f"{face!r} does not belong to this graph")
        try:
            return self._faces[face.id]
        except KeyError:
            raise ForeignEntityError(f"{face!r} was removed") from None

    def _face_normal(self, face: Face) -> Vector3:
        record = self._face_record(face)
        if record.normal is None:
            record.normal = compute_face_normal([self._vertices[i].position for i in record.vertices])
        return record.normal

    def _face_triangles(self, face: Face) -> List[Triangle]:
        record = self._face_record(face)
        if record.triangles is None:
            normal = self._face_normal(face)
            if normal.valid:
                positions = [self._vertices[i].position for i in record.vertices]
                record.triangles = triangulate_face(positions, normal)
            else:
                record.triangles = []
        ids = record.vertices
        return [Triangle(*(Vertex(self, ids[k]) for k in triangle)) for triangle in record.triangles]

    # Mutations

    def add_vertex(self, position: Vector3) -> Vertex:
        """Create a vertex.

        Args:
            position: World position

        Returns:
            The new vertex
        """
        if not isinstance(position, Vector3) or not position.valid:
            raise DegenerateEntityError(f"Invalid vertex position: {position}")

        with self._mutation():
            vertex = Vertex(self, next(self._ids))
            self._vertices[vertex.id] = _VertexRecord(position)
            self._emit(VertexAdded(vertex, position))
        logger.debug(f"Added vertex {vertex.id} at {position}")
        return vertex

    def add_edge(self, start: Vertex, end: Vertex) -> Edge:
        """Connect two vertices.

        Args:
            start: First endpoint
            end: Second endpoint

        Returns:
            The new edge, or the existing edge if the vertices are already
            connected
        """
        start_record = self._vertex_record(start)
        end_record = self._vertex_record(end)
        if start == end:
            raise DegenerateEntityError(f"Edge endpoints must differ, got {start!r} twice")

        existing = self.find_edge(start, end)
        if existing is not None:
            logger.debug(f"Edge between {start.id} and {end.id} already exists")
            return existing

        with self._mutation():
            edge = Edge(self, next(self._ids))
            self._edges[edge.id] = _EdgeRecord(start.id, end.id)
            start_record.edges[edge.id] = None
            end_record.edges[edge.id] = None
            self._emit(EdgeAdded(edge, start, end))
        return edge

    def add_vertex_to_edge(self, position: Vector3, edge: Edge) -> Vertex:
        """Split an edge with a new vertex.

        The original edge is replaced by (start, new) and (new, end) in a
        single atomic group; the position is taken as given.

        Args:
            position: Position of the new vertex
            edge: Edge to split

        Returns:
            The new vertex
        """
        record = self._edge_record(edge)
        if not isinstance(position, Vector3) or not position.valid:
            raise DegenerateEntityError(f"Invalid vertex position: {position}")

        start = Vertex(self, record.start)
        end = Vertex(self, record.end)
        with self._mutation():
            self._remove_edge_record(edge.id)
            vertex = self.add_vertex(position)
            self.add_edge(start, vertex)
            self.add_edge(vertex, end)
        logger.debug(f"Split edge {edge.id} with vertex {vertex.id}")
        return vertex

    def add_face(self, vertices: Sequence[Vertex]) -> Face:
        """Create a planar face.

        Args:
            vertices: Face corners in order (at least 3 distinct vertices)

        Returns:
            The new face
        """
        vertices = list(vertices)
        records = [self._vertex_record(v) for v in vertices]
        if len(vertices) < 3:
            raise DegenerateEntityError(f"A face needs at least 3 vertices, got {len(vertices)}")
        if len(set(vertices)) != len(vertices):
            raise DegenerateEntityError("Face vertices must be distinct")

        normal = compute_face_normal([r.position for r in records])
        if not normal.valid:
            raise DegenerateEntityError("Face vertices are collinear")

        with self._mutation():
            face = Face(self, next(self._ids))
            self._faces[face.id] = _FaceRecord([v.id for v in vertices], normal)
            for record in records:
                record.faces[face.id] = None
            self._emit(FaceAdded(face, tuple(vertices)))
        logger.debug(f"Added face {face.id} with {len(vertices)} vertices")
        return face

    def remove_face(self, face: Face) -> None:
        self._face_record(face)
        with self._mutation():
            self._remove_face_record(face.id)

    def remove_edge(self, edge: Edge, prune: bool = True) -> None:
        """Remove an edge.

        Args:
            edge: Edge to remove
            prune: Also remove endpoints left without edges or faces, and
                merge away an endpoint left between two collinear edges
        """
        record = self._edge_record(edge)
        with self._mutation():
            self._remove_edge_record(edge.id)
            if prune:
                for vertex_id in (record.start, record.end):
                    self._prune_vertex(vertex_id)

    def remove_vertex(self, vertex: Vertex) -> None:
        """Remove a vertex with every face and edge using it.

        Faces are removed first, then edges, then the vertex itself.
        """
        record = self._vertex_record(vertex)
        with self._mutation():
            for face_id in list(record.faces):
                self._remove_face_record(face_id)
            for edge_id in list(record.edges):
                self._remove_edge_record(edge_id)
            self._remove_vertex_record(vertex.id)

    def move_vertex(self, vertex: Vertex, position: Vector3) -> None:
        """Move a vertex, notifying its edges and faces."""
        record = self._vertex_record(vertex)
        if not isinstance(position, Vector3) or not position.valid:
            raise DegenerateEntityError(f"Invalid vertex position: {position}")

        with self._mutation():
            old_position = record.position
            record.position = position
            self._emit(VertexMoved(vertex, old_position, position))

            for edge_id in record.edges:
                edge_record = self._edges[edge_id]
                endpoint = 0 if edge_record.start == vertex.id else 1
                self._emit(EdgeEndpointMoved(Edge(self, edge_id), vertex, endpoint, position))

            for face_id in record.faces:
                face_record = self._faces[face_id]
                face_record.normal = None
                face_record.triangles = None
                index = face_record.vertices.index(vertex.id)
                self._emit(FaceVertexMoved(Face(self, face_id), vertex, index, position))

    def set_user_reversed(self, face: Face, user_reversed: Optional[bool]) -> None:
        """Set or clear (None) the user's orientation override of a face."""
        record = self._face_record(face)
        with self._mutation():
            record.user_reversed = user_reversed
            self._emit(FaceReversed(face, face.reversed))

    def clear(self) -> None:
        """Remove every entity."""
        with self._mutation():
            for face_id in list(self._faces):
                self._remove_face_record(face_id)
            for edge_id in list(self._edges):
                self._remove_edge_record(edge_id)
            for vertex_id in list(self._vertices):
                self._remove_vertex_record(vertex_id)

    def _remove_face_record(self, face_id: int) -> None:
        record = self._faces.pop(face_id)
        vertices = tuple(Vertex(self, i) for i in record.vertices)
        positions = tuple(self._vertices[i].position for i in record.vertices)
        for vertex_id in record.vertices:
            self._vertices[vertex_id].faces.pop(face_id, None)
        self._emit(FaceRemoved(Face(self, face_id), vertices, positions))

    def _remove_edge_record(self, edge_id: int) -> None:
        record = self._edges.pop(edge_id)
        start = self._vertices[record.start]
        end = self._vertices[record.end]
        start.edges.pop(edge_id, None)
        end.edges.pop(edge_id, None)
        self._emit(
            EdgeRemoved(
                Edge(self, edge_id),
                Vertex(self, record.start),
                Vertex(self, record.end),
                start.position,
                end.position,
            )
        )

    def _remove_vertex_record(self, vertex_id: int) -> None:
        record = self._vertices.pop(vertex_id)
        self._emit(VertexRemoved(Vertex(self, vertex_id), record.position))

    def _prune_vertex(self, vertex_id: int) -> None:
        record = self._vertices.get(vertex_id)
        if record is None or record.faces:
            return

        if not record.edges:
            self._remove_vertex_record(vertex_id)
            return

        if len(record.edges) != 2:
            return

        first_id, second_id = record.edges
        first = self._edges[first_id]
        second = self._edges[second_id]
        before = first.start if first.end == vertex_id else first.end
        after = second.start if second.end == vertex_id else second.end

        position = record.position
        incoming = (position - self._vertices[before].position).normalized()
        outgoing = (self._vertices[after].position - position).normalized()
        if not (incoming.valid and outgoing.valid) or (incoming - outgoing).magnitude >= EPSILON:
            return

        logger.debug(f"Merging collinear vertex {vertex_id}")
        self._remove_edge_record(first_id)
        self._remove_edge_record(second_id)
        self._remove_vertex_record(vertex_id)
        if before != after:
            self.add_edge(Vertex(self, before), Vertex(self, after))

    # Plain data

    def snapshot(self) -> ModelSnapshot:
        """Copy the graph into plain data for serialization."""
        index = {vertex_id: i for i, vertex_id in enumerate(self._vertices)}
        return ModelSnapshot(
            vertices=tuple((r.position.x, r.position.y, r.position.z) for r in self._vertices.values()),
            edges=tuple((index[r.start], index[r.end]) for r in self._edges.values()),
            faces=tuple(
                FaceSnapshot(tuple(index[i] for i in r.vertices), r.user_reversed)
                for r in self._faces.values()
            ),
        )

    @classmethod
    def from_snapshot(cls, snapshot: ModelSnapshot) -> ModelGraph:
        """Rebuild a graph from plain data."""
        graph = cls()
        vertices = [graph.add_vertex(Vector3(*p)) for p in snapshot.vertices]
        try:
            for start, end in snapshot.edges:
                graph.add_edge(vertices[start], vertices[end])
            for face_snapshot in snapshot.faces:
                face = graph.add_face([vertices[i] for i in face_snapshot.vertices])
                if face_snapshot.user_reversed is not None:
                    graph.set_user_reversed(face, face_snapshot.user_reversed)
        except IndexError as e:
            raise ModelError(f"Snapshot refers to a missing vertex: {e}") from None
        return graph
