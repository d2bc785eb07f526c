"""Mesh data model — vertices, faces and the sentinels they carry.

Faces follow the usual triangle data-structure convention: the three
vertices are stored counter-clockwise, ``neighbors[i]`` is the face
across the edge *opposite* ``vertices[i]`` and ``constrained[i]`` flags
that same edge.  Index arithmetic goes through :func:`ccw` / :func:`cw`.

Edge ``(face, i)`` therefore runs from ``face.vertices[ccw(i)]`` to
``face.vertices[cw(i)]`` with *face* on its left.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple


NO_VALUE = -1
"""Terrain / feature id meaning "unassigned"."""

DEM_NO_DATA = -32768.0
"""Height returned for samples or queries with no data."""

Vec3 = Tuple[float, float, float]


class MeshInvariantError(RuntimeError):
    """A topological or numerical invariant of the mesh was violated.

    These are logic errors: the tile build is aborted.
    """


class LocateType(enum.Enum):
    VERTEX = "vertex"
    EDGE = "edge"
    FACE = "face"
    OUTSIDE_CONVEX_HULL = "outside_convex_hull"
    OUTSIDE_AFFINE_HULL = "outside_affine_hull"


def ccw(i: int) -> int:
    return (i + 1) % 3


def cw(i: int) -> int:
    return (i + 2) % 3


@dataclass(eq=False)
class MeshVertex:
    """A triangulation vertex.

    *x*/*y* are longitude/latitude and never change after insertion.
    *border_blend* maps a border terrain id to its blend level in [0, 1].
    """

    x: float
    y: float
    height: float = 0.0
    index: int = -1
    infinite: bool = False
    normal: Vec3 = (0.0, 0.0, 1.0)
    border_blend: Dict[int, float] = field(default_factory=dict)
    face: Optional["MeshFace"] = field(default=None, repr=False)

    @property
    def point(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def blend(self, layer: int) -> float:
        return self.border_blend.get(layer, 0.0)


@dataclass(eq=False)
class MeshFace:
    """A triangle, finite or attached to the infinite vertex.

    Infinite faces take part in adjacency bookkeeping only; their
    terrain attributes stay at the defaults.
    """

    vertices: List[MeshVertex]
    index: int = -1
    neighbors: List[Optional["MeshFace"]] = field(
        default_factory=lambda: [None, None, None], repr=False
    )
    constrained: List[bool] = field(default_factory=lambda: [False, False, False])
    alive: bool = True
    terrain: int = NO_VALUE
    feature: int = NO_VALUE
    terrain_border: Set[int] = field(default_factory=set)
    flag: int = 0
    normal: Vec3 = (0.0, 0.0, 1.0)
    orig_face: Optional[object] = field(default=None, repr=False)

    def vertex_index(self, v: MeshVertex) -> int:
        for i, fv in enumerate(self.vertices):
            if fv is v:
                return i
        raise ValueError("vertex is not on this face")

    def has_vertex(self, v: MeshVertex) -> bool:
        return any(fv is v for fv in self.vertices)

    def neighbor_index(self, other: "MeshFace") -> int:
        for i, nb in enumerate(self.neighbors):
            if nb is other:
                return i
        raise ValueError("faces are not adjacent")

    @property
    def is_infinite(self) -> bool:
        return any(v.infinite for v in self.vertices)

    def edge(self, i: int) -> Tuple[MeshVertex, MeshVertex]:
        """Endpoints of the edge opposite vertex *i*, counter-clockwise."""
        return self.vertices[ccw(i)], self.vertices[cw(i)]
