"""Planar map — half-edge arrangement of land-use and water polygons.

Every half-edge has the face on its *left*.  Faces carry a terrain
type token and a zoning token; the unbounded face lies outside the
tile and never takes part in burning.

:meth:`PlanarMap.from_polygons` builds the structure from simple,
non-overlapping polygons.  Polygons that touch must share their
boundary vertices exactly.  Any polygon edge with no partner polygon
borders the *background* face (terrain ``terrain_Natural``), unless it
lies on the tile's bounding rectangle, in which case it borders the
unbounded face.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .models import NO_VALUE
from .terrain import TERRAIN_NATURAL, TERRAIN_WATER, TokenTable

MUST_BURN = "must_burn"

Point = Tuple[float, float]
Bounds = Tuple[float, float, float, float]


@dataclass(eq=False)
class MapFace:
    terrain_type: int = TERRAIN_NATURAL
    zoning: int = NO_VALUE
    unbounded: bool = False
    index: int = -1

    @property
    def is_water(self) -> bool:
        return self.terrain_type == TERRAIN_WATER and not self.unbounded


@dataclass(eq=False)
class MapVertex:
    x: float
    y: float
    outgoing: List["MapHalfedge"] = field(default_factory=list, repr=False)

    @property
    def point(self) -> Point:
        return (self.x, self.y)


@dataclass(eq=False)
class MapHalfedge:
    source: MapVertex
    target: MapVertex
    face: MapFace
    index: int = -1
    twin: Optional["MapHalfedge"] = field(default=None, repr=False)
    params: Set[str] = field(default_factory=set)
    mark: bool = False


@dataclass
class MapPolygon:
    """Input polygon: an outer ring plus attribute names."""

    ring: Sequence[Point]
    terrain: str = "terrain_Water"
    zoning: Optional[str] = None
    must_burn: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"ring": [list(p) for p in self.ring], "terrain": self.terrain}
        if self.zoning is not None:
            d["zoning"] = self.zoning
        if self.must_burn:
            d["must_burn"] = True
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MapPolygon":
        return cls(
            ring=[(float(p[0]), float(p[1])) for p in d["ring"]],
            terrain=d.get("terrain", "terrain_Water"),
            zoning=d.get("zoning"),
            must_burn=bool(d.get("must_burn", False)),
        )


def _signed_area(ring: Sequence[Point]) -> float:
    total = 0.0
    for i, (x1, y1) in enumerate(ring):
        x2, y2 = ring[(i + 1) % len(ring)]
        total += x1 * y2 - x2 * y1
    return total * 0.5


def _on_bounds(p: Point, q: Point, bounds: Bounds) -> bool:
    west, south, east, north = bounds
    return (
        (p[0] == q[0] and p[0] in (west, east))
        or (p[1] == q[1] and p[1] in (south, north))
    )


class PlanarMap:
    """A minimal doubly-connected edge list."""

    def __init__(self) -> None:
        self.unbounded_face = MapFace(unbounded=True, index=0)
        self.faces: List[MapFace] = [self.unbounded_face]
        self.vertices: Dict[Point, MapVertex] = {}
        self.halfedges: List[MapHalfedge] = []

    # ── construction ────────────────────────────────────────────────

    def add_face(self, terrain_type: int, zoning: int = NO_VALUE) -> MapFace:
        face = MapFace(terrain_type=terrain_type, zoning=zoning, index=len(self.faces))
        self.faces.append(face)
        return face

    def vertex(self, p: Point) -> MapVertex:
        v = self.vertices.get(p)
        if v is None:
            v = MapVertex(p[0], p[1])
            self.vertices[p] = v
        return v

    def add_halfedge(self, p: Point, q: Point, face: MapFace) -> MapHalfedge:
        he = MapHalfedge(self.vertex(p), self.vertex(q), face, index=len(self.halfedges))
        he.source.outgoing.append(he)
        self.halfedges.append(he)
        return he

    @classmethod
    def from_polygons(
        cls,
        bounds: Bounds,
        polygons: Sequence[MapPolygon],
        tokens: TokenTable,
        background_terrain: int = TERRAIN_NATURAL,
    ) -> "PlanarMap":
        pmap = cls()
        background = pmap.add_face(background_terrain)
        directed: Dict[Tuple[Point, Point], MapHalfedge] = {}

        for poly in polygons:
            ring = [tuple(p) for p in poly.ring]
            if len(ring) > 1 and ring[0] == ring[-1]:
                ring = ring[:-1]
            area = _signed_area(ring)
            if len(ring) < 3 or area == 0.0:
                raise ValueError(f"degenerate polygon with {len(ring)} vertices")
            if area < 0.0:
                ring.reverse()
            face = pmap.add_face(
                tokens.lookup(poly.terrain),
                tokens.lookup(poly.zoning) if poly.zoning else NO_VALUE,
            )
            for i, p in enumerate(ring):
                q = ring[(i + 1) % len(ring)]
                if p == q:
                    continue
                if (p, q) in directed:
                    raise ValueError(f"polygons overlap along edge {p} -> {q}")
                he = pmap.add_halfedge(p, q, face)
                if poly.must_burn:
                    he.params.add(MUST_BURN)
                directed[(p, q)] = he

        for (p, q), he in list(directed.items()):
            if he.twin is not None:
                continue
            partner = directed.get((q, p))
            if partner is None:
                outer = pmap.unbounded_face if _on_bounds(p, q, bounds) else background
                partner = pmap.add_halfedge(q, p, outer)
            he.twin = partner
            partner.twin = he
        return pmap

    # ── queries ─────────────────────────────────────────────────────

    def __iter__(self) -> Iterator[MapHalfedge]:
        return iter(self.halfedges)

    def clear_marks(self) -> None:
        for he in self.halfedges:
            he.mark = False

    def must_burn(self, he: MapHalfedge) -> bool:
        """True if *he* separates faces that differ in terrain or zoning."""
        f1 = he.face
        f2 = he.twin.face
        if f1.unbounded or f2.unbounded:
            return False
        if MUST_BURN in he.params or MUST_BURN in he.twin.params:
            return True
        return f1.terrain_type != f2.terrain_type or f1.zoning != f2.zoning

    def wet_boundaries(self) -> List[MapHalfedge]:
        """One half-edge per edge that separates water from non-water."""
        return [
            he for he in self.halfedges
            if he.index < he.twin.index and he.face.is_water != he.twin.face.is_water
        ]
