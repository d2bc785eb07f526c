"""Incremental constrained Delaunay triangulation.

The triangulation keeps an *infinite vertex*: every convex-hull edge has
an infinite face on its outer side, so point location, hull walks and
circulators never have to special-case the boundary.  Operations:

- :meth:`ConstrainedTriangulation.insert` — add a point (duplicates
  collapse onto the existing vertex), restoring the empty-circumcircle
  property with Lawson flips.
- :meth:`ConstrainedTriangulation.insert_constraint` — force a segment
  into the triangulation and mark it constrained.  Vertices lying on the
  segment split it; crossings with earlier constraints insert the
  intersection point.
- :meth:`ConstrainedTriangulation.locate` — visibility walk from a hint
  face.
- :meth:`ConstrainedTriangulation.incident_faces` /
  :meth:`ConstrainedTriangulation.incident_vertices` — ccw circulators.
- :meth:`ConstrainedTriangulation.make_conforming` — split constrained
  edges until each one is locally Delaunay.

All local surgery goes through :meth:`ConstrainedTriangulation._replace`,
which swaps a set of faces for a new set covering the same region and
relinks adjacency and constraint flags by vertex pairs.
"""

from __future__ import annotations

import logging
import math
import random
from collections import deque
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .geometry import face_contains, in_circle, line_intersection, orient, segments_cross
from .models import (
    LocateType,
    MeshFace,
    MeshInvariantError,
    MeshVertex,
    ccw,
    cw,
)

logger = logging.getLogger(__name__)

Edge = Tuple[MeshFace, int]
LocateResult = Tuple[Optional[MeshFace], LocateType, int]

# in-circle values within INCIRCLE_TOL * span**4 of zero count as cocircular
INCIRCLE_TOL = 1e-12
# a face whose |orient| is below SLIVER_TOL * edge_length**2 counts as flat
SLIVER_TOL = 1e-6


def _edge_key(a: MeshVertex, b: MeshVertex) -> Tuple[int, int]:
    return (a.index, b.index) if a.index < b.index else (b.index, a.index)


def _orient3(a: MeshVertex, b: MeshVertex, c: MeshVertex) -> float:
    return orient(a.x, a.y, b.x, b.y, c.x, c.y)


class ConstrainedTriangulation:
    """A 2-D constrained Delaunay triangulation over geographic points.

    Parameters
    ----------
    seed : int
        Seed for the stochastic walk used by :meth:`locate`.  Two
        triangulations fed the same operations in the same order with
        the same seed are identical.
    """

    def __init__(self, seed: int = 0) -> None:
        self._seed = seed
        self.clear()

    def clear(self) -> None:
        self.infinite_vertex = MeshVertex(0.0, 0.0, index=-1, infinite=True)
        self._vertices: Dict[int, MeshVertex] = {}
        self._points: Dict[Tuple[float, float], MeshVertex] = {}
        self._faces: Dict[int, MeshFace] = {}
        self._pending: List[MeshVertex] = []
        self._next_vertex = 0
        self._next_face = 0
        self._last_face: Optional[MeshFace] = None
        self._rng = random.Random(self._seed)
        self._epoch = 0

    # ── introspection ───────────────────────────────────────────────

    @property
    def dimension(self) -> int:
        if self._faces:
            return 2
        return min(len(self._pending), 2) - 1

    def number_of_vertices(self) -> int:
        return len(self._vertices)

    def number_of_faces(self) -> int:
        return sum(1 for _ in self.finite_faces())

    def finite_vertices(self) -> Iterator[MeshVertex]:
        return iter(list(self._vertices.values()))

    def finite_faces(self) -> Iterator[MeshFace]:
        return (f for f in list(self._faces.values()) if not f.is_infinite)

    def all_faces(self) -> Iterator[MeshFace]:
        return iter(list(self._faces.values()))

    def vertex_at(self, x: float, y: float) -> Optional[MeshVertex]:
        return self._points.get((x, y))

    def is_infinite(self, item) -> bool:
        if isinstance(item, MeshVertex):
            return item.infinite
        return item.is_infinite

    def next_epoch(self) -> int:
        """Advance the face visitation counter and return the new value."""
        self._epoch += 1
        return self._epoch

    # ── circulators ─────────────────────────────────────────────────

    def incident_faces(self, v: MeshVertex) -> List[MeshFace]:
        """Faces around *v* in counter-clockwise order."""
        start = v.face
        if start is None:
            return []
        result: List[MeshFace] = []
        f = start
        while True:
            result.append(f)
            f = f.neighbors[ccw(f.vertex_index(v))]
            if f is start:
                break
            if len(result) > len(self._faces):
                raise MeshInvariantError("vertex circulator did not close")
        return result

    def incident_vertices(self, v: MeshVertex) -> List[MeshVertex]:
        """Neighbours of *v* in counter-clockwise order (may include the infinite vertex)."""
        return [f.vertices[ccw(f.vertex_index(v))] for f in self.incident_faces(v)]

    def find_edge(self, a: MeshVertex, b: MeshVertex) -> Optional[Edge]:
        """Return ``(face, i)`` for the face on the left of a→b, if a-b is an edge."""
        for f in self.incident_faces(a):
            ia = f.vertex_index(a)
            if f.vertices[ccw(ia)] is b:
                return f, cw(ia)
        return None

    def is_edge(self, a: MeshVertex, b: MeshVertex) -> bool:
        return self.find_edge(a, b) is not None

    def is_constrained(self, a: MeshVertex, b: MeshVertex) -> bool:
        edge = self.find_edge(a, b)
        return edge is not None and edge[0].constrained[edge[1]]

    def find_face(self, a: MeshVertex, b: MeshVertex, c: MeshVertex) -> Optional[MeshFace]:
        for f in self.incident_faces(a):
            if f.has_vertex(b) and f.has_vertex(c):
                return f
        return None

    def constrained_edges(self) -> List[Tuple[MeshVertex, MeshVertex]]:
        seen: Set[Tuple[int, int]] = set()
        result = []
        for f in self._faces.values():
            for i in range(3):
                if not f.constrained[i]:
                    continue
                a, b = f.edge(i)
                key = _edge_key(a, b)
                if key not in seen:
                    seen.add(key)
                    result.append((a, b))
        return result

    # ── point location ──────────────────────────────────────────────

    def locate(self, x: float, y: float, hint: Optional[MeshFace] = None) -> LocateResult:
        """Locate ``(x, y)``.

        Returns ``(face, kind, i)``: for ``VERTEX`` *i* is the vertex
        index in *face*; for ``EDGE`` it is the edge index; for
        ``OUTSIDE_CONVEX_HULL`` *face* is an infinite face whose hull
        edge is visible from the point.
        """
        if not self._faces:
            return None, LocateType.OUTSIDE_AFFINE_HULL, -1

        existing = self._points.get((x, y))
        if existing is not None and existing.face is not None:
            return existing.face, LocateType.VERTEX, existing.face.vertex_index(existing)

        c = self._start_face(hint)
        prev: Optional[MeshFace] = None
        inf = self.infinite_vertex
        for _ in range(len(self._faces) + 16):
            k = self._rng.randrange(3)
            moved = False
            for step in range(3):
                i = (k + step) % 3
                nb = c.neighbors[i]
                if nb is prev:
                    continue
                a, b = c.edge(i)
                if orient(a.x, a.y, b.x, b.y, x, y) < 0.0:
                    if nb.is_infinite:
                        return nb, LocateType.OUTSIDE_CONVEX_HULL, nb.vertex_index(inf)
                    prev, c = c, nb
                    moved = True
                    break
            if not moved:
                return self._classify_in_face(c, x, y)

        logger.debug("walk to (%r, %r) did not converge, scanning faces", x, y)
        return self._locate_by_scan(x, y)

    def _start_face(self, hint: Optional[MeshFace]) -> MeshFace:
        f = hint if hint is not None and hint.alive else self._last_face
        if f is None or not f.alive:
            f = next(iter(self._faces.values()))
        if f.is_infinite:
            f = f.neighbors[f.vertex_index(self.infinite_vertex)]
        return f

    @staticmethod
    def _classify_in_face(c: MeshFace, x: float, y: float) -> LocateResult:
        zeros = []
        for i in range(3):
            a, b = c.edge(i)
            if orient(a.x, a.y, b.x, b.y, x, y) == 0.0:
                zeros.append(i)
        if not zeros:
            return c, LocateType.FACE, -1
        if len(zeros) == 1:
            return c, LocateType.EDGE, zeros[0]
        return c, LocateType.VERTEX, 3 - zeros[0] - zeros[1]

    def _locate_by_scan(self, x: float, y: float) -> LocateResult:
        for f in self.finite_faces():
            if face_contains(f, x, y):
                return self._classify_in_face(f, x, y)
        inf = self.infinite_vertex
        for f in self._faces.values():
            if not f.is_infinite:
                continue
            i = f.vertex_index(inf)
            a, b = f.edge(i)
            if orient(a.x, a.y, b.x, b.y, x, y) > 0.0:
                return f, LocateType.OUTSIDE_CONVEX_HULL, i
        raise MeshInvariantError(f"unable to locate point ({x!r}, {y!r})")

    # ── insertion ───────────────────────────────────────────────────

    def insert(self, x: float, y: float, hint: Optional[MeshFace] = None) -> MeshVertex:
        """Insert ``(x, y)`` and return its vertex.

        Inserting an existing coordinate returns the existing vertex.
        """
        existing = self._points.get((x, y))
        if existing is not None:
            return existing

        v = MeshVertex(x, y, index=self._next_vertex)
        self._next_vertex += 1
        self._vertices[v.index] = v
        self._points[(x, y)] = v

        if not self._faces:
            self._pending.append(v)
            self._try_start()
            return v

        self._insert_vertex(v, hint)
        return v

    def _try_start(self) -> None:
        if len(self._pending) < 3:
            return
        a, b = self._pending[0], self._pending[1]
        for c in self._pending[2:]:
            o = _orient3(a, b, c)
            if o == 0.0:
                continue
            if o < 0.0:
                b, c = c, b
            inf = self.infinite_vertex
            self._replace([], [(a, b, c), (c, b, inf), (a, c, inf), (b, a, inf)])
            rest = [p for p in self._pending if p is not a and p is not b and p is not c]
            self._pending = []
            for p in rest:
                self._insert_vertex(p, None)
            return

    def _insert_vertex(self, v: MeshVertex, hint: Optional[MeshFace]) -> None:
        f, kind, i = self.locate(v.x, v.y, hint)
        if kind is LocateType.FACE:
            self._insert_in_face(f, v)
        elif kind is LocateType.EDGE:
            self._insert_in_edge(f, i, v)
        elif kind is LocateType.OUTSIDE_CONVEX_HULL:
            self._insert_outside(f, v)
        else:
            raise MeshInvariantError(f"cannot insert at ({v.x!r}, {v.y!r}): located {kind.value}")
        self._restore_delaunay(v)
        self._last_face = v.face

    def _insert_in_face(self, f: MeshFace, v: MeshVertex) -> List[MeshFace]:
        a, b, c = f.vertices
        return self._replace([f], [(a, b, v), (b, c, v), (c, a, v)])

    def _insert_in_edge(self, f: MeshFace, i: int, v: MeshVertex) -> List[MeshFace]:
        g = f.neighbors[i]
        x = f.vertices[i]
        a, b = f.edge(i)
        y = g.vertices[g.neighbor_index(f)]
        extra = [(a, v), (v, b)] if f.constrained[i] else []
        return self._replace(
            [f, g],
            [(x, a, v), (x, v, b), (y, b, v), (y, v, a)],
            extra_constraints=extra,
        )

    def _insert_outside(self, f: MeshFace, v: MeshVertex) -> None:
        inf = self.infinite_vertex
        i = f.vertex_index(inf)
        p, q = f.edge(i)
        self._insert_in_face(f, v)

        # extend the new fan across every further hull edge visible from v
        w = q
        while True:
            fa, _ = self.find_edge(v, w)
            g = fa.neighbors[fa.vertex_index(v)]
            z = g.vertices[ccw(g.vertex_index(w))]
            if z.infinite or _orient3(w, z, v) <= 0.0:
                break
            self._replace([fa, g], [(v, w, z), (v, z, inf)])
            w = z

        w = p
        while True:
            fa, _ = self.find_edge(w, v)
            g = fa.neighbors[fa.vertex_index(v)]
            z = g.vertices[cw(g.vertex_index(w))]
            if z.infinite or _orient3(z, w, v) <= 0.0:
                break
            self._replace([fa, g], [(z, w, v), (z, v, inf)])
            w = z

    def split_edge(self, a: MeshVertex, b: MeshVertex, x: float, y: float) -> MeshVertex:
        """Insert ``(x, y)`` onto the existing edge a-b, keeping its constraint flag."""
        edge = self.find_edge(a, b)
        if edge is None:
            raise MeshInvariantError("split_edge called on a non-edge")
        return self._split_edge_at(edge[0], edge[1], x, y)

    def _split_edge_at(self, f: MeshFace, i: int, x: float, y: float) -> MeshVertex:
        existing = self._points.get((x, y))
        if existing is not None:
            return existing
        v = MeshVertex(x, y, index=self._next_vertex)
        self._next_vertex += 1
        self._vertices[v.index] = v
        self._points[(x, y)] = v
        self._insert_in_edge(f, i, v)
        self._restore_delaunay(v)
        self._last_face = v.face
        return v

    # ── Delaunay restoration ────────────────────────────────────────

    def _violates(self, f: MeshFace, i: int) -> bool:
        """True if the unconstrained edge *i* of *f* fails the in-circle test.

        An edge whose flip would not give two ccw faces never violates.
        """
        if f.constrained[i] or not self._incircle_fails(f, i):
            return False
        g = f.neighbors[i]
        x = f.vertices[i]
        a, b = f.edge(i)
        y = g.vertices[g.neighbor_index(f)]
        return _orient3(x, a, y) > 0.0 and _orient3(x, y, b) > 0.0

    def _incircle_fails(self, f: MeshFace, i: int) -> bool:
        g = f.neighbors[i]
        if f.is_infinite or g.is_infinite:
            return False
        d = g.vertices[g.neighbor_index(f)]
        a, b, c = f.vertices
        span = max(
            abs(a.x - d.x), abs(a.y - d.y), abs(b.x - d.x),
            abs(b.y - d.y), abs(c.x - d.x), abs(c.y - d.y),
        )
        return in_circle(a.point, b.point, c.point, d.point) > INCIRCLE_TOL * span ** 4

    def _flip(self, f: MeshFace, i: int) -> List[MeshFace]:
        g = f.neighbors[i]
        x = f.vertices[i]
        a, b = f.edge(i)
        y = g.vertices[g.neighbor_index(f)]
        return self._replace([f, g], [(x, a, y), (x, y, b)])

    def _restore_delaunay(self, v: MeshVertex) -> None:
        stack = list(self.incident_faces(v))
        while stack:
            f = stack.pop()
            if not f.alive:
                continue
            i = f.vertex_index(v)
            if self._violates(f, i):
                stack.extend(self._flip(f, i))

    def _restore_delaunay_edges(self, edges: List[Tuple[MeshVertex, MeshVertex]]) -> None:
        for _ in range(2 * len(edges) + 4):
            changed = False
            for k, (u, w) in enumerate(edges):
                edge = self.find_edge(u, w)
                if edge is None:
                    continue
                f, i = edge
                if self._violates(f, i):
                    x = f.vertices[i]
                    g = f.neighbors[i]
                    y = g.vertices[g.neighbor_index(f)]
                    self._flip(f, i)
                    edges[k] = (x, y)
                    changed = True
            if not changed:
                return

    # ── constraints ─────────────────────────────────────────────────

    def _set_constrained(self, f: MeshFace, i: int, value: bool = True) -> None:
        f.constrained[i] = value
        g = f.neighbors[i]
        g.constrained[g.neighbor_index(f)] = value

    def insert_constraint(self, va: MeshVertex, vb: MeshVertex) -> None:
        """Force the segment va-vb into the triangulation as constrained edges.

        Raises :class:`MeshInvariantError` if the segment cannot be
        materialised.
        """
        work: List[Tuple[MeshVertex, MeshVertex]] = [(va, vb)]
        budget = 4 * len(self._vertices) + 16
        while work:
            budget -= 1
            if budget < 0:
                raise MeshInvariantError("constraint insertion did not terminate")
            s, t = work.pop()
            if s is t:
                continue
            edge = self.find_edge(s, t)
            if edge is not None:
                self._set_constrained(*edge)
                continue

            kind, payload = self._trace_segment(s, t)
            if kind == "vertex":
                work.append((payload, t))
                work.append((s, payload))
            elif kind == "constraint":
                f, i = payload
                a, b = f.edge(i)
                hit = line_intersection(s.point, t.point, a.point, b.point)
                if hit is None:
                    raise MeshInvariantError("parallel constrained edge crossing")
                w = self._split_edge_at(f, i, hit[0], hit[1])
                span = abs(b.x - a.x) + abs(b.y - a.y)
                frac = (abs(w.x - a.x) + abs(w.y - a.y)) / span if span else 0.0
                w.height = a.height + (b.height - a.height) * frac
                logger.warning(
                    "constraint crosses an existing constraint at (%.8f, %.8f)", w.x, w.y
                )
                work.append((w, t))
                work.append((s, w))
            else:
                self._force_edge(s, t, payload)

    def _trace_segment(self, s: MeshVertex, t: MeshVertex):
        """Walk from *s* toward *t*.

        Returns ``("vertex", w)`` when a vertex lies on the open segment,
        ``("constraint", (face, i))`` when a constrained edge is crossed,
        otherwise ``("edges", crossed)`` with every crossed edge.
        """
        dx, dy = t.x - s.x, t.y - s.y
        length_sq = dx * dx + dy * dy
        for w in self.incident_vertices(s):
            if w.infinite or _orient3(s, t, w) != 0.0:
                continue
            dot = (w.x - s.x) * dx + (w.y - s.y) * dy
            if 0.0 < dot < length_sq:
                return "vertex", w

        start: Optional[Edge] = None
        for f in self.incident_faces(s):
            if f.is_infinite:
                continue
            k = f.vertex_index(s)
            a, b = f.vertices[ccw(k)], f.vertices[cw(k)]
            if orient(s.x, s.y, a.x, a.y, t.x, t.y) > 0.0 and orient(s.x, s.y, b.x, b.y, t.x, t.y) < 0.0:
                start = (f, k)
                break
        if start is None:
            raise MeshInvariantError(
                f"no face around ({s.x!r}, {s.y!r}) faces toward ({t.x!r}, {t.y!r})"
            )

        crossed: List[Tuple[MeshVertex, MeshVertex]] = []
        f, i = start
        for _ in range(len(self._faces) + 1):
            if f.constrained[i]:
                return "constraint", (f, i)
            a, b = f.edge(i)
            crossed.append((a, b))
            g = f.neighbors[i]
            if g.is_infinite:
                raise MeshInvariantError("constraint walk left the convex hull")
            w = g.vertices[g.neighbor_index(f)]
            if w is t:
                return "edges", crossed
            o = _orient3(s, t, w)
            if o == 0.0:
                return "vertex", w
            i = g.vertex_index(b) if o > 0.0 else g.vertex_index(a)
            f = g
        raise MeshInvariantError("constraint walk did not terminate")

    def _force_edge(
        self,
        s: MeshVertex,
        t: MeshVertex,
        crossed: Sequence[Tuple[MeshVertex, MeshVertex]],
    ) -> None:
        queue = deque(crossed)
        created: List[Tuple[MeshVertex, MeshVertex]] = []
        budget = 64 * len(crossed) + 64
        while queue:
            budget -= 1
            if budget < 0:
                raise MeshInvariantError(
                    f"constraint ({s.x!r}, {s.y!r})-({t.x!r}, {t.y!r}) did not materialise"
                )
            u, w = queue.popleft()
            edge = self.find_edge(u, w)
            if edge is None:
                continue
            f, i = edge
            x = f.vertices[i]
            g = f.neighbors[i]
            y = g.vertices[g.neighbor_index(f)]
            if not (_orient3(x, y, u) < 0.0 < _orient3(x, y, w)):
                queue.append((u, w))
                continue
            self._flip(f, i)
            if segments_cross(s.point, t.point, x.point, y.point):
                queue.append((x, y))
            else:
                created.append((x, y))

        edge = self.find_edge(s, t)
        if edge is None:
            raise MeshInvariantError(
                f"constraint ({s.x!r}, {s.y!r})-({t.x!r}, {t.y!r}) did not materialise"
            )
        self._set_constrained(*edge)
        created = [e for e in created if _edge_key(*e) != _edge_key(s, t)]
        self._restore_delaunay_edges(created)

    # ── conforming pass ─────────────────────────────────────────────

    def make_conforming(
        self,
        height_fn: Callable[[float, float], float],
        max_splits: int = 10000,
        min_length: float = 0.0,
    ) -> List[MeshVertex]:
        """Split constrained edges at their midpoint until each is locally Delaunay.

        *height_fn* gives the height of every new vertex.  Returns the
        vertices that were added.

        An edge is left as it is when its halves would be shorter than
        *min_length* (degrees), or when a face of the split would be a
        sliver: this happens when the encroaching vertex lies almost on
        the constraint.
        """
        added: List[MeshVertex] = []
        skipped = 0
        work = deque(self.constrained_edges())
        while work:
            a, b = work.popleft()
            edge = self.find_edge(a, b)
            if edge is None:
                continue
            f, i = edge
            if not f.constrained[i] or not self._incircle_fails(f, i):
                continue
            mx, my = (a.x + b.x) * 0.5, (a.y + b.y) * 0.5
            too_short = math.hypot(b.x - a.x, b.y - a.y) < 2.0 * min_length
            if too_short or self._split_makes_sliver(f, i, mx, my):
                skipped += 1
                continue
            if len(added) >= max_splits:
                logger.warning("conforming pass stopped after %d splits", len(added))
                break
            v = self._split_edge_at(f, i, mx, my)
            v.height = height_fn(v.x, v.y)
            added.append(v)
            work.append((a, v))
            work.append((v, b))
            for nf in self.incident_faces(v):
                k = nf.vertex_index(v)
                if nf.constrained[k]:
                    work.append(nf.edge(k))
        if skipped:
            logger.debug("conforming pass left %d encroached edges unsplit", skipped)
        return added

    def _split_makes_sliver(self, f: MeshFace, i: int, x: float, y: float) -> bool:
        """True if splitting edge *i* of *f* at ``(x, y)`` gives a near-flat face."""
        a, b = f.edge(i)
        limit = SLIVER_TOL * ((b.x - a.x) ** 2 + (b.y - a.y) ** 2)
        g = f.neighbors[i]
        for apex, p, q in ((f.vertices[i], a, b), (g.vertices[g.neighbor_index(f)], b, a)):
            if apex.infinite:
                continue
            if (
                orient(apex.x, apex.y, p.x, p.y, x, y) <= limit
                or orient(apex.x, apex.y, x, y, q.x, q.y) <= limit
            ):
                return True
        return False

    # ── validation ──────────────────────────────────────────────────

    def is_valid(self, check_delaunay: bool = True) -> List[str]:
        """Return a list of structural problems (empty when valid)."""
        errors: List[str] = []
        for f in self._faces.values():
            for i in range(3):
                g = f.neighbors[i]
                if g is None or not g.alive:
                    errors.append(f"face {f.index} has a missing neighbour")
                    continue
                try:
                    j = g.neighbor_index(f)
                except ValueError:
                    errors.append(f"faces {f.index}/{g.index} are not mutual neighbours")
                    continue
                if g.constrained[j] != f.constrained[i]:
                    errors.append(f"faces {f.index}/{g.index} disagree on a constraint flag")
                if check_delaunay and self._violates(f, i):
                    errors.append(f"edge {i} of face {f.index} is not locally Delaunay")
            if not f.is_infinite and _orient3(*f.vertices) <= 0.0:
                errors.append(f"face {f.index} is not counter-clockwise")
        return errors

    # ── surgery ─────────────────────────────────────────────────────

    def _replace(
        self,
        old: Sequence[MeshFace],
        triples: Sequence[Tuple[MeshVertex, MeshVertex, MeshVertex]],
        extra_constraints: Sequence[Tuple[MeshVertex, MeshVertex]] = (),
    ) -> List[MeshFace]:
        old_set = set(old)
        outer: Dict[Tuple[MeshVertex, MeshVertex], Tuple[MeshFace, int]] = {}
        constrained: Set[Tuple[int, int]] = set()
        for f in old:
            for i in range(3):
                a, b = f.edge(i)
                if f.constrained[i]:
                    constrained.add(_edge_key(a, b))
                nb = f.neighbors[i]
                if nb is not None and nb not in old_set:
                    outer[(a, b)] = (nb, nb.neighbor_index(f))
        for a, b in extra_constraints:
            constrained.add(_edge_key(a, b))

        for f in old:
            f.alive = False
            del self._faces[f.index]

        new: List[MeshFace] = []
        inner: Dict[Tuple[MeshVertex, MeshVertex], Tuple[MeshFace, int]] = {}
        for tri in triples:
            f = MeshFace(list(tri), index=self._next_face)
            self._next_face += 1
            self._faces[f.index] = f
            for v in tri:
                v.face = f
            for i in range(3):
                a, b = f.edge(i)
                f.constrained[i] = _edge_key(a, b) in constrained
                if (a, b) in outer:
                    nb, j = outer.pop((a, b))
                    f.neighbors[i] = nb
                    nb.neighbors[j] = f
                elif (b, a) in inner:
                    g, j = inner.pop((b, a))
                    f.neighbors[i] = g
                    g.neighbors[j] = f
                else:
                    inner[(a, b)] = (f, i)
            new.append(f)

        if outer or inner:
            raise MeshInvariantError("retriangulated region does not close")
        return new
