from __future__ import annotations

from typing import List, Optional, Tuple

from .geometry import orient
from .models import MeshFace, MeshInvariantError, MeshVertex
from .triangulation import ConstrainedTriangulation


def collect_virtual_edge(
    tri: ConstrainedTriangulation, a: MeshVertex, b: MeshVertex
) -> List[MeshVertex]:
    """Vertices along the segment a-b, in order, including both ends.

    A burned-in constraint may have been split by vertices inserted on
    it; this follows the chain of constrained edges from *a* toward *b*,
    taking at each vertex the constrained neighbour closest to the line
    that still makes progress.  Exactly collinear unconstrained edges
    are accepted when no constrained one qualifies.
    """
    pts = [a]
    dx, dy = b.x - a.x, b.y - a.y
    length_sq = dx * dx + dy * dy
    current = a
    while current is not b:
        if tri.is_edge(current, b):
            pts.append(b)
            break
        cur_dot = (current.x - a.x) * dx + (current.y - a.y) * dy
        best: Optional[MeshVertex] = None
        best_key = None
        for w in tri.incident_vertices(current):
            if w.infinite:
                continue
            dot = (w.x - a.x) * dx + (w.y - a.y) * dy
            if not cur_dot < dot < length_sq:
                continue
            off = abs(orient(a.x, a.y, b.x, b.y, w.x, w.y))
            if not tri.is_constrained(current, w) and off != 0.0:
                continue
            key = (not tri.is_constrained(current, w), off, dot)
            if best_key is None or key < best_key:
                best, best_key = w, key
        if best is None:
            raise MeshInvariantError(
                f"no mesh edge chain from ({a.x!r}, {a.y!r}) to ({b.x!r}, {b.y!r})"
            )
        pts.append(best)
        current = best
    return pts


def persistent_find_edge(
    tri: ConstrainedTriangulation, a: MeshVertex, b: MeshVertex
) -> Tuple[MeshFace, int]:
    """First sub-edge of the (possibly split) segment a-b, as ``(face, i)``.

    *face* lies on the left of a→b.
    """
    pts = collect_virtual_edge(tri, a, b)
    edge = tri.find_edge(pts[0], pts[1])
    if edge is None:
        raise MeshInvariantError("virtual edge chain is not a mesh edge")
    return edge


def is_border_face(face: MeshFace) -> bool:
    """True if *face* touches the convex hull (some neighbour is infinite)."""
    return any(nb is not None and nb.is_infinite for nb in face.neighbors)


def finite_face_on_edge(
    tri: ConstrainedTriangulation, a: MeshVertex, b: MeshVertex
) -> Optional[MeshFace]:
    """The finite face next to hull edge a-b, found via its infinite face."""
    outer = tri.find_face(a, b, tri.infinite_vertex)
    if outer is None:
        return None
    return outer.neighbors[outer.vertex_index(tri.infinite_vertex)]


def next_along_line(
    tri: ConstrainedTriangulation, v: MeshVertex, dx: float, dy: float
) -> Tuple[MeshVertex, MeshFace]:
    """Step from hull vertex *v* to its neighbour along direction ``(dx, dy)``.

    Returns the next vertex and the finite face on the edge between
    them.  Used to walk the straight tile boundary.
    """
    best: Optional[MeshVertex] = None
    best_t = 0.0
    for w in tri.incident_vertices(v):
        if w.infinite:
            continue
        if orient(v.x, v.y, v.x + dx, v.y + dy, w.x, w.y) != 0.0:
            continue
        t = (w.x - v.x) * dx + (w.y - v.y) * dy
        if t > 0.0 and (best is None or t < best_t):
            best, best_t = w, t
    if best is None:
        raise MeshInvariantError(f"no boundary neighbour from ({v.x!r}, {v.y!r})")
    f, _ = tri.find_edge(v, best)
    if f.is_infinite:
        f = tri.find_edge(best, v)[0]
    return best, f
