"""Geometry helpers shared by the triangulation, blending and queries.

Coordinates are geographic (longitude, latitude in degrees).  Anything
that measures distance or slope converts to metres locally: latitude
degrees scale by :data:`DEG_TO_MTR_LAT`, longitude degrees additionally
by ``cos(latitude)``.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Optional, Tuple

from .models import MeshFace, MeshVertex, Vec3

if TYPE_CHECKING:
    from .triangulation import ConstrainedTriangulation


DEG_TO_NM_LAT = 60.0
NM_TO_MTR = 1852.0
DEG_TO_MTR_LAT = DEG_TO_NM_LAT * NM_TO_MTR
DEG_TO_RAD = math.pi / 180.0

Point = Tuple[float, float]


def deg_to_mtr_lon(lat: float) -> float:
    """Metres per degree of longitude at latitude *lat*."""
    return DEG_TO_MTR_LAT * math.cos(lat * DEG_TO_RAD)


# ═══════════════════════════════════════════════════════════════════
# Predicates
# ═══════════════════════════════════════════════════════════════════


def orient(ax: float, ay: float, bx: float, by: float, cx: float, cy: float) -> float:
    """Twice the signed area of ``abc``; positive when *c* is left of a→b."""
    return (bx - ax) * (cy - ay) - (by - ay) * (cx - ax)


def orient_v(a: MeshVertex, b: MeshVertex, x: float, y: float) -> float:
    return orient(a.x, a.y, b.x, b.y, x, y)


def in_circle(a: Point, b: Point, c: Point, d: Point) -> float:
    """Positive when *d* lies inside the circumcircle of ccw triangle ``abc``."""
    adx, ady = a[0] - d[0], a[1] - d[1]
    bdx, bdy = b[0] - d[0], b[1] - d[1]
    cdx, cdy = c[0] - d[0], c[1] - d[1]
    ad = adx * adx + ady * ady
    bd = bdx * bdx + bdy * bdy
    cd = cdx * cdx + cdy * cdy
    return (
        ad * (bdx * cdy - cdx * bdy)
        + bd * (cdx * ady - adx * cdy)
        + cd * (adx * bdy - bdx * ady)
    )


def line_intersection(p1: Point, p2: Point, q1: Point, q2: Point) -> Optional[Point]:
    """Intersection of the lines through p1-p2 and q1-q2, or ``None`` if parallel."""
    d1x, d1y = p2[0] - p1[0], p2[1] - p1[1]
    d2x, d2y = q2[0] - q1[0], q2[1] - q1[1]
    denom = d1x * d2y - d1y * d2x
    if denom == 0.0:
        return None
    t = ((q1[0] - p1[0]) * d2y - (q1[1] - p1[1]) * d2x) / denom
    return (p1[0] + t * d1x, p1[1] + t * d1y)


def segments_cross(p1: Point, p2: Point, q1: Point, q2: Point) -> bool:
    """True if the open segments p1-p2 and q1-q2 properly intersect."""
    o1 = orient(p1[0], p1[1], p2[0], p2[1], q1[0], q1[1])
    o2 = orient(p1[0], p1[1], p2[0], p2[1], q2[0], q2[1])
    o3 = orient(q1[0], q1[1], q2[0], q2[1], p1[0], p1[1])
    o4 = orient(q1[0], q1[1], q2[0], q2[1], p2[0], p2[1])
    return o1 * o2 < 0.0 and o3 * o4 < 0.0


def face_contains(face: MeshFace, x: float, y: float) -> bool:
    """Closed containment test for a finite ccw face."""
    a, b, c = face.vertices
    return (
        orient(a.x, a.y, b.x, b.y, x, y) >= 0.0
        and orient(b.x, b.y, c.x, c.y, x, y) >= 0.0
        and orient(c.x, c.y, a.x, a.y, x, y) >= 0.0
    )


# ═══════════════════════════════════════════════════════════════════
# Heights and distances
# ═══════════════════════════════════════════════════════════════════


def height_within_face(face: MeshFace, x: float, y: float) -> float:
    """Height of the face's supporting plane at ``(x, y)``.

    Planar interpolation is invariant under the per-axis metre scaling,
    so barycentric weights in degree space give the same plane.
    """
    a, b, c = face.vertices
    area = orient(a.x, a.y, b.x, b.y, c.x, c.y)
    if area == 0.0:
        return (a.height + b.height + c.height) / 3.0
    wa = orient(b.x, b.y, c.x, c.y, x, y) / area
    wb = orient(c.x, c.y, a.x, a.y, x, y) / area
    wc = 1.0 - wa - wb
    return wa * a.height + wb * b.height + wc * c.height


def _segment_dist_sq(px: float, py: float, ax: float, ay: float, bx: float, by: float) -> float:
    dx, dy = bx - ax, by - ay
    len_sq = dx * dx + dy * dy
    if len_sq == 0.0:
        t = 0.0
    else:
        t = max(0.0, min(1.0, ((px - ax) * dx + (py - ay) * dy) / len_sq))
    ex = ax + t * dx - px
    ey = ay + t * dy - py
    return ex * ex + ey * ey


def dist_pt_to_tri(v: MeshVertex, face: MeshFace) -> float:
    """Distance in metres from *v* to the (closed) triangle *face*."""
    if face_contains(face, v.x, v.y):
        return 0.0
    sx = deg_to_mtr_lon(v.y)
    sy = DEG_TO_MTR_LAT
    pts = [((fv.x - v.x) * sx, (fv.y - v.y) * sy) for fv in face.vertices]
    best = min(
        _segment_dist_sq(0.0, 0.0, pts[i][0], pts[i][1], pts[(i + 1) % 3][0], pts[(i + 1) % 3][1])
        for i in range(3)
    )
    return math.sqrt(best)


def edge_length_m(a: MeshVertex, b: MeshVertex) -> float:
    sx = deg_to_mtr_lon((a.y + b.y) * 0.5)
    return math.hypot((b.x - a.x) * sx, (b.y - a.y) * DEG_TO_MTR_LAT)


# ═══════════════════════════════════════════════════════════════════
# Normals
# ═══════════════════════════════════════════════════════════════════


def _normalize(x: float, y: float, z: float) -> Vec3:
    length = math.sqrt(x * x + y * y + z * z)
    if length == 0.0:
        return (0.0, 0.0, 1.0)
    return (x / length, y / length, z / length)


def face_normal(face: MeshFace) -> Vec3:
    """Unit normal of a finite face in metre space, ``(0, 0, 1)`` if degenerate."""
    a, b, c = face.vertices
    sx = deg_to_mtr_lon(a.y)
    sy = DEG_TO_MTR_LAT
    ux, uy, uz = (b.x - a.x) * sx, (b.y - a.y) * sy, b.height - a.height
    vx, vy, vz = (c.x - a.x) * sx, (c.y - a.y) * sy, c.height - a.height
    return _normalize(uy * vz - uz * vy, uz * vx - ux * vz, ux * vy - uy * vx)


def calculate_mesh_normals(tri: "ConstrainedTriangulation") -> None:
    """Set the normal of every finite face and vertex.

    A vertex normal is the normalised sum of its incident finite face
    normals.
    """
    for face in tri.finite_faces():
        face.normal = face_normal(face)
    for v in tri.finite_vertices():
        sx = sy = sz = 0.0
        for face in tri.incident_faces(v):
            if tri.is_infinite(face):
                continue
            nx, ny, nz = face.normal
            sx += nx
            sy += ny
            sz += nz
        v.normal = _normalize(sx, sy, sz)
