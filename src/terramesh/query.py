"""Queries over a finished mesh — heights, profiles and fit statistics.

Usage
-----
>>> h = mesh_height_at_point(tri, -71.5, 42.5)
>>> state = march_height_start(tri, -71.9, 42.1)
>>> profile = march_height_go(tri, state, -71.1, 42.9)
>>> stats = calc_mesh_error(tri, dem)
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .dem import Dem
from .geometry import face_contains, height_within_face, orient
from .models import DEM_NO_DATA, LocateType, MeshFace, MeshInvariantError, MeshVertex, Vec3
from .triangulation import ConstrainedTriangulation

logger = logging.getLogger(__name__)


def _finite_face_at(tri: ConstrainedTriangulation, x: float, y: float, hint: Optional[MeshFace] = None):
    """``(face, kind, i)`` with *face* finite whenever the point is on the mesh."""
    face, kind, i = tri.locate(x, y, hint)
    if face is None or kind in (LocateType.OUTSIDE_CONVEX_HULL, LocateType.OUTSIDE_AFFINE_HULL):
        return None, kind, i
    if face.is_infinite:
        if kind == LocateType.EDGE:
            nb = face.neighbors[i]
            return nb, kind, nb.neighbor_index(face)
        v = face.vertices[i]
        for f in tri.incident_faces(v):
            if not f.is_infinite:
                return f, kind, f.vertex_index(v)
        return None, kind, i
    return face, kind, i


def mesh_height_at_point(
    tri: ConstrainedTriangulation, lon: float, lat: float, hint: Optional[MeshFace] = None
) -> float:
    """Interpolated mesh height at ``(lon, lat)``, or ``DEM_NO_DATA`` off the mesh."""
    if tri.number_of_faces() < 1:
        return DEM_NO_DATA
    face, kind, i = _finite_face_at(tri, lon, lat, hint)
    if face is None:
        logger.warning("requested point was off mesh: %f, %f", lon, lat)
        return DEM_NO_DATA
    if kind == LocateType.VERTEX:
        return face.vertices[i].height
    return height_within_face(face, lon, lat)


# ═══════════════════════════════════════════════════════════════════
# Marching
# ═══════════════════════════════════════════════════════════════════


@dataclass
class MarchState:
    """Where the last march ended; reused as the start of the next one."""

    x: float
    y: float
    height: float = DEM_NO_DATA
    face: Optional[MeshFace] = field(default=None, repr=False)


def march_height_start(tri: ConstrainedTriangulation, x: float, y: float) -> MarchState:
    face, _, _ = _finite_face_at(tri, x, y)
    height = height_within_face(face, x, y) if face is not None else DEM_NO_DATA
    return MarchState(x, y, height, face)


def _ray_in_face(face: MeshFace, v: MeshVertex, gx: float, gy: float) -> bool:
    i = face.vertex_index(v)
    a = face.vertices[(i + 1) % 3]
    b = face.vertices[(i + 2) % 3]
    return orient(v.x, v.y, a.x, a.y, gx, gy) >= 0.0 and orient(v.x, v.y, b.x, b.y, gx, gy) <= 0.0


def _walk(
    tri: ConstrainedTriangulation,
    face: MeshFace,
    sx: float,
    sy: float,
    gx: float,
    gy: float,
) -> Tuple[List[Vec3], Optional[MeshFace]]:
    """Points where segment s→g crosses mesh edges, starting at s.

    Returns the points and the face holding *g*; the face is ``None``
    when the walk left the convex hull before reaching *g*.  Raises
    :class:`MeshInvariantError` if a face holding neither end has no
    edge the segment leaves through.
    """
    points: List[Vec3] = [(sx, sy, height_within_face(face, sx, sy))]
    dx, dy = gx - sx, gy - sy
    for _ in range(4 * tri.number_of_faces() + 8):
        if face_contains(face, gx, gy):
            points.append((gx, gy, height_within_face(face, gx, gy)))
            return points, face

        exit_i, exit_t = -1, 0.0
        for i in range(3):
            a, b = face.edge(i)
            if orient(a.x, a.y, b.x, b.y, gx, gy) >= 0.0:
                continue
            ex, ey = b.x - a.x, b.y - a.y
            denom = dx * ey - dy * ex
            if denom == 0.0:
                continue
            t = ((a.x - sx) * ey - (a.y - sy) * ex) / denom
            if exit_i < 0 or t < exit_t:
                exit_i, exit_t = i, t
        if exit_i < 0:
            raise MeshInvariantError(
                f"march from ({sx}, {sy}) to ({gx}, {gy}) found no exit from face {face.index}"
            )

        a, b = face.edge(exit_i)
        through = None
        if orient(sx, sy, gx, gy, a.x, a.y) == 0.0:
            through = a
        elif orient(sx, sy, gx, gy, b.x, b.y) == 0.0:
            through = b

        if through is not None:
            pt = (through.x, through.y, through.height)
            nxt = None
            for f in tri.incident_faces(through):
                if f is not face and not f.is_infinite and _ray_in_face(f, through, gx, gy):
                    nxt = f
                    break
        else:
            px, py = sx + dx * exit_t, sy + dy * exit_t
            pt = (px, py, height_within_face(face, px, py))
            nxt = face.neighbors[exit_i]
            if nxt.is_infinite:
                nxt = None

        if pt[:2] != points[-1][:2]:
            points.append(pt)
        if nxt is None:
            return points, None
        face = nxt
    raise MeshInvariantError(f"march to ({gx}, {gy}) did not terminate")


def march_height_go(
    tri: ConstrainedTriangulation, state: MarchState, gx: float, gy: float
) -> List[Vec3]:
    """Height profile from the state's location to ``(gx, gy)``.

    The first point is the start (or, for a start off the mesh, where
    the segment enters it), the last is the goal, and the points between
    are where the segment crosses mesh edges.  *state* is advanced to
    the goal.
    """
    points: List[Vec3] = []
    goal_face: Optional[MeshFace] = None
    if state.face is not None and state.face.alive:
        points, goal_face = _walk(tri, state.face, state.x, state.y, gx, gy)

    if goal_face is None:
        relocated, _, _ = _finite_face_at(tri, gx, gy)
        if relocated is not None:
            back, _ = _walk(tri, relocated, gx, gy, state.x, state.y)
            points = list(reversed(back))
            goal_face = relocated
        else:
            logger.warning("march goal (%f, %f) is off mesh", gx, gy)

    state.x, state.y, state.face = gx, gy, goal_face
    state.height = height_within_face(goal_face, gx, gy) if goal_face is not None else DEM_NO_DATA
    if points and goal_face is not None:
        points[-1] = (gx, gy, state.height)
    return points


# ═══════════════════════════════════════════════════════════════════
# Statistics
# ═══════════════════════════════════════════════════════════════════


@dataclass
class ErrorStats:
    """How well the mesh fits the DEM it was built from (metres).

    Errors are ``dem - mesh``: positive where the mesh sits too low.
    """

    count: int = 0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    std: float = 0.0
    worst_pos: float = 0.0
    worst_pos_at: Optional[Tuple[float, float]] = None
    worst_neg: float = 0.0
    worst_neg_at: Optional[Tuple[float, float]] = None

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "min": self.min,
            "max": self.max,
            "mean": self.mean,
            "std": self.std,
            "worst_pos": self.worst_pos,
            "worst_pos_at": list(self.worst_pos_at) if self.worst_pos_at else None,
            "worst_neg": self.worst_neg,
            "worst_neg_at": list(self.worst_neg_at) if self.worst_neg_at else None,
        }


def calc_mesh_error(tri: ConstrainedTriangulation, dem: Dem) -> ErrorStats:
    """Compare every valid DEM sample with the mesh surface above it."""
    stats = ErrorStats()
    if tri.number_of_faces() < 1:
        return stats
    errors: List[float] = []
    where: List[Tuple[float, float]] = []
    last: Optional[MeshFace] = None
    for y in range(dem.height):
        lat = dem.y_to_lat(y)
        for x in range(dem.width):
            ideal = dem.get(x, y)
            if ideal == DEM_NO_DATA:
                continue
            lon = dem.x_to_lon(x)
            if last is None or not last.alive or not face_contains(last, lon, lat):
                face, _, _ = _finite_face_at(tri, lon, lat, last)
                if face is not None:
                    last = face
            if last is None or not face_contains(last, lon, lat):
                continue
            errors.append(ideal - height_within_face(last, lon, lat))
            where.append((lon, lat))

    if not errors:
        return stats
    arr = np.asarray(errors)
    stats.count = int(arr.size)
    stats.min = float(arr.min())
    stats.max = float(arr.max())
    stats.mean = float(arr.mean())
    stats.std = float(arr.std())
    hi, lo = int(arr.argmax()), int(arr.argmin())
    if arr[hi] > 0.0:
        stats.worst_pos, stats.worst_pos_at = float(arr[hi]), where[hi]
        logger.info("worst positive error is %f meters at %+08.6f, %+09.7f", stats.worst_pos, *where[hi])
    if arr[lo] < 0.0:
        stats.worst_neg, stats.worst_neg_at = float(arr[lo]), where[lo]
        logger.info("worst negative error is %f meters at %+08.6f, %+09.7f", stats.worst_neg, *where[lo])
    return stats


def calc_mesh_textures(tri: ConstrainedTriangulation) -> Counter:
    """How many times each terrain is drawn (as base or as border layer)."""
    counts: Counter = Counter()
    for f in tri.finite_faces():
        counts[f.terrain] += 1
        counts.update(f.terrain_border)
    return counts
