"""Greedy refinement — insert the worst-fitting DEM sample until done.

Each finite face is scanned once for its worst unused sample (the one
furthest from the face's plane).  Candidates sit in a heap keyed by
priority; after an insertion only the faces around the new vertex are
rescanned.  Two modes:

- *error* mode (``size_lim == 0``): priority is the vertical error;
  stops once the worst error is within ``err_lim``.
- *size* mode (``size_lim > 0``): priority is the face's longest edge
  in metres; stops once every face is shorter than ``size_lim``.

Both stop when the triangulation holds ``max_points`` vertices.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import math
from typing import List, Optional, Tuple

import numpy as np

from .dem import Dem, DemMask
from .geometry import edge_length_m
from .models import DEM_NO_DATA, MeshFace
from .points import insert_dem_point
from .triangulation import ConstrainedTriangulation

logger = logging.getLogger(__name__)

_BARY_EPS = 1e-9


def worst_sample(
    face: MeshFace,
    dem: Dem,
    mask: DemMask,
    lons: np.ndarray,
    lats: np.ndarray,
) -> Optional[Tuple[float, int, int]]:
    """``(error, x, y)`` of the unused valid sample deviating most from *face*."""
    a, b, c = face.vertices
    area = (b.x - a.x) * (c.y - a.y) - (b.y - a.y) * (c.x - a.x)
    if area <= 0.0:
        return None
    fx = [dem.lon_to_x(v.x) for v in face.vertices]
    fy = [dem.lat_to_y(v.y) for v in face.vertices]
    x0 = max(0, int(math.floor(min(fx))))
    x1 = min(dem.width - 1, int(math.ceil(max(fx))))
    y0 = max(0, int(math.floor(min(fy))))
    y1 = min(dem.height - 1, int(math.ceil(max(fy))))
    if x0 > x1 or y0 > y1:
        return None

    gx, gy = np.meshgrid(np.arange(x0, x1 + 1), np.arange(y0, y1 + 1))
    px = lons[gx]
    py = lats[gy]
    wa = ((c.x - b.x) * (py - b.y) - (c.y - b.y) * (px - b.x)) / area
    wb = ((a.x - c.x) * (py - c.y) - (a.y - c.y) * (px - c.x)) / area
    wc = 1.0 - wa - wb
    heights = dem.heights[gy, gx]
    valid = (
        (wa >= -_BARY_EPS) & (wb >= -_BARY_EPS) & (wc >= -_BARY_EPS)
        & ~mask.used[gy, gx]
        & (heights != DEM_NO_DATA)
    )
    if not valid.any():
        return None
    plane = wa * a.height + wb * b.height + wc * c.height
    err = np.where(valid, np.abs(heights - plane), -1.0)
    k = int(np.argmax(err))
    return float(err.flat[k]), int(gx.flat[k]), int(gy.flat[k])


def _longest_edge_m(face: MeshFace) -> float:
    a, b, c = face.vertices
    return max(edge_length_m(a, b), edge_length_m(b, c), edge_length_m(c, a))


def greedy_mesh_build(
    tri: ConstrainedTriangulation,
    dem: Dem,
    mask: DemMask,
    err_lim: float,
    size_lim: float,
    max_points: int,
) -> int:
    """Refine *tri* from *dem*; returns the number of vertices added."""
    lons = np.array([dem.x_to_lon(x) for x in range(dem.width)])
    lats = np.array([dem.y_to_lat(y) for y in range(dem.height)])
    heap: List[tuple] = []
    seq = itertools.count()

    def scan(face: MeshFace) -> None:
        cand = worst_sample(face, dem, mask, lons, lats)
        if cand is None:
            return
        err, x, y = cand
        if size_lim > 0.0:
            prio = _longest_edge_m(face)
            if prio <= size_lim:
                return
        else:
            if err <= err_lim:
                return
            prio = err
        heapq.heappush(heap, (-prio, next(seq), face, x, y))

    for face in tri.finite_faces():
        scan(face)

    added = 0
    while heap and tri.number_of_vertices() < max_points:
        _, _, face, x, y = heapq.heappop(heap)
        if not face.alive or mask.get(x, y):
            continue
        v = insert_dem_point(tri, dem, mask, x, y, face)
        if v is None:
            continue
        added += 1
        for f in tri.incident_faces(v):
            if not f.is_infinite:
                scan(f)

    mode = f"size {size_lim:.0f}m" if size_lim > 0.0 else f"error {err_lim:.2f}m"
    logger.info("greedy refinement (%s) added %d points, %d total", mode, added, tri.number_of_vertices())
    return added
