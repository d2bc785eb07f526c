"""Point selection — which samples and boundary points become vertices.

Every function here inserts into a :class:`ConstrainedTriangulation`
and, where it consumes DEM samples, flags them in the :class:`DemMask`
so that no sample is inserted twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .dem import Dem, DemMask, PolyRasterizer
from .geometry import orient
from .models import DEM_NO_DATA, MeshFace, MeshVertex
from .planar_map import MapHalfedge, PlanarMap
from .triangulation import ConstrainedTriangulation

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class LanduseConstraint:
    """A pending burn-in: mesh vertices plus the map half-edges on each side.

    *left* has the map face to the left of first→second; *right* is its
    twin.
    """

    first: MeshVertex
    second: MeshVertex
    left: MapHalfedge
    right: MapHalfedge


# ═══════════════════════════════════════════════════════════════════
# Single-point insertion
# ═══════════════════════════════════════════════════════════════════


def insert_dem_point(
    tri: ConstrainedTriangulation,
    dem: Dem,
    mask: DemMask,
    x: int,
    y: int,
    hint: Optional[MeshFace] = None,
) -> Optional[MeshVertex]:
    """Insert DEM sample ``(x, y)`` unless it is already used.

    Holes take the height of the nearest valid sample.
    """
    if mask.get(x, y):
        return None
    h = dem.get(x, y)
    if h == DEM_NO_DATA:
        h = dem.get_filled(x, y)
        logger.debug("sample (%d, %d) has no data, using nearest valid %r", x, y, h)
    v = tri.insert(dem.x_to_lon(x), dem.y_to_lat(y), hint)
    v.height = h
    mask.set(x, y)
    return v


def insert_any_point(
    tri: ConstrainedTriangulation,
    dem: Dem,
    lon: float,
    lat: float,
    hint: Optional[MeshFace] = None,
) -> MeshVertex:
    """Insert an arbitrary location with a DEM-interpolated height."""
    h = dem.value_linear(lon, lat)
    if h == DEM_NO_DATA:
        h = dem.xy_nearest(lon, lat)
    v = tri.insert(lon, lat, hint)
    v.height = h
    return v


def add_corner_points(tri: ConstrainedTriangulation, dem: Dem, mask: DemMask) -> List[MeshVertex]:
    """Insert the four DEM corners so the mesh always spans the tile."""
    hint = None
    corners = []
    for x, y in ((0, 0), (dem.width - 1, 0), (dem.width - 1, dem.height - 1), (0, dem.height - 1)):
        mask.set(x, y, False)
        v = insert_dem_point(tri, dem, mask, x, y, hint)
        hint = v.face
        corners.append(v)
    return corners


# ═══════════════════════════════════════════════════════════════════
# Constraint endpoints
# ═══════════════════════════════════════════════════════════════════


def extend_landuse_edge(pmap: PlanarMap, he: MapHalfedge) -> MapHalfedge:
    """Mark *he* and follow it forward through collinear need-burn edges.

    Stops at a junction, a bend, an already-marked edge, or when nothing
    continues.  Returns the last half-edge of the run.
    """
    best = he
    best.mark = True
    while True:
        v = best.target
        candidates = [
            c for c in v.outgoing
            if c is not best.twin and pmap.must_burn(c)
        ]
        if len(candidates) != 1:
            break
        nxt = candidates[0]
        if nxt.mark:
            break
        s, t = best.source, nxt.target
        if orient(s.x, s.y, t.x, t.y, v.x, v.y) != 0.0:
            break
        dot_v = (v.x - s.x) * (t.x - s.x) + (v.y - s.y) * (t.y - s.y)
        dot_t = (t.x - s.x) ** 2 + (t.y - s.y) ** 2
        if not 0.0 < dot_v < dot_t:
            break
        best = nxt
        best.mark = True
    return best


def add_constraint_points(
    tri: ConstrainedTriangulation,
    dem: Dem,
    pmap: PlanarMap,
) -> List[LanduseConstraint]:
    """Insert the endpoints of every consolidated need-burn run.

    The constraints are returned but not yet burned in.
    """
    pmap.clear_marks()
    constraints: List[LanduseConstraint] = []
    hint = None
    for he in pmap:
        if he.mark or he.twin.mark or not pmap.must_burn(he):
            continue
        forward = extend_landuse_edge(pmap, he)
        backward = extend_landuse_edge(pmap, he.twin)
        v1 = insert_any_point(tri, dem, backward.target.x, backward.target.y, hint)
        v2 = insert_any_point(tri, dem, forward.target.x, forward.target.y, v1.face)
        hint = v2.face
        constraints.append(LanduseConstraint(v1, v2, he, he.twin))
    logger.info("%d constraints from %d map half-edges", len(constraints), len(pmap.halfedges))
    return constraints


# ═══════════════════════════════════════════════════════════════════
# Edge and interior samples
# ═══════════════════════════════════════════════════════════════════


def add_edge_points(
    tri: ConstrainedTriangulation,
    dem: Dem,
    mask: DemMask,
    interval: int,
    divisions: int,
    has_border: Sequence[bool],
) -> int:
    """Sample tile edges and interior division lines every *interval* samples.

    *has_border* is ``(west, south, east, north)``; bordered edges were
    supplied by a neighbour, are skipped, and are then marked used so no
    later pass adds points to them.
    """
    west, south, east, north = has_border
    skip_x = max((dem.width - 1) // divisions, 1)
    skip_y = max((dem.height - 1) // divisions, 1)
    count = 0
    hint = None

    for x in range(skip_x if west else 0, dem.width - (skip_x if east else 0), skip_x):
        for dy in range(0, dem.height, interval):
            v = insert_dem_point(tri, dem, mask, x, dy, hint)
            if v is not None:
                hint = v.face
                count += 1

    for y in range(skip_y if south else 0, dem.height - (skip_y if north else 0), skip_y):
        for dx in range(0, dem.width, interval):
            v = insert_dem_point(tri, dem, mask, dx, y, hint)
            if v is not None:
                hint = v.face
                count += 1

    if west:
        mask.set_column(0)
    if east:
        mask.set_column(dem.width - 1)
    if south:
        mask.set_row(0)
    if north:
        mask.set_row(dem.height - 1)
    return count


def copy_wet_points(
    tri: ConstrainedTriangulation,
    dem: Dem,
    mask: DemMask,
    pmap: PlanarMap,
    interval: int,
) -> float:
    """Insert every *interval*-th sample under water.

    Returns the fraction of DEM samples that are wet.
    """
    rast = PolyRasterizer()
    for he in pmap.wet_boundaries():
        rast.add_edge(
            dem.lon_to_x(he.source.x), dem.lat_to_y(he.source.y),
            dem.lon_to_x(he.target.x), dem.lat_to_y(he.target.y),
        )
    wet = 0
    inserted = 0
    hint = None
    for x, y in rast.cells(dem.width, dem.height):
        wet += 1
        if x % interval == 0 and y % interval == 0:
            v = insert_dem_point(tri, dem, mask, x, y, hint)
            if v is not None:
                hint = v.face
                inserted += 1
    ratio = wet / float(dem.width * dem.height)
    logger.info("%d wet samples (%.1f%%), %d inserted", wet, ratio * 100.0, inserted)
    return ratio
