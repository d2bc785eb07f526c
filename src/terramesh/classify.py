"""Constraint burn-in and per-face terrain classification.

Stages
------
1. :func:`split_constraints` — burn every landuse constraint into the
   triangulation (optionally splitting sub-edges that misfit the DEM).
2. :func:`set_terrain_for_constraints` — seed faces on both sides of
   each constraint with their map terrain, then flood-fill across
   unconstrained edges.  Water faces are flattened to the nearest DEM
   sample.
3. :func:`split_beached_water` — break water triangles that bridge two
   shoreline vertices across dry land, then reclassify.
4. :func:`assign_natural_terrain` — run the rule table on every
   non-water face.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import Dict, Optional, Sequence, Tuple

from .algorithms import collect_virtual_edge, persistent_find_edge
from .dem import Dem
from .geometry import DEG_TO_MTR_LAT, deg_to_mtr_lon
from .models import DEM_NO_DATA, NO_VALUE, MeshFace, MeshInvariantError, MeshVertex, ccw, cw
from .planar_map import MapFace
from .points import LanduseConstraint
from .terrain import TERRAIN_NATURAL, TERRAIN_WATER, NaturalTerrainRules, TerrainSample
from .triangulation import ConstrainedTriangulation

logger = logging.getLogger(__name__)


def _dem_height(dem: Dem, x: float, y: float) -> float:
    h = dem.value_linear(x, y)
    if h == DEM_NO_DATA:
        h = dem.xy_nearest(x, y)
    return h


# ═══════════════════════════════════════════════════════════════════
# Burn-in
# ═══════════════════════════════════════════════════════════════════


def needs_split(dem: Dem, a: MeshVertex, b: MeshVertex, max_error: float) -> Optional[Tuple[float, float]]:
    """Midpoint of a-b if the DEM there departs from the straight line by more than *max_error*."""
    mx, my = (a.x + b.x) * 0.5, (a.y + b.y) * 0.5
    h1 = dem.value_linear(a.x, a.y)
    h2 = dem.value_linear(b.x, b.y)
    hc = dem.value_linear(mx, my)
    if DEM_NO_DATA in (h1, h2, hc):
        return None
    if abs((h1 + h2) * 0.5 - hc) > max_error:
        return (mx, my)
    return None


def split_constraints(
    tri: ConstrainedTriangulation,
    dem: Dem,
    constraints: Sequence[LanduseConstraint],
    max_error: float,
    split: bool = False,
    max_depth: int = 8,
) -> int:
    """Insert every constraint; returns how many split vertices were added."""
    queue = deque((c.first, c.second, 0) for c in constraints)
    total = 0
    while queue:
        a, b, depth = queue.popleft()
        tri.insert_constraint(a, b)
        if not split or depth >= max_depth:
            continue
        chain = collect_virtual_edge(tri, a, b)
        for p, q in zip(chain, chain[1:]):
            candidate = needs_split(dem, p, q, max_error)
            if candidate is None:
                continue
            v = tri.split_edge(p, q, *candidate)
            v.height = _dem_height(dem, v.x, v.y)
            total += 1
            queue.append((p, v, depth + 1))
            queue.append((v, q, depth + 1))
    logger.info("burned in %d constraints, %d split vertices added", len(constraints), total)
    return total


# ═══════════════════════════════════════════════════════════════════
# Wet / dry flood fill
# ═══════════════════════════════════════════════════════════════════


def _seed(face: MeshFace, map_face: MapFace) -> None:
    face.terrain = map_face.terrain_type
    face.feature = map_face.terrain_type
    if face.orig_face is None:
        face.orig_face = map_face


def set_terrain_for_constraints(
    tri: ConstrainedTriangulation,
    constraints: Sequence[LanduseConstraint],
    dem: Dem,
) -> int:
    """Tag faces with the terrain of the map face they sit in.

    Returns the number of conflicting assignments (logged, not fatal).
    """
    for f in tri.finite_faces():
        f.terrain = TERRAIN_NATURAL
        f.feature = NO_VALUE
        f.orig_face = None

    pending: deque = deque()
    for c in constraints:
        for (a, b), he in (((c.first, c.second), c.left), ((c.second, c.first), c.right)):
            face, _ = persistent_find_edge(tri, a, b)
            if face.is_infinite:
                continue
            _seed(face, he.face)
            pending.append(face)

    visited = tri.next_epoch()
    conflicts = 0
    while pending:
        f = pending.popleft()
        if f.flag == visited:
            continue
        f.flag = visited
        tg = f.terrain
        for i in range(3):
            if f.constrained[i]:
                continue
            fn = f.neighbors[i]
            if fn.is_infinite or fn.flag == visited:
                continue
            if fn.terrain != TERRAIN_NATURAL and fn.terrain != tg:
                v = f.vertices[i]
                logger.error(
                    "conflicting terrain assignment between %d and %d near (%.6f, %.6f)",
                    fn.terrain, tg, v.x, v.y,
                )
                conflicts += 1
            else:
                fn.terrain = tg
                fn.feature = tg
            if fn.orig_face is None:
                fn.orig_face = f.orig_face
            pending.append(fn)

    for f in tri.finite_faces():
        if f.terrain != TERRAIN_WATER:
            continue
        for v in f.vertices:
            h = dem.xy_nearest(v.x, v.y)
            if h != DEM_NO_DATA:
                v.height = h
    return conflicts


def vertex_has_constraint(tri: ConstrainedTriangulation, v: MeshVertex) -> bool:
    for f in tri.incident_faces(v):
        i = f.vertex_index(v)
        if f.constrained[ccw(i)] or f.constrained[cw(i)]:
            return True
    return False


def split_beached_water(tri: ConstrainedTriangulation, dem: Dem) -> int:
    """Split unconstrained water edges whose ends both lie on constraints.

    Such an edge cuts straight across dry land between two shore
    points.  Returns the number of splits; the caller reclassifies.
    """
    splits: Dict[Tuple[float, float], Tuple[MeshVertex, MeshVertex]] = {}
    touches: Dict[int, bool] = {}

    def touching(v: MeshVertex) -> bool:
        if v.index not in touches:
            touches[v.index] = vertex_has_constraint(tri, v)
        return touches[v.index]

    for f in tri.finite_faces():
        if f.terrain != TERRAIN_WATER:
            continue
        for i in range(3):
            if f.constrained[i]:
                continue
            a, b = f.edge(i)
            if touching(a) and touching(b):
                splits.setdefault(((a.x + b.x) * 0.5, (a.y + b.y) * 0.5), (a, b))

    for (x, y), (a, b) in sorted(splits.items()):
        if not tri.is_edge(a, b):
            v = tri.insert(x, y)
        else:
            v = tri.split_edge(a, b, x, y)
        v.height = _dem_height(dem, x, y)
    logger.info("%d beached water splits", len(splits))
    return len(splits)


# ═══════════════════════════════════════════════════════════════════
# Natural terrain
# ═══════════════════════════════════════════════════════════════════


def _variant(x: float, y: float, rep_switch_m: float) -> int:
    xm = abs(x) * deg_to_mtr_lon(y)
    ym = abs(y) * DEG_TO_MTR_LAT
    return int(math.floor(xm / rep_switch_m) + math.floor(ym / rep_switch_m)) % 4


def face_sample(
    face: MeshFace,
    rep_switch_m: float,
    layers: Optional[Dict[str, Dem]] = None,
) -> TerrainSample:
    """Gather what the rule table needs to know about *face*."""
    a, b, c = face.vertices
    cx = (a.x + b.x + c.x) / 3.0
    cy = (a.y + b.y + c.y) / 3.0
    nz = max(-1.0, min(1.0, face.normal[2]))
    near_water = any(
        not nb.is_infinite and nb.terrain == TERRAIN_WATER for nb in face.neighbors
    )
    zoning = face.orig_face.zoning if isinstance(face.orig_face, MapFace) else NO_VALUE

    values: Dict[str, float] = {}
    for name, layer in (layers or {}).items():
        samples = [layer.value_linear(v.x, v.y) for v in face.vertices]
        good = [s for s in samples if s != DEM_NO_DATA]
        values[name] = sum(good) / len(good) if good else DEM_NO_DATA

    return TerrainSample(
        lon=cx,
        lat=cy,
        elevation=(a.height + b.height + c.height) / 3.0,
        slope=math.degrees(math.acos(nz)),
        feature=face.feature,
        zoning=zoning,
        near_water=near_water,
        variant=_variant(cx, cy, rep_switch_m),
        layers=values,
    )


def assign_natural_terrain(
    tri: ConstrainedTriangulation,
    rules: NaturalTerrainRules,
    rep_switch_m: float,
    layers: Optional[Dict[str, Dem]] = None,
) -> int:
    """Replace each non-water face's terrain with a rule-table result."""
    count = 0
    for f in tri.finite_faces():
        f.flag = 0
        if f.terrain == TERRAIN_WATER:
            continue
        sample = face_sample(f, rep_switch_m, layers)
        terrain = rules.find_terrain(sample)
        if terrain == NO_VALUE:
            raise MeshInvariantError(
                f"no terrain rule matches face at ({sample.lon:.6f}, {sample.lat:.6f}) "
                f"slope={sample.slope:.1f} elevation={sample.elevation:.1f}"
            )
        f.terrain = terrain
        count += 1
    logger.info("assigned natural terrain to %d faces", count)
    return count
