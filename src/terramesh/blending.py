"""Border blending — how higher-priority terrain fades over lower.

Every finite non-water face carries a base ``terrain`` and a set of
``terrain_border`` layers drawn on top of it.  Each vertex carries a
blend level per layer: 1.0 is fully opaque, 0.0 fully faded.

Passes (run in this order by the pipeline)
------------------------------------------
1. :func:`rebase_borders` — lower the base of faces on a matched edge
   so that intruding low-priority terrain from the master is not buried.
2. :func:`calc_border_blends` — spread every face's terrain outward
   over lower-priority neighbours within the transition distance.
3. :func:`force_master_borders` — impose the master's layers and blend
   levels on matched boundary vertices.
4. :func:`optimize_borders` — promote faces fully covered by a border.
5. :func:`check_borders` — no water face may carry a border.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .algorithms import is_border_face
from .borders import MeshMatch
from .geometry import dist_pt_to_tri
from .models import MeshFace, MeshInvariantError, MeshVertex, ccw, cw
from .terrain import TERRAIN_WATER, NaturalTerrainRules
from .triangulation import ConstrainedTriangulation

logger = logging.getLogger(__name__)


@dataclass
class BlendStats:
    """Counters reported after blending."""

    total: int = 0
    border: int = 0
    check: int = 0
    opt: int = 0


# ═══════════════════════════════════════════════════════════════════
# Primitives
# ═══════════════════════════════════════════════════════════════════


def add_zero_mix_if_needed(face: MeshFace, layer: int) -> None:
    """Give *face* border *layer*, creating zero blends where absent."""
    if face.terrain == TERRAIN_WATER:
        return
    face.terrain_border.add(layer)
    for v in face.vertices:
        v.border_blend.setdefault(layer, 0.0)


def rebase_triangle(
    rules: NaturalTerrainRules,
    face: MeshFace,
    new_base: int,
    v1: Optional[MeshVertex],
    v2: Optional[MeshVertex],
    modified: Dict[MeshVertex, None],
) -> None:
    """Switch *face* to *new_base*, keeping the old base as a border.

    The old base stays opaque everywhere except at *v1* / *v2*, which
    sit on the master edge.  Opaque vertices are collected in *modified*.
    """
    old_base = face.terrain
    if TERRAIN_WATER in (old_base, new_base):
        return
    if rules.has_no_xon(old_base) or rules.has_no_xon(new_base):
        return
    face.terrain = new_base
    face.terrain_border.add(old_base)
    for v in face.vertices:
        if v is v1 or v is v2:
            v.border_blend[old_base] = max(v.border_blend.get(old_base, 0.0), 0.0)
        else:
            v.border_blend[old_base] = 1.0
            modified[v] = None


def safe_smear_border(tri: ConstrainedTriangulation, vert: MeshVertex, layer: int) -> None:
    """Let every face around a blended *vert* fade *layer* out."""
    if vert.blend(layer) <= 0.0:
        return
    for f in tri.incident_faces(vert):
        if f.is_infinite or f.terrain == layer or f.terrain == TERRAIN_WATER:
            continue
        f.terrain_border.add(layer)
        for v in f.vertices:
            v.border_blend[layer] = max(0.0, v.border_blend.get(layer, 0.0))


# ═══════════════════════════════════════════════════════════════════
# Passes
# ═══════════════════════════════════════════════════════════════════


def rebase_borders(
    tri: ConstrainedTriangulation,
    rules: NaturalTerrainRules,
    borders: Sequence[MeshMatch],
) -> int:
    """Rebase faces along matched edges; returns the number of rebased vertices."""
    lower = rules.lower_priority
    modified: Dict[MeshVertex, None] = {}
    for match in borders:
        for n, edge in enumerate(match.edges):
            face = edge.buddy
            if face is None:
                continue
            lowest = face.terrain
            for layer in [edge.base, *sorted(edge.borders)]:
                if lower(layer, lowest):
                    lowest = layer
            if lowest != face.terrain:
                rebase_triangle(
                    rules, face, lowest,
                    match.vertices[n].buddy, match.vertices[n + 1].buddy, modified,
                )

        for mv in match.vertices:
            if mv.buddy is None:
                continue
            for f in tri.incident_faces(mv.buddy):
                if f.is_infinite or is_border_face(f):
                    continue
                lowest = f.terrain
                for layer, level in sorted(mv.blending.items()):
                    if level > 0.0 and lower(layer, lowest):
                        lowest = layer
                if lowest != f.terrain:
                    rebase_triangle(rules, f, lowest, mv.buddy, None, modified)

    for v in modified:
        for f in tri.incident_faces(v):
            if f.is_infinite:
                continue
            for layer, level in list(v.border_blend.items()):
                if level > 0.0:
                    add_zero_mix_if_needed(f, layer)
    return len(modified)


def _spread_from(
    tri: ConstrainedTriangulation,
    rules: NaturalTerrainRules,
    source: MeshFace,
    stats: BlendStats,
) -> None:
    layer = source.terrain
    visited = tri.next_epoch()
    source.flag = visited
    queue = deque([source])
    queued = {source}

    while queue:
        border = queue.popleft()
        queued.discard(border)
        spread = False
        if border is not source:
            dist_max = rules.xon_dist(layer, border.terrain, border.normal[2])
            if dist_max > 0.0:
                stats.check += 1
                fades = [
                    max(0.0, min((dist_max - dist_pt_to_tri(v, source)) / dist_max, 1.0))
                    for v in border.vertices
                ]
                if any(d > 0.0 for d in fades):
                    has = [False, False, False]
                    for k, nb in enumerate(border.neighbors):
                        if layer in nb.terrain_border or nb.terrain == layer:
                            has[ccw(k)] = True
                            has[cw(k)] = True
                    for k, v in enumerate(border.vertices):
                        level = fades[k] if has[k] else 0.0
                        old = v.border_blend.setdefault(layer, 0.0)
                        if level > old:
                            v.border_blend[layer] = level
                    border.terrain_border.add(layer)
                    spread = True
        else:
            spread = True

        border.flag = visited
        if not spread:
            continue
        for nb in border.neighbors:
            if (
                nb.flag != visited
                and nb not in queued
                and not nb.is_infinite
                and nb.terrain != TERRAIN_WATER
                and rules.lower_priority(nb.terrain, layer)
            ):
                queue.append(nb)
                queued.add(nb)


def calc_border_blends(
    tri: ConstrainedTriangulation,
    rules: NaturalTerrainRules,
    stats: Optional[BlendStats] = None,
) -> BlendStats:
    """Spread every non-water face's terrain over lower-priority neighbours."""
    stats = stats if stats is not None else BlendStats()
    for face in list(tri.finite_faces()):
        if face.terrain == TERRAIN_WATER:
            continue
        _spread_from(tri, rules, face, stats)
    return stats


def force_master_borders(tri: ConstrainedTriangulation, borders: Sequence[MeshMatch]) -> None:
    """Make matched boundary vertices carry exactly the master's layers."""
    for match in borders:
        for mv in match.vertices:
            if mv.buddy is not None:
                for layer in mv.buddy.border_blend:
                    mv.buddy.border_blend[layer] = 0.0

    for match in borders:
        for n, edge in enumerate(match.edges):
            face = edge.buddy
            if face is None or face.terrain == TERRAIN_WATER:
                continue
            m1, m2 = match.vertices[n], match.vertices[n + 1]
            if face.terrain != edge.base:
                add_zero_mix_if_needed(face, edge.base)
                for mv in (m1, m2):
                    mv.buddy.border_blend[edge.base] = 1.0
                    safe_smear_border(tri, mv.buddy, edge.base)
            for layer in sorted(edge.borders):
                if face.terrain == layer:
                    continue
                add_zero_mix_if_needed(face, layer)
                for mv in (m1, m2):
                    mv.buddy.border_blend[layer] = mv.blending.get(layer, 0.0)
                    safe_smear_border(tri, mv.buddy, layer)


def optimize_borders(
    tri: ConstrainedTriangulation,
    rules: NaturalTerrainRules,
    stats: Optional[BlendStats] = None,
) -> BlendStats:
    """Promote a face to any border that is opaque at all three corners."""
    stats = stats if stats is not None else BlendStats()
    for face in tri.finite_faces():
        if face.terrain == TERRAIN_WATER:
            continue
        promoted = False
        for layer in sorted(face.terrain_border):
            if all(v.blend(layer) == 1.0 for v in face.vertices):
                if rules.lower_priority(face.terrain, layer):
                    face.terrain = layer
                    promoted = True
        if not promoted:
            continue
        nuke: List[int] = [
            layer for layer in face.terrain_border
            if not rules.lower_priority(face.terrain, layer)
        ]
        for layer in nuke:
            face.terrain_border.discard(layer)
            stats.opt += 1
    return stats


def check_borders(tri: ConstrainedTriangulation, stats: Optional[BlendStats] = None) -> BlendStats:
    """Count faces and borders; raises if any water face has a border."""
    stats = stats if stats is not None else BlendStats()
    stats.total = 0
    stats.border = 0
    for face in tri.finite_faces():
        if face.terrain != TERRAIN_WATER:
            stats.total += 1
            stats.border += len(face.terrain_border)
        elif face.terrain_border:
            raise MeshInvariantError(
                f"water face {face.index} carries borders {sorted(face.terrain_border)}"
            )
    logger.info(
        "total: %d - border: %d - check: %d - opt: %d",
        stats.total, stats.border, stats.check, stats.opt,
    )
    return stats
