from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .dem import Dem
from .geometry import orient
from .models import NO_VALUE
from .query import calc_mesh_error, calc_mesh_textures
from .terrain import TERRAIN_WATER, TokenTable
from .triangulation import ConstrainedTriangulation


@dataclass(frozen=True)
class MeshSummary:
    vertices: int
    faces: int
    constrained_edges: int
    water_faces: int
    bordered_faces: int


def summarize_mesh(tri: ConstrainedTriangulation) -> MeshSummary:
    faces = list(tri.finite_faces())
    return MeshSummary(
        vertices=tri.number_of_vertices(),
        faces=len(faces),
        constrained_edges=len(tri.constrained_edges()),
        water_faces=sum(1 for f in faces if f.terrain == TERRAIN_WATER),
        bordered_faces=sum(1 for f in faces if f.terrain_border),
    )


def min_face_signed_area(tri: ConstrainedTriangulation) -> float:
    areas = [
        0.5 * orient(a.x, a.y, b.x, b.y, c.x, c.y)
        for a, b, c in (f.vertices for f in tri.finite_faces())
    ]
    return min(areas) if areas else 0.0


def unclassified_faces(tri: ConstrainedTriangulation) -> int:
    return sum(1 for f in tri.finite_faces() if f.terrain == NO_VALUE)


def water_faces_with_borders(tri: ConstrainedTriangulation) -> int:
    return sum(
        1 for f in tri.finite_faces() if f.terrain == TERRAIN_WATER and f.terrain_border
    )


def blend_range_violations(tri: ConstrainedTriangulation) -> List[Tuple[int, int, float]]:
    """``(vertex index, layer, level)`` for every blend outside [0, 1]."""
    bad = []
    for v in tri.finite_vertices():
        for layer, level in v.border_blend.items():
            if not 0.0 <= level <= 1.0:
                bad.append((v.index, layer, level))
    return bad


def missing_corners(tri: ConstrainedTriangulation, bounds: Tuple[float, float, float, float]) -> List[Tuple[float, float]]:
    west, south, east, north = bounds
    corners = [(west, south), (east, south), (east, north), (west, north)]
    return [c for c in corners if tri.vertex_at(*c) is None]


def diagnostics_report(
    tri: ConstrainedTriangulation,
    dem: Optional[Dem] = None,
    tokens: Optional[TokenTable] = None,
) -> Dict[str, object]:
    """Build a structured diagnostics report suitable for JSON export."""
    summary = summarize_mesh(tri)
    textures: Counter = calc_mesh_textures(tri)
    name = tokens.name if tokens is not None else str
    report: Dict[str, object] = {
        "vertices": summary.vertices,
        "faces": summary.faces,
        "constrained_edges": summary.constrained_edges,
        "water_faces": summary.water_faces,
        "bordered_faces": summary.bordered_faces,
        "min_face_signed_area": min_face_signed_area(tri),
        "unclassified_faces": unclassified_faces(tri),
        "water_faces_with_borders": water_faces_with_borders(tri),
        "blend_range_violations": len(blend_range_violations(tri)),
        "structure_errors": tri.is_valid(check_delaunay=False),
        "textures": {name(k): v for k, v in sorted(textures.items())},
    }
    if dem is not None:
        report["missing_corners"] = [list(c) for c in missing_corners(
            tri, (dem.west, dem.south, dem.east, dem.north)
        )]
        report["error"] = calc_mesh_error(tri, dem).to_dict()
    return report
