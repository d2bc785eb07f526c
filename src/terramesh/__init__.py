"""Terramesh — terrain TIN generation with cross-tile border matching.

Public API is organised into layers:

- **Core** — models, geometry, constrained triangulation, traversals
- **Inputs** — DEM raster, planar map, terrain rules, configuration
- **Meshing** — point selection, greedy refinement, classification
- **Borders** — border files, matching, blending
- **Queries** — heights, marching, error statistics
- **Pipeline** — step-based tile builds
- **Diagnostics / I/O**
"""

# ── Core ────────────────────────────────────────────────────────────
from .models import (
    DEM_NO_DATA,
    NO_VALUE,
    LocateType,
    MeshFace,
    MeshInvariantError,
    MeshVertex,
)
from .geometry import (
    calculate_mesh_normals,
    dist_pt_to_tri,
    height_within_face,
)
from .triangulation import ConstrainedTriangulation
from .algorithms import (
    collect_virtual_edge,
    is_border_face,
    next_along_line,
    persistent_find_edge,
)

# ── Inputs ──────────────────────────────────────────────────────────
from .dem import Dem, DemMask, PolyRasterizer
from .planar_map import MapPolygon, PlanarMap
from .terrain import (
    TERRAIN_NATURAL,
    TERRAIN_WATER,
    NaturalTerrainInfo,
    NaturalTerrainRules,
    TerrainRule,
    TerrainSample,
    TokenTable,
    load_rules,
)
from .config import DESKTOP_PREFS, PHONE_PREFS, MeshPrefs

# ── Meshing ─────────────────────────────────────────────────────────
from .points import (
    LanduseConstraint,
    add_constraint_points,
    add_corner_points,
    add_edge_points,
    copy_wet_points,
    insert_any_point,
    insert_dem_point,
)
from .greedy import greedy_mesh_build
from .classify import (
    assign_natural_terrain,
    set_terrain_for_constraints,
    split_beached_water,
    split_constraints,
)

# ── Borders ─────────────────────────────────────────────────────────
from .borders import (
    MatchEdge,
    MatchVertex,
    MeshMatch,
    border_file_path,
    border_find_edge_tris,
    fetch_border,
    load_border_file,
    load_neighbor_borders,
    match_border,
    write_border_file,
)
from .blending import (
    BlendStats,
    calc_border_blends,
    check_borders,
    force_master_borders,
    optimize_borders,
    rebase_borders,
)

# ── Queries ─────────────────────────────────────────────────────────
from .query import (
    ErrorStats,
    MarchState,
    calc_mesh_error,
    calc_mesh_textures,
    march_height_go,
    march_height_start,
    mesh_height_at_point,
)

# ── Pipeline ────────────────────────────────────────────────────────
from .pipeline import (
    CustomStep,
    MeshPipeline,
    MeshStep,
    PipelineResult,
    StepResult,
    TileContext,
    assign_landuses_to_mesh,
    build_tile,
    default_pipeline,
    landuse_pipeline,
    triangulate_mesh,
    triangulate_pipeline,
)

# ── Diagnostics / I/O ───────────────────────────────────────────────
from .diagnostics import diagnostics_report
from .io import TileInput, load_tile, mesh_to_dict, save_mesh_json, save_tile

__all__ = [
    # Core
    "DEM_NO_DATA", "NO_VALUE", "LocateType", "MeshFace", "MeshInvariantError", "MeshVertex",
    "calculate_mesh_normals", "dist_pt_to_tri", "height_within_face",
    "ConstrainedTriangulation",
    "collect_virtual_edge", "is_border_face", "next_along_line", "persistent_find_edge",
    # Inputs
    "Dem", "DemMask", "PolyRasterizer", "MapPolygon", "PlanarMap",
    "TERRAIN_NATURAL", "TERRAIN_WATER", "NaturalTerrainInfo", "NaturalTerrainRules",
    "TerrainRule", "TerrainSample", "TokenTable", "load_rules",
    "DESKTOP_PREFS", "PHONE_PREFS", "MeshPrefs",
    # Meshing
    "LanduseConstraint", "add_constraint_points", "add_corner_points", "add_edge_points",
    "copy_wet_points", "insert_any_point", "insert_dem_point", "greedy_mesh_build",
    "assign_natural_terrain", "set_terrain_for_constraints", "split_beached_water",
    "split_constraints",
    # Borders
    "MatchEdge", "MatchVertex", "MeshMatch", "border_file_path", "border_find_edge_tris",
    "fetch_border", "load_border_file", "load_neighbor_borders", "match_border",
    "write_border_file",
    "BlendStats", "calc_border_blends", "check_borders", "force_master_borders",
    "optimize_borders", "rebase_borders",
    # Queries
    "ErrorStats", "MarchState", "calc_mesh_error", "calc_mesh_textures",
    "march_height_go", "march_height_start", "mesh_height_at_point",
    # Pipeline
    "CustomStep", "MeshPipeline", "MeshStep", "PipelineResult", "StepResult", "TileContext",
    "assign_landuses_to_mesh", "build_tile", "default_pipeline", "landuse_pipeline",
    "triangulate_mesh", "triangulate_pipeline",
    # Diagnostics / I/O
    "diagnostics_report", "TileInput", "load_tile", "mesh_to_dict", "save_mesh_json", "save_tile",
]
