"""JSON input and output for tile builds.

A tile file looks like::

    {
      "dem": {"bounds": [-72, 42, -71, 43], "post": true,
              "heights": [[...], ...]},
      "polygons": [{"ring": [[x, y], ...], "terrain": "terrain_Water"}],
      "rules": {"terrains": [...], "rules": [...]},
      "prefs": {"max_error": 8.0},
      "layers": {"urban": {"bounds": [...], "heights": [[...]]}}
    }

``heights`` rows run south to north; ``null`` marks a hole.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

from .config import DESKTOP_PREFS, PHONE_PREFS, MeshPrefs
from .dem import Dem
from .models import DEM_NO_DATA
from .planar_map import MapPolygon, PlanarMap
from .terrain import NaturalTerrainRules, TokenTable
from .triangulation import ConstrainedTriangulation


PathLike = Union[str, Path]

PRESETS = {"desktop": DESKTOP_PREFS, "phone": PHONE_PREFS}


@dataclass
class TileInput:
    dem: Dem
    pmap: PlanarMap
    rules: NaturalTerrainRules
    prefs: MeshPrefs = DESKTOP_PREFS
    polygons: List[MapPolygon] = field(default_factory=list)
    layers: Dict[str, Dem] = field(default_factory=dict)


def dem_from_dict(data: Dict[str, Any]) -> Dem:
    west, south, east, north = (float(b) for b in data["bounds"])
    heights = [
        [DEM_NO_DATA if h is None else float(h) for h in row]
        for row in data["heights"]
    ]
    return Dem(heights, west, south, east, north, post=bool(data.get("post", True)))


def dem_to_dict(dem: Dem) -> Dict[str, Any]:
    return {
        "bounds": [dem.west, dem.south, dem.east, dem.north],
        "post": dem.post,
        "heights": [
            [None if h == DEM_NO_DATA else float(h) for h in row]
            for row in dem.heights.tolist()
        ],
    }


def prefs_from_dict(data: Any) -> MeshPrefs:
    """Prefs from a preset name, a dict, or a dict with a ``preset`` key."""
    if data is None:
        return DESKTOP_PREFS
    if isinstance(data, str):
        data = {"preset": data}
    overrides = dict(data)
    preset = overrides.pop("preset", "desktop")
    if preset not in PRESETS:
        raise ValueError(f"unknown prefs preset {preset!r}")
    unknown = set(overrides) - set(MeshPrefs.__dataclass_fields__)
    if unknown:
        raise ValueError(f"unknown prefs: {', '.join(sorted(unknown))}")
    return PRESETS[preset].with_overrides(**overrides)


def tile_from_dict(data: Dict[str, Any]) -> TileInput:
    dem = dem_from_dict(data["dem"])
    tokens = TokenTable()
    rules = NaturalTerrainRules.from_dict(data["rules"], tokens=tokens)
    polygons = [MapPolygon.from_dict(p) for p in data.get("polygons", [])]
    pmap = PlanarMap.from_polygons(
        (dem.west, dem.south, dem.east, dem.north), polygons, tokens
    )
    layers = {name: dem_from_dict(d) for name, d in data.get("layers", {}).items()}
    return TileInput(dem, pmap, rules, prefs_from_dict(data.get("prefs")), polygons, layers)


def load_tile(path: PathLike) -> TileInput:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return tile_from_dict(data)


def save_tile(tile: TileInput, path: PathLike) -> None:
    data = {
        "dem": dem_to_dict(tile.dem),
        "polygons": [p.to_dict() for p in tile.polygons],
        "rules": tile.rules.to_dict(),
        "prefs": tile.prefs.to_dict(),
        "layers": {name: dem_to_dict(d) for name, d in tile.layers.items()},
    }
    Path(path).write_text(json.dumps(data), encoding="utf-8")


def mesh_to_dict(tri: ConstrainedTriangulation, tokens: TokenTable) -> Dict[str, Any]:
    """Vertices, faces and constrained edges with terrain names."""
    vertices = sorted(tri.finite_vertices(), key=lambda v: v.index)
    ids = {v.index: n for n, v in enumerate(vertices)}
    faces = sorted(
        tri.finite_faces(),
        key=lambda f: tuple(sorted(ids[v.index] for v in f.vertices)),
    )
    return {
        "vertices": [
            {
                "x": v.x,
                "y": v.y,
                "height": v.height,
                "normal": list(v.normal),
                "blend": {tokens.name(k): lvl for k, lvl in sorted(v.border_blend.items())},
            }
            for v in vertices
        ],
        "faces": [
            {
                "vertices": [ids[v.index] for v in f.vertices],
                "terrain": tokens.name(f.terrain),
                "borders": [tokens.name(b) for b in sorted(f.terrain_border)],
            }
            for f in faces
        ],
        "constraints": sorted(
            sorted((ids[a.index], ids[b.index])) for a, b in tri.constrained_edges()
        ),
    }


def save_mesh_json(tri: ConstrainedTriangulation, tokens: TokenTable, path: PathLike) -> None:
    Path(path).write_text(json.dumps(mesh_to_dict(tri, tokens), indent=1), encoding="utf-8")
