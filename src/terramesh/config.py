"""Mesh generation configuration.

Usage
-----
>>> from terramesh.config import MeshPrefs, PHONE_PREFS
>>> prefs = MeshPrefs(max_points=20000, max_error=8.0)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict

from .geometry import DEG_TO_MTR_LAT


@dataclass(frozen=True)
class MeshPrefs:
    """All tuneable parameters for one tile build.

    Attributes
    ----------
    max_points : int
        Upper bound on triangulation vertices added by refinement.
    max_error : float
        Refine until no DEM sample deviates more than this (metres).
    max_tri_size_m : float
        Second refinement pass: split triangles with a longer edge.
    rep_switch_m : float
        Patch size used to derive terrain variants.
    border_match : bool
        Load neighbour border files and conform to them.
    optimize_borders : bool
        Promote saturated borders to base terrain afterwards.
    water_interval : int
        Every Nth wet DEM sample (in both axes) becomes a vertex.
    edge_interval : int
        Sampling step along tile edges and interior divisions.
    edge_divisions : int
        Number of sections the tile is divided into by alignment lines.
    split_constraints : bool
        Split constraints at their midpoint (disabled by default).
    split_beached_water : bool
        Break water triangles that span between two shore vertices.
    conform : bool
        Run the conforming pass after constraints are burned in.
    conform_max_splits : int
        Cap on vertices the conforming pass may add.
    conform_min_cells : float
        Shortest constrained edge the conforming pass may create, in DEM
        cells.
    """

    max_points: int = 78000
    max_error: float = 5.0
    max_tri_size_m: float = 1500.0
    rep_switch_m: float = 50000.0
    border_match: bool = True
    optimize_borders: bool = True
    water_interval: int = 40
    edge_interval: int = 20
    edge_divisions: int = 1
    split_constraints: bool = False
    split_beached_water: bool = True
    conform: bool = True
    conform_max_splits: int = 10000
    conform_min_cells: float = 0.25

    def __post_init__(self) -> None:
        if self.max_points < 4:
            raise ValueError("max_points must be >= 4")
        if self.max_error < 0:
            raise ValueError("max_error must be >= 0")
        if self.max_tri_size_m <= 0:
            raise ValueError("max_tri_size_m must be > 0")
        if self.rep_switch_m <= 0:
            raise ValueError("rep_switch_m must be > 0")
        for name in ("water_interval", "edge_interval", "edge_divisions"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.conform_max_splits < 0:
            raise ValueError("conform_max_splits must be >= 0")
        if self.conform_min_cells < 0:
            raise ValueError("conform_min_cells must be >= 0")

    @property
    def max_tri_size_deg(self) -> float:
        return self.max_tri_size_m / DEG_TO_MTR_LAT

    def with_overrides(self, **kwargs: Any) -> "MeshPrefs":
        return replace(self, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeshPrefs":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


# ═══════════════════════════════════════════════════════════════════
# Presets
# ═══════════════════════════════════════════════════════════════════

DESKTOP_PREFS = MeshPrefs()
"""Full-detail scenery."""

PHONE_PREFS = MeshPrefs(
    max_points=25000,
    max_error=15.0,
    max_tri_size_m=6000.0,
    water_interval=50,
    split_beached_water=False,
    conform=False,
)
"""Reduced mesh for low-end devices."""
