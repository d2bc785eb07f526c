"""Mesh pipeline — composable step-based tile generation.

Provides :class:`MeshStep` (protocol) and :class:`MeshPipeline`
(sequencer) so that the stages of a tile build can be declared in order
and run as a single pipeline over a shared :class:`TileContext`.

A full build is two phases:

- **triangulate** — borders, seed points, greedy refinement, constraint
  burn-in, conforming, wet/dry tagging, normals;
- **landuse** — natural terrain, border rebasing, blending, master
  forcing, optimisation, border-file output.

Usage
-----
>>> from terramesh.pipeline import TileContext, default_pipeline
>>> ctx = TileContext(dem=dem, pmap=pmap, rules=rules, border_folder="borders")
>>> result = default_pipeline().run(ctx)
>>> result.elapsed["greedy_error"]
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)

from .blending import (
    BlendStats,
    calc_border_blends,
    check_borders,
    force_master_borders,
    optimize_borders,
    rebase_borders,
)
from .borders import (
    MeshMatch,
    border_file_path,
    border_find_edge_tris,
    load_neighbor_borders,
    match_border,
    write_border_file,
)
from .classify import (
    assign_natural_terrain,
    set_terrain_for_constraints,
    split_beached_water,
    split_constraints,
)
from .config import DESKTOP_PREFS, MeshPrefs
from .dem import Dem, DemMask
from .geometry import calculate_mesh_normals
from .greedy import greedy_mesh_build
from .models import DEM_NO_DATA
from .planar_map import PlanarMap
from .points import (
    LanduseConstraint,
    add_constraint_points,
    add_corner_points,
    add_edge_points,
    copy_wet_points,
)
from .terrain import NaturalTerrainRules
from .triangulation import ConstrainedTriangulation

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# ═══════════════════════════════════════════════════════════════════
# Shared state
# ═══════════════════════════════════════════════════════════════════


@dataclass
class TileContext:
    """Everything one tile build reads and writes.

    Attributes
    ----------
    dem : Dem
        Elevation for the tile; must use post sampling so that the
        outermost samples lie on the tile edges.
    pmap : PlanarMap
        Land-use polygons with their terrain types.
    rules : NaturalTerrainRules
        Priority table and classification rules.
    prefs : MeshPrefs
        Tuning parameters.
    border_folder : path | None
        Where border files are read and written; ``None`` disables
        border matching regardless of ``prefs.border_match``.
    layers : dict[str, Dem]
        Auxiliary rasters sampled for the classification rules.
    seed : int
        Seed for the triangulation's point-location walk.
    """

    dem: Dem
    pmap: PlanarMap
    rules: NaturalTerrainRules
    prefs: MeshPrefs = DESKTOP_PREFS
    border_folder: Optional[PathLike] = None
    layers: Dict[str, Dem] = field(default_factory=dict)
    seed: int = 0

    tri: ConstrainedTriangulation = field(init=False)
    mask: DemMask = field(init=False)
    borders: List[MeshMatch] = field(init=False)
    constraints: List[LanduseConstraint] = field(default_factory=list, init=False)
    wet_ratio: float = field(default=0.0, init=False)
    blend_stats: BlendStats = field(default_factory=BlendStats, init=False)

    def __post_init__(self) -> None:
        if not self.dem.post:
            raise ValueError("tile builds need a post-sampled DEM")
        self.tri = ConstrainedTriangulation(seed=self.seed)
        self.mask = DemMask.like(self.dem)
        self.borders = [MeshMatch() for _ in range(4)]

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return (self.dem.west, self.dem.south, self.dem.east, self.dem.north)

    @property
    def tile_west(self) -> int:
        return int(round(self.dem.west))

    @property
    def tile_south(self) -> int:
        return int(round(self.dem.south))

    @property
    def has_borders(self) -> List[bool]:
        return [not b.is_empty() for b in self.borders]

    @property
    def matching(self) -> bool:
        return self.prefs.border_match and self.border_folder is not None

    def reset(self) -> None:
        """Forget any previous triangulation."""
        self.tri.clear()
        self.mask = DemMask.like(self.dem)
        self.borders = [MeshMatch() for _ in range(4)]
        self.constraints = []
        self.wet_ratio = 0.0
        self.blend_stats = BlendStats()


# ═══════════════════════════════════════════════════════════════════
# MeshStep protocol
# ═══════════════════════════════════════════════════════════════════


@dataclass
class StepResult:
    """Optional return value from a mesh step, carrying artefacts."""

    artefacts: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class MeshStep(Protocol):
    """Protocol for a tile-build step.

    The step mutates *ctx* in place and may optionally return a
    :class:`StepResult` containing artefacts.
    """

    @property
    def name(self) -> str:
        """Human-readable name for logging."""
        ...

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        """Execute the step, mutating *ctx* in place."""
        ...


# ═══════════════════════════════════════════════════════════════════
# MeshPipeline
# ═══════════════════════════════════════════════════════════════════

Hook = Callable[[str, int, int], None]
"""Signature for before/after hooks: ``(step_name, step_index, total_steps)``."""


@dataclass
class PipelineResult:
    """Aggregate result of running a full pipeline.

    Attributes
    ----------
    step_results : dict[str, StepResult]
        Mapping of ``step.name → StepResult`` for every step that
        returned one.
    elapsed : dict[str, float]
        Mapping of ``step.name → seconds`` wall-clock time per step.
    """

    step_results: Dict[str, StepResult] = field(default_factory=dict)
    elapsed: Dict[str, float] = field(default_factory=dict)

    def artefact(self, step_name: str, key: str) -> Any:
        """Raises ``KeyError`` if the step or key is not present."""
        return self.step_results[step_name].artefacts[key]


class MeshPipeline:
    """Ordered sequence of :class:`MeshStep` instances.

    Parameters
    ----------
    steps : list[MeshStep]
        Steps to execute in order.
    before : Hook | None
        Called *before* each step.
    after : Hook | None
        Called *after* each step.
    """

    def __init__(
        self,
        steps: Optional[List[MeshStep]] = None,
        *,
        before: Optional[Hook] = None,
        after: Optional[Hook] = None,
    ) -> None:
        self._steps: List[MeshStep] = list(steps or [])
        self._before = before
        self._after = after

    # ── mutation ────────────────────────────────────────────────────

    def add(self, step: MeshStep) -> "MeshPipeline":
        """Append a step and return *self* for chaining."""
        self._steps.append(step)
        return self

    def insert(self, index: int, step: MeshStep) -> "MeshPipeline":
        """Insert a step at *index* and return *self* for chaining."""
        self._steps.insert(index, step)
        return self

    def extend(self, other: "MeshPipeline") -> "MeshPipeline":
        self._steps.extend(other._steps)
        return self

    # ── execution ───────────────────────────────────────────────────

    def run(self, ctx: TileContext) -> PipelineResult:
        """Execute all steps in order, returning aggregate results."""
        result = PipelineResult()
        total = len(self._steps)

        for idx, step in enumerate(self._steps):
            sname = step.name
            if self._before:
                self._before(sname, idx, total)

            t0 = time.perf_counter()
            step_result = step(ctx)
            dt = time.perf_counter() - t0
            logger.debug("step %s finished in %.3fs", sname, dt)

            result.elapsed[sname] = dt
            if step_result is not None:
                result.step_results[sname] = step_result

            if self._after:
                self._after(sname, idx, total)

        return result

    # ── introspection ───────────────────────────────────────────────

    @property
    def step_names(self) -> List[str]:
        return [s.name for s in self._steps]

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        names = ", ".join(self.step_names)
        return f"MeshPipeline([{names}])"


# ═══════════════════════════════════════════════════════════════════
# Triangulation steps
# ═══════════════════════════════════════════════════════════════════


@dataclass
class LoadBordersStep:
    """Reset the mesh and load master records from neighbouring tiles."""

    @property
    def name(self) -> str:
        return "load_borders"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        ctx.reset()
        if ctx.matching:
            ctx.borders = load_neighbor_borders(
                ctx.border_folder, ctx.tile_west, ctx.tile_south, ctx.rules.tokens
            )
        return StepResult(artefacts={"has_borders": ctx.has_borders})


@dataclass
class SeedPointsStep:
    """Corners, constraint endpoints, matched borders and edge samples."""

    @property
    def name(self) -> str:
        return "seed_points"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        add_corner_points(ctx.tri, ctx.dem, ctx.mask)
        ctx.constraints = add_constraint_points(ctx.tri, ctx.dem, ctx.pmap)
        unmatched = 0
        for side, match in enumerate(ctx.borders):
            unmatched += match_border(ctx.tri, match, side)
        edge_points = add_edge_points(
            ctx.tri, ctx.dem, ctx.mask,
            ctx.prefs.edge_interval, ctx.prefs.edge_divisions, ctx.has_borders,
        )
        ctx.wet_ratio = copy_wet_points(
            ctx.tri, ctx.dem, ctx.mask, ctx.pmap, ctx.prefs.water_interval
        )
        return StepResult(artefacts={
            "constraints": len(ctx.constraints),
            "unmatched": unmatched,
            "edge_points": edge_points,
            "wet_ratio": ctx.wet_ratio,
        })


@dataclass
class GreedyStep:
    """Greedy refinement; ``mode`` is ``"error"`` or ``"size"``."""

    mode: str = "error"

    def __post_init__(self) -> None:
        if self.mode not in ("error", "size"):
            raise ValueError(f"unknown greedy mode {self.mode!r}")

    @property
    def name(self) -> str:
        return f"greedy_{self.mode}"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        prefs = ctx.prefs
        if self.mode == "error":
            dry = 1.0 - ctx.wet_ratio
            budget = int((dry * 0.8 + 0.2) * prefs.max_points)
            added = greedy_mesh_build(ctx.tri, ctx.dem, ctx.mask, prefs.max_error, 0.0, budget)
        else:
            added = greedy_mesh_build(
                ctx.tri, ctx.dem, ctx.mask, 0.0, prefs.max_tri_size_m, prefs.max_points
            )
        return StepResult(artefacts={"added": added})


@dataclass
class BurnConstraintsStep:
    """Insert constraints, then optionally make them conforming."""

    @property
    def name(self) -> str:
        return "burn_constraints"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        prefs = ctx.prefs
        splits = split_constraints(
            ctx.tri, ctx.dem, ctx.constraints, prefs.max_error, prefs.split_constraints
        )
        conformed = 0
        if prefs.conform:
            dem = ctx.dem

            def height(x: float, y: float) -> float:
                h = dem.value_linear(x, y)
                return dem.xy_nearest(x, y) if h == DEM_NO_DATA else h

            added = ctx.tri.make_conforming(
                height, prefs.conform_max_splits, prefs.conform_min_cells * dem.cell_deg
            )
            conformed = len(added)
            logger.info("conforming pass added %d vertices", conformed)
        return StepResult(artefacts={"splits": splits, "conformed": conformed})


@dataclass
class WetDryStep:
    """Tag faces from their map polygons and repair beached water."""

    @property
    def name(self) -> str:
        return "wet_dry"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        conflicts = set_terrain_for_constraints(ctx.tri, ctx.constraints, ctx.dem)
        beached = 0
        if ctx.prefs.split_beached_water:
            beached = split_beached_water(ctx.tri, ctx.dem)
            if beached:
                conflicts = set_terrain_for_constraints(ctx.tri, ctx.constraints, ctx.dem)
        calculate_mesh_normals(ctx.tri)
        return StepResult(artefacts={"conflicts": conflicts, "beached": beached})


# ═══════════════════════════════════════════════════════════════════
# Landuse steps
# ═══════════════════════════════════════════════════════════════════


@dataclass
class NaturalTerrainStep:
    @property
    def name(self) -> str:
        return "natural_terrain"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        count = assign_natural_terrain(ctx.tri, ctx.rules, ctx.prefs.rep_switch_m, ctx.layers)
        return StepResult(artefacts={"faces": count})


@dataclass
class RebaseStep:
    """Resolve master edges to local faces and rebase them."""

    @property
    def name(self) -> str:
        return "rebase"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        unresolved = 0
        for match in ctx.borders:
            if not match.is_empty():
                unresolved += border_find_edge_tris(ctx.tri, match)
        rebased = rebase_borders(ctx.tri, ctx.rules, ctx.borders)
        return StepResult(artefacts={"unresolved": unresolved, "rebased": rebased})


@dataclass
class BlendStep:
    @property
    def name(self) -> str:
        return "blend"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        calc_border_blends(ctx.tri, ctx.rules, ctx.blend_stats)
        return None


@dataclass
class ForceMasterStep:
    @property
    def name(self) -> str:
        return "force_master"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        force_master_borders(ctx.tri, ctx.borders)
        return None


@dataclass
class OptimizeStep:
    """Promote saturated borders, then verify no water face has one."""

    @property
    def name(self) -> str:
        return "optimize"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        if ctx.prefs.optimize_borders:
            optimize_borders(ctx.tri, ctx.rules, ctx.blend_stats)
        stats = check_borders(ctx.tri, ctx.blend_stats)
        return StepResult(artefacts={"stats": stats})


@dataclass
class WriteBordersStep:
    @property
    def name(self) -> str:
        return "write_borders"

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        if not ctx.matching:
            return None
        path = border_file_path(ctx.border_folder, ctx.tile_west, ctx.tile_south)
        write_border_file(ctx.tri, ctx.bounds, ctx.rules.tokens, path)
        return StepResult(artefacts={"path": path})


@dataclass
class CustomStep:
    """Inline mesh step from an arbitrary callable.

    Usage::

        step = CustomStep("count", lambda ctx: StepResult(
            {"faces": ctx.tri.number_of_faces()}
        ))
        pipe = triangulate_pipeline().add(step)
    """

    _name: str
    fn: Callable[[TileContext], Optional[StepResult]]

    @property
    def name(self) -> str:
        return self._name

    def __call__(self, ctx: TileContext) -> Optional[StepResult]:
        return self.fn(ctx)


# ═══════════════════════════════════════════════════════════════════
# Standard pipelines
# ═══════════════════════════════════════════════════════════════════


def triangulate_pipeline(**hooks: Hook) -> MeshPipeline:
    return MeshPipeline([
        LoadBordersStep(),
        SeedPointsStep(),
        GreedyStep("error"),
        GreedyStep("size"),
        BurnConstraintsStep(),
        WetDryStep(),
    ], **hooks)


def landuse_pipeline(**hooks: Hook) -> MeshPipeline:
    return MeshPipeline([
        NaturalTerrainStep(),
        RebaseStep(),
        BlendStep(),
        ForceMasterStep(),
        OptimizeStep(),
        WriteBordersStep(),
    ], **hooks)


def default_pipeline(**hooks: Hook) -> MeshPipeline:
    """Both phases, in order."""
    return triangulate_pipeline(**hooks).extend(landuse_pipeline())


def triangulate_mesh(ctx: TileContext) -> PipelineResult:
    return triangulate_pipeline().run(ctx)


def assign_landuses_to_mesh(ctx: TileContext) -> PipelineResult:
    return landuse_pipeline().run(ctx)


def build_tile(
    dem: Dem,
    pmap: PlanarMap,
    rules: NaturalTerrainRules,
    prefs: MeshPrefs = DESKTOP_PREFS,
    border_folder: Optional[PathLike] = None,
    layers: Optional[Dict[str, Dem]] = None,
    seed: int = 0,
) -> Tuple[TileContext, PipelineResult]:
    """Run a complete tile build and return the context and timings."""
    ctx = TileContext(
        dem=dem, pmap=pmap, rules=rules, prefs=prefs,
        border_folder=border_folder, layers=dict(layers or {}), seed=seed,
    )
    result = default_pipeline().run(ctx)
    logger.info(
        "tile %+03d%+04d: %d vertices, %d faces in %.2fs",
        ctx.tile_south, ctx.tile_west,
        ctx.tri.number_of_vertices(), ctx.tri.number_of_faces(),
        sum(result.elapsed.values()),
    )
    return ctx, result
