"""Tests for ``terramesh.pipeline`` — mesh step/pipeline framework and tile builds."""

from __future__ import annotations

import numpy as np
import pytest

from terramesh.borders import border_file_path
from terramesh.dem import Dem
from terramesh.diagnostics import diagnostics_report
from terramesh.io import mesh_to_dict
from terramesh.pipeline import (
    CustomStep,
    GreedyStep,
    MeshPipeline,
    MeshStep,
    PipelineResult,
    StepResult,
    TileContext,
    build_tile,
    default_pipeline,
    landuse_pipeline,
    triangulate_pipeline,
)
from terramesh.planar_map import MapPolygon, PlanarMap
from terramesh.terrain import TERRAIN_WATER, NaturalTerrainInfo, NaturalTerrainRules, TerrainRule

SW_LAKE = [(-72.0, 42.0), (-71.5, 42.0), (-71.5, 42.5), (-72.0, 42.5)]


# ── helpers ─────────────────────────────────────────────────────────

def _rules():
    return NaturalTerrainRules(
        [NaturalTerrainInfo("lu_grass", 10, 300.0)], [TerrainRule("lu_grass")]
    )


def _tile(west, south, height, polygons=()):
    rules = _rules()
    bounds = (west, south, west + 1.0, south + 1.0)
    dem = Dem(np.full((11, 11), height), *bounds)
    pmap = PlanarMap.from_polygons(bounds, [MapPolygon(p) for p in polygons], rules.tokens)
    return dem, pmap, rules


@pytest.fixture()
def ctx():
    """Unbuilt context for a flat tile at (-72, 42)."""
    dem, pmap, rules = _tile(-72.0, 42.0, 10.0)
    return TileContext(dem=dem, pmap=pmap, rules=rules)


@pytest.fixture()
def lake():
    """Flat tile with a lake in its south-west quarter, fully built."""
    dem, pmap, rules = _tile(-72.0, 42.0, 10.0, [SW_LAKE])
    return build_tile(dem, pmap, rules)


def _noop(ctx):
    return None


# ═══════════════════════════════════════════════════════════════════
# MeshStep protocol
# ═══════════════════════════════════════════════════════════════════


def test_custom_step_satisfies_protocol():
    step = CustomStep("noop", _noop)
    assert isinstance(step, MeshStep)
    assert step.name == "noop"


def test_standard_steps_satisfy_protocol():
    for pipe in (triangulate_pipeline(), landuse_pipeline()):
        for step in pipe._steps:
            assert isinstance(step, MeshStep)


def test_greedy_step_names():
    assert GreedyStep().name == "greedy_error"
    assert GreedyStep("size").name == "greedy_size"


def test_greedy_step_rejects_unknown_mode():
    with pytest.raises(ValueError, match="unknown greedy mode"):
        GreedyStep("fast")


def test_context_needs_post_dem():
    rules = _rules()
    dem = Dem(np.zeros((4, 4)), -72.0, 42.0, -71.0, 43.0, post=False)
    pmap = PlanarMap.from_polygons((-72.0, 42.0, -71.0, 43.0), [], rules.tokens)
    with pytest.raises(ValueError, match="post-sampled"):
        TileContext(dem=dem, pmap=pmap, rules=rules)


# ═══════════════════════════════════════════════════════════════════
# MeshPipeline basics
# ═══════════════════════════════════════════════════════════════════


class TestMeshPipeline:
    def test_empty_pipeline_is_noop(self, ctx):
        result = MeshPipeline().run(ctx)
        assert len(result.elapsed) == 0
        assert len(result.step_results) == 0
        assert ctx.tri.number_of_vertices() == 0

    def test_len_and_chaining(self):
        pipe = MeshPipeline().add(CustomStep("a", _noop)).add(CustomStep("b", _noop))
        assert len(pipe) == 2
        pipe.insert(0, CustomStep("first", _noop))
        assert pipe.step_names == ["first", "a", "b"]

    def test_extend(self):
        pipe = MeshPipeline([CustomStep("a", _noop)])
        pipe.extend(MeshPipeline([CustomStep("b", _noop)]))
        assert pipe.step_names == ["a", "b"]

    def test_repr(self):
        pipe = MeshPipeline([CustomStep("a", _noop), CustomStep("b", _noop)])
        assert repr(pipe) == "MeshPipeline([a, b])"

    def test_artefacts(self, ctx):
        step = CustomStep("count", lambda c: StepResult({"faces": c.tri.number_of_faces()}))
        result = MeshPipeline([step, CustomStep("quiet", _noop)]).run(ctx)
        assert result.artefact("count", "faces") == 0
        assert "quiet" not in result.step_results
        assert set(result.elapsed) == {"count", "quiet"}

    def test_missing_artefact(self):
        with pytest.raises(KeyError):
            PipelineResult().artefact("count", "faces")

    def test_hooks(self, ctx):
        calls = []
        pipe = MeshPipeline(
            [CustomStep("a", _noop), CustomStep("b", _noop)],
            before=lambda name, i, n: calls.append(("before", name, i, n)),
            after=lambda name, i, n: calls.append(("after", name, i, n)),
        )
        pipe.run(ctx)
        assert calls == [
            ("before", "a", 0, 2), ("after", "a", 0, 2),
            ("before", "b", 1, 2), ("after", "b", 1, 2),
        ]

    def test_steps_run_in_order(self, ctx):
        seen = []
        pipe = MeshPipeline([
            CustomStep("one", lambda c: seen.append(1)),
            CustomStep("two", lambda c: seen.append(2)),
        ])
        pipe.run(ctx)
        assert seen == [1, 2]

    def test_default_step_names(self):
        assert default_pipeline().step_names == [
            "load_borders", "seed_points", "greedy_error", "greedy_size",
            "burn_constraints", "wet_dry",
            "natural_terrain", "rebase", "blend", "force_master", "optimize", "write_borders",
        ]


# ═══════════════════════════════════════════════════════════════════
# Tile builds
# ═══════════════════════════════════════════════════════════════════


class TestBuildTile:
    def test_flat_tile_takes_every_sample(self, ctx):
        triangulate_pipeline().run(ctx)
        assert ctx.tri.number_of_vertices() == 121
        assert ctx.tri.is_valid() == []

    def test_lake_report_is_clean(self, lake):
        ctx, _ = lake
        report = diagnostics_report(ctx.tri, ctx.dem, ctx.rules.tokens)
        assert report["water_faces"] > 0
        assert report["water_faces_with_borders"] == 0
        assert report["unclassified_faces"] == 0
        assert report["blend_range_violations"] == 0
        assert report["structure_errors"] == []
        assert report["missing_corners"] == []
        assert report["min_face_signed_area"] > 0.0

    def test_lake_faces(self, lake):
        ctx, _ = lake
        for f in ctx.tri.finite_faces():
            cx = sum(v.x for v in f.vertices) / 3.0
            cy = sum(v.y for v in f.vertices) / 3.0
            assert (f.terrain == TERRAIN_WATER) == (cx < -71.5 and cy < 42.5)

    def test_artefacts(self, lake):
        _, result = lake
        assert result.artefact("seed_points", "constraints") == 2
        assert result.artefact("load_borders", "has_borders") == [False] * 4
        assert result.artefact("optimize", "stats").total > 0
        assert "write_borders" not in result.step_results

    def test_rerun_resets(self, ctx):
        pipe = triangulate_pipeline()
        pipe.run(ctx)
        first = ctx.tri.number_of_vertices()
        pipe.run(ctx)
        assert ctx.tri.number_of_vertices() == first

    def test_deterministic(self):
        meshes = []
        for _ in range(2):
            dem, pmap, rules = _tile(-72.0, 42.0, 10.0, [SW_LAKE])
            ctx, _ = build_tile(dem, pmap, rules, seed=7)
            meshes.append(mesh_to_dict(ctx.tri, rules.tokens))
        assert meshes[0] == meshes[1]


# ═══════════════════════════════════════════════════════════════════
# Slanted shorelines
# ═══════════════════════════════════════════════════════════════════


def _wavy_tile(west, south, size, ring):
    rules = _rules()
    bounds = (west, south, west + 1.0, south + 1.0)
    ys, xs = np.mgrid[0:size, 0:size] / (size - 1.0)
    dem = Dem(200.0 + 150.0 * np.sin(6.0 * xs) * np.cos(5.0 * ys), *bounds)
    pmap = PlanarMap.from_polygons(bounds, [MapPolygon(ring)], rules.tokens)
    return dem, pmap, rules


def _inside(ring, x, y):
    inside = False
    for (x1, y1), (x2, y2) in zip(ring, ring[1:] + ring[:1]):
        if (y1 > y) != (y2 > y) and x < x1 + (y - y1) * (x2 - x1) / (y2 - y1):
            inside = not inside
    return inside


def _shore_dist(ring, x, y):
    best = float("inf")
    for (x1, y1), (x2, y2) in zip(ring, ring[1:] + ring[:1]):
        dx, dy = x2 - x1, y2 - y1
        t = max(0.0, min(1.0, ((x - x1) * dx + (y - y1) * dy) / (dx * dx + dy * dy)))
        best = min(best, float(np.hypot(x1 + t * dx - x, y1 + t * dy - y)))
    return best


SLANTED_LAKES = [
    (-71.0, 61, [(-71.0, 42.3), (-70.7, 42.35), (-70.8, 42.6), (-71.0, 42.6)]),
    (-72.0, 31, [(-71.88, 42.11), (-71.21, 42.46), (-71.56, 42.84)]),
    (-72.0, 31, [(-71.81, 42.21), (-71.12, 42.27), (-71.16, 42.31)]),
]


class TestSlantedLakes:
    """Slanted shorelines through burn-in, the conforming pass and the flood fill."""

    @pytest.fixture(params=SLANTED_LAKES, ids=["quad", "triangle", "wedge"])
    def built(self, request):
        west, size, ring = request.param
        dem, pmap, rules = _wavy_tile(west, 42.0, size, ring)
        ctx, result = build_tile(dem, pmap, rules)
        return ctx, result, ring

    def test_faces_stay_ccw(self, built):
        ctx, _, _ = built
        assert ctx.prefs.conform
        for f in ctx.tri.finite_faces():
            a, b, c = f.vertices
            assert (b.x - a.x) * (c.y - a.y) - (b.y - a.y) * (c.x - a.x) > 0.0
        assert ctx.tri.is_valid(check_delaunay=False) == []

    def test_no_tiny_constrained_edges(self, built):
        ctx, _, _ = built
        floor = ctx.prefs.conform_min_cells * ctx.dem.cell_deg
        for a, b in ctx.tri.constrained_edges():
            assert np.hypot(b.x - a.x, b.y - a.y) >= floor * (1.0 - 1e-9)

    def test_wet_dry(self, built):
        ctx, _, ring = built
        wet = 0
        for f in ctx.tri.finite_faces():
            cx = sum(v.x for v in f.vertices) / 3.0
            cy = sum(v.y for v in f.vertices) / 3.0
            if _shore_dist(ring, cx, cy) < 1e-9:
                continue
            assert (f.terrain == TERRAIN_WATER) == _inside(ring, cx, cy)
            wet += f.terrain == TERRAIN_WATER
        assert wet > 0


class TestNeighbours:
    def test_border_file_written(self, tmp_path):
        dem, pmap, rules = _tile(-72.0, 42.0, 10.0)
        _, result = build_tile(dem, pmap, rules, border_folder=tmp_path)
        path = result.artefact("write_borders", "path")
        assert path == tmp_path / "+40-080" / "+42-072.border.txt"
        assert path.exists()

    def test_matching_disabled_by_prefs(self, tmp_path):
        from terramesh.config import DESKTOP_PREFS

        dem, pmap, rules = _tile(-72.0, 42.0, 10.0)
        prefs = DESKTOP_PREFS.with_overrides(border_match=False)
        build_tile(dem, pmap, rules, prefs, border_folder=tmp_path)
        assert not border_file_path(tmp_path, -72, 42).exists()

    def test_east_neighbour_matches(self, tmp_path):
        dem, pmap, rules = _tile(-72.0, 42.0, 10.0)
        west_ctx, _ = build_tile(dem, pmap, rules, border_folder=tmp_path)
        shared = sorted(v.y for v in west_ctx.tri.finite_vertices() if v.x == -71.0)

        dem, pmap, rules = _tile(-71.0, 42.0, 50.0)
        east_ctx, result = build_tile(dem, pmap, rules, border_folder=tmp_path)
        assert result.artefact("load_borders", "has_borders") == [True, False, False, False]
        edge = [v for v in east_ctx.tri.finite_vertices() if v.x == -71.0]
        assert sorted(v.y for v in edge) == shared
        assert all(v.height == 10.0 for v in edge)
        assert result.artefact("rebase", "unresolved") == 0

    def test_neighbour_file_round_trips(self, tmp_path):
        dem, pmap, rules = _tile(-72.0, 42.0, 10.0)
        build_tile(dem, pmap, rules, border_folder=tmp_path)
        dem, pmap, rules = _tile(-71.0, 42.0, 50.0)
        build_tile(dem, pmap, rules, border_folder=tmp_path)
        assert border_file_path(tmp_path, -71, 42).exists()
