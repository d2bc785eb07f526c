"""Tests for ``terramesh.classify`` — burn-in, wet/dry fill and natural terrain."""

from __future__ import annotations

import numpy as np
import pytest

from terramesh.algorithms import collect_virtual_edge
from terramesh.classify import (
    _variant,
    assign_natural_terrain,
    face_sample,
    needs_split,
    set_terrain_for_constraints,
    split_beached_water,
    split_constraints,
)
from terramesh.config import DESKTOP_PREFS
from terramesh.dem import Dem, DemMask
from terramesh.models import MeshInvariantError, NO_VALUE
from terramesh.pipeline import TileContext, triangulate_mesh
from terramesh.planar_map import MapPolygon, PlanarMap
from terramesh.points import add_constraint_points, add_corner_points
from terramesh.terrain import (
    TERRAIN_WATER,
    NaturalTerrainInfo,
    NaturalTerrainRules,
    TerrainRule,
)
from terramesh.triangulation import ConstrainedTriangulation

BOUNDS = (-72.0, 42.0, -71.0, 43.0)
SW_LAKE = [(-72.0, 42.0), (-71.5, 42.0), (-71.5, 42.5), (-72.0, 42.5)]


# ── helpers ─────────────────────────────────────────────────────────

@pytest.fixture()
def rules():
    return NaturalTerrainRules(
        [
            NaturalTerrainInfo("lu_grass", 10, 300.0),
            NaturalTerrainInfo("lu_rock", 20, 300.0),
        ],
        [
            TerrainRule("lu_rock", elevation=(1000.0, 9000.0)),
            TerrainRule("lu_grass"),
        ],
    )


@pytest.fixture()
def lake_ctx(rules):
    """SW-quadrant lake on a flat 11×11 tile, triangulated."""
    dem = Dem(np.full((11, 11), 10.0), *BOUNDS)
    pmap = PlanarMap.from_polygons(BOUNDS, [MapPolygon(SW_LAKE)], rules.tokens)
    ctx = TileContext(dem=dem, pmap=pmap, rules=rules)
    triangulate_mesh(ctx)
    return ctx


def _centroid(face):
    return (
        sum(v.x for v in face.vertices) / 3.0,
        sum(v.y for v in face.vertices) / 3.0,
    )


def _two_faces():
    tri = ConstrainedTriangulation()
    for x, y in ((0.0, 0.0), (0.01, 0.0), (0.01, 0.01), (0.0, 0.01)):
        tri.insert(x, y)
    return tri


# ═══════════════════════════════════════════════════════════════════
# Burn-in
# ═══════════════════════════════════════════════════════════════════


class TestSplitConstraints:
    def test_needs_split_on_ridge(self):
        heights = np.zeros((3, 3))
        heights[:, 1] = 100.0
        dem = Dem(heights, 0.0, 0.0, 2.0, 2.0)
        tri = ConstrainedTriangulation()
        a = tri.insert(0.0, 1.0)
        b = tri.insert(2.0, 1.0)
        assert needs_split(dem, a, b, 10.0) == (1.0, 1.0)
        assert needs_split(dem, a, b, 200.0) is None

    def test_needs_split_off_dem(self):
        dem = Dem(np.zeros((3, 3)), 0.0, 0.0, 2.0, 2.0)
        tri = ConstrainedTriangulation()
        assert needs_split(dem, tri.insert(-1.0, 1.0), tri.insert(1.0, 1.0), 0.0) is None

    def test_split_adds_ridge_vertex(self, rules):
        heights = np.zeros((11, 11))
        heights[:, 5] = 100.0
        dem = Dem(heights, *BOUNDS)
        band = [(-71.9, 42.4), (-71.1, 42.4), (-71.1, 42.6), (-71.9, 42.6)]
        pmap = PlanarMap.from_polygons(BOUNDS, [MapPolygon(band)], rules.tokens)
        tri = ConstrainedTriangulation()
        add_corner_points(tri, dem, DemMask.like(dem))
        constraints = add_constraint_points(tri, dem, pmap)
        added = split_constraints(tri, dem, constraints, 10.0, split=True)
        assert added >= 2
        ridge = tri.vertex_at(-71.5, 42.4)
        assert ridge is not None
        assert ridge.height == pytest.approx(100.0)
        chain = collect_virtual_edge(tri, tri.vertex_at(-71.9, 42.4), tri.vertex_at(-71.1, 42.4))
        assert ridge in chain
        assert all(tri.is_constrained(p, q) for p, q in zip(chain, chain[1:]))

    def test_no_split_by_default(self, rules):
        heights = np.zeros((11, 11))
        heights[:, 5] = 100.0
        dem = Dem(heights, *BOUNDS)
        band = [(-71.9, 42.4), (-71.1, 42.4), (-71.1, 42.6), (-71.9, 42.6)]
        pmap = PlanarMap.from_polygons(BOUNDS, [MapPolygon(band)], rules.tokens)
        tri = ConstrainedTriangulation()
        add_corner_points(tri, dem, DemMask.like(dem))
        constraints = add_constraint_points(tri, dem, pmap)
        assert split_constraints(tri, dem, constraints, 10.0) == 0
        assert len(tri.constrained_edges()) == 4


# ═══════════════════════════════════════════════════════════════════
# Wet / dry
# ═══════════════════════════════════════════════════════════════════


class TestWetDry:
    def test_lake_faces_are_water(self, lake_ctx):
        for f in lake_ctx.tri.finite_faces():
            cx, cy = _centroid(f)
            inside = cx < -71.5 and cy < 42.5
            assert (f.terrain == TERRAIN_WATER) == inside

    def test_constraints_follow_shore(self, lake_ctx):
        tri = lake_ctx.tri
        edges = tri.constrained_edges()
        assert edges
        for a, b in edges:
            assert (a.x == b.x == -71.5 and max(a.y, b.y) <= 42.5) or (
                a.y == b.y == 42.5 and min(a.x, b.x) >= -72.0
            )

    def test_no_conflicts(self, lake_ctx):
        assert set_terrain_for_constraints(lake_ctx.tri, lake_ctx.constraints, lake_ctx.dem) == 0

    def test_orig_face_points_at_map(self, lake_ctx):
        for f in lake_ctx.tri.finite_faces():
            assert f.orig_face is not None
            assert f.orig_face.is_water == (f.terrain == TERRAIN_WATER)

    def test_water_vertices_use_nearest_sample(self, rules):
        heights = np.tile(np.arange(11, dtype=float) * 3.0, (11, 1))
        dem = Dem(heights, *BOUNDS)
        pmap = PlanarMap.from_polygons(BOUNDS, [MapPolygon(SW_LAKE)], rules.tokens)
        ctx = TileContext(dem=dem, pmap=pmap, rules=rules)
        triangulate_mesh(ctx)
        for f in ctx.tri.finite_faces():
            if f.terrain != TERRAIN_WATER:
                continue
            for v in f.vertices:
                assert v.height == dem.xy_nearest(v.x, v.y)

    def test_beached_split(self, lake_ctx):
        tri = lake_ctx.tri
        before = tri.number_of_vertices()
        # a fresh pass finds nothing left to split
        assert split_beached_water(tri, lake_ctx.dem) == 0
        assert tri.number_of_vertices() == before

    def test_mesh_is_valid(self, lake_ctx):
        assert lake_ctx.tri.is_valid(check_delaunay=False) == []


# ═══════════════════════════════════════════════════════════════════
# Natural terrain
# ═══════════════════════════════════════════════════════════════════


class TestNaturalTerrain:
    def test_variant_range(self):
        values = {_variant(-72.0 + k * 0.37, 42.0 + k * 0.21, 50000.0) for k in range(40)}
        assert values <= {0, 1, 2, 3}
        assert len(values) > 1

    def test_variant_is_stable(self):
        assert _variant(-71.3, 42.7, 50000.0) == _variant(-71.3, 42.7, 50000.0)

    @pytest.mark.parametrize("height, expected", [(2000.0, "lu_rock"), (0.0, "lu_grass")])
    def test_elevation_rule(self, rules, height, expected):
        tri = _two_faces()
        for v in tri.finite_vertices():
            v.height = height
        assert assign_natural_terrain(tri, rules, 50000.0) == 2
        assert {rules.tokens.name(f.terrain) for f in tri.finite_faces()} == {expected}

    def test_water_untouched(self, rules):
        tri = _two_faces()
        faces = list(tri.finite_faces())
        faces[0].terrain = TERRAIN_WATER
        faces[1].terrain = 0
        assert assign_natural_terrain(tri, rules, 50000.0) == 1
        assert faces[0].terrain == TERRAIN_WATER
        assert rules.tokens.name(faces[1].terrain) == "lu_grass"

    def test_near_water_sample(self):
        tri = _two_faces()
        faces = list(tri.finite_faces())
        faces[0].terrain = TERRAIN_WATER
        assert face_sample(faces[1], 50000.0).near_water
        assert not face_sample(faces[0], 50000.0).near_water

    def test_layers_are_sampled(self):
        tri = _two_faces()
        layer = Dem(np.full((2, 2), 0.75), -1.0, -1.0, 1.0, 1.0)
        sample = face_sample(next(tri.finite_faces()), 50000.0, {"urban": layer})
        assert sample.layers["urban"] == pytest.approx(0.75)
        assert sample.zoning == NO_VALUE

    def test_no_rule_raises(self):
        strict = NaturalTerrainRules(
            [NaturalTerrainInfo("lu_cliff", 10)],
            [TerrainRule("lu_cliff", slope=(60.0, 90.0))],
        )
        tri = _two_faces()
        with pytest.raises(MeshInvariantError, match="no terrain rule"):
            assign_natural_terrain(tri, strict, 50000.0)

    def test_lake_tile(self, lake_ctx, rules):
        count = assign_natural_terrain(lake_ctx.tri, rules, DESKTOP_PREFS.rep_switch_m)
        water = sum(1 for f in lake_ctx.tri.finite_faces() if f.terrain == TERRAIN_WATER)
        assert count + water == lake_ctx.tri.number_of_faces()
        assert water > 0
