"""Tests for ``terramesh.terrain`` — tokens, priorities and classification rules."""

from __future__ import annotations

import json

import pytest

from terramesh.models import NO_VALUE
from terramesh.terrain import (
    TERRAIN_NATURAL,
    TERRAIN_WATER,
    NaturalTerrainInfo,
    NaturalTerrainRules,
    TerrainRule,
    TerrainSample,
    TokenTable,
    load_rules,
)


# ── helpers ─────────────────────────────────────────────────────────

@pytest.fixture()
def rules():
    """Rock on steep slopes, snow up high, grass everywhere else."""
    return NaturalTerrainRules(
        [
            NaturalTerrainInfo("lu_grass", 10, 400.0),
            NaturalTerrainInfo("lu_rock", 30, 200.0),
            NaturalTerrainInfo("lu_snow", 20, 0.0),
        ],
        [
            TerrainRule("lu_rock", slope=(35.0, 90.0)),
            TerrainRule("lu_snow", elevation=(3000.0, 9000.0)),
            TerrainRule("lu_grass", zoning="zone_park"),
            TerrainRule("lu_grass", near_water=True),
            TerrainRule("lu_grass", variant=2),
            TerrainRule("lu_grass", layers={"urban": (0.0, 0.5)}),
        ],
    )


def _sample(**kwargs):
    base = dict(lon=-71.5, lat=42.5, elevation=100.0, slope=5.0)
    base.update(kwargs)
    return TerrainSample(**base)


# ═══════════════════════════════════════════════════════════════════
# TokenTable
# ═══════════════════════════════════════════════════════════════════


class TestTokenTable:
    def test_builtins(self):
        tokens = TokenTable()
        assert tokens.find("terrain_Natural") == TERRAIN_NATURAL
        assert tokens.find("terrain_Water") == TERRAIN_WATER
        assert len(tokens) == 2

    def test_lookup_interns_once(self):
        tokens = TokenTable()
        a = tokens.lookup("lu_grass")
        assert tokens.lookup("lu_grass") == a
        assert tokens.name(a) == "lu_grass"
        assert "lu_grass" in tokens

    def test_find_unknown(self):
        assert TokenTable().find("lu_nothing") is None

    def test_no_value_name(self):
        assert TokenTable().name(NO_VALUE) == "NO_VALUE"

    @pytest.mark.parametrize("bad", ["", "two words", "tab\there"])
    def test_invalid_names(self, bad):
        with pytest.raises(ValueError, match="invalid token"):
            TokenTable().lookup(bad)


# ═══════════════════════════════════════════════════════════════════
# Priorities
# ═══════════════════════════════════════════════════════════════════


class TestPriority:
    def test_order(self, rules):
        t = rules.tokens
        assert rules.lower_priority(t.find("lu_grass"), t.find("lu_snow"))
        assert rules.lower_priority(t.find("lu_snow"), t.find("lu_rock"))
        assert not rules.lower_priority(t.find("lu_rock"), t.find("lu_grass"))

    def test_strict(self, rules):
        grass = rules.tokens.find("lu_grass")
        assert not rules.lower_priority(grass, grass)

    def test_unranked_terrains_sit_below(self, rules):
        grass = rules.tokens.find("lu_grass")
        assert rules.lower_priority(TERRAIN_WATER, grass)
        assert rules.lower_priority(TERRAIN_NATURAL, TERRAIN_WATER)

    def test_duplicate_priority(self):
        with pytest.raises(ValueError, match="share priority"):
            NaturalTerrainRules([
                NaturalTerrainInfo("lu_a", 5),
                NaturalTerrainInfo("lu_b", 5),
            ])

    def test_negative_xon(self):
        with pytest.raises(ValueError, match="negative"):
            NaturalTerrainRules([NaturalTerrainInfo("lu_a", 5, -1.0)])

    def test_unknown_rule_terrain(self):
        with pytest.raises(ValueError, match="unknown terrain"):
            NaturalTerrainRules(
                [NaturalTerrainInfo("lu_a", 5)], [TerrainRule("lu_missing")]
            )

    def test_xon_dist(self, rules):
        t = rules.tokens
        grass, rock = t.find("lu_grass"), t.find("lu_rock")
        assert rules.xon_dist(grass, rock, 1.0) == pytest.approx(200.0)
        assert rules.xon_dist(grass, rock, 0.5) == pytest.approx(100.0)
        assert rules.xon_dist(grass, TERRAIN_WATER, 1.0) == 0.0

    def test_has_no_xon(self, rules):
        t = rules.tokens
        assert rules.has_no_xon(t.find("lu_snow"))
        assert rules.has_no_xon(TERRAIN_WATER)
        assert not rules.has_no_xon(t.find("lu_grass"))


# ═══════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════


class TestFindTerrain:
    def test_first_match_wins(self, rules):
        steep_and_high = _sample(slope=50.0, elevation=4000.0)
        assert rules.tokens.name(rules.find_terrain(steep_and_high)) == "lu_rock"

    def test_elevation(self, rules):
        assert rules.tokens.name(rules.find_terrain(_sample(elevation=3500.0))) == "lu_snow"

    def test_zoning(self, rules):
        park = rules.tokens.find("zone_park")
        assert park is not None
        assert rules.tokens.name(rules.find_terrain(_sample(zoning=park))) == "lu_grass"

    def test_near_water(self, rules):
        assert rules.tokens.name(rules.find_terrain(_sample(near_water=True))) == "lu_grass"

    def test_variant(self, rules):
        assert rules.tokens.name(rules.find_terrain(_sample(variant=2))) == "lu_grass"

    def test_layers(self, rules):
        assert rules.tokens.name(rules.find_terrain(_sample(layers={"urban": 0.2}))) == "lu_grass"
        assert rules.find_terrain(_sample(layers={"urban": 0.9})) == NO_VALUE

    def test_no_match(self, rules):
        assert rules.find_terrain(_sample()) == NO_VALUE


class TestSerialisation:
    def test_dict_round_trip(self, rules):
        again = NaturalTerrainRules.from_dict(rules.to_dict())
        assert again.to_dict() == rules.to_dict()

    def test_rule_dict_omits_defaults(self):
        assert TerrainRule("lu_grass").to_dict() == {"terrain": "lu_grass"}
        d = TerrainRule("lu_rock", slope=(30.0, 90.0)).to_dict()
        assert d == {"terrain": "lu_rock", "slope": [30.0, 90.0]}

    def test_load_rules(self, rules, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps(rules.to_dict()), encoding="utf-8")
        tokens = TokenTable()
        loaded = load_rules(path, tokens=tokens)
        assert loaded.tokens is tokens
        assert len(loaded.rules) == len(rules.rules)
