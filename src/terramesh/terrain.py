"""Terrain tokens, priority ordering and natural-terrain rules.

Architecture
------------
- A :class:`TokenTable` interns terrain / feature / zoning names into
  small integer ids.  ``terrain_Natural`` and ``terrain_Water`` are
  always ids 0 and 1.
- A :class:`NaturalTerrainInfo` records a terrain's blending priority
  and the distance over which it fades into lower-priority neighbours.
- A :class:`TerrainRule` is one row of the classification table; the
  first rule whose conditions all hold decides a face's terrain.
- :class:`NaturalTerrainRules` bundles the three and answers
  :meth:`~NaturalTerrainRules.lower_priority`,
  :meth:`~NaturalTerrainRules.xon_dist` and
  :meth:`~NaturalTerrainRules.find_terrain`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .models import NO_VALUE


TERRAIN_NATURAL = 0
TERRAIN_WATER = 1
_BUILTIN_TOKENS = ("terrain_Natural", "terrain_Water")


# ═══════════════════════════════════════════════════════════════════
# Token interning
# ═══════════════════════════════════════════════════════════════════


class TokenTable:
    """Bidirectional name ↔ id table."""

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._names: List[str] = []
        self._ids: Dict[str, int] = {}
        for name in _BUILTIN_TOKENS:
            self.lookup(name)
        for name in names:
            self.lookup(name)

    def lookup(self, name: str) -> int:
        """Return the id for *name*, interning it if new."""
        token = self._ids.get(name)
        if token is None:
            if not name or any(ch.isspace() for ch in name):
                raise ValueError(f"invalid token name {name!r}")
            token = len(self._names)
            self._names.append(name)
            self._ids[name] = token
        return token

    def find(self, name: str) -> Optional[int]:
        return self._ids.get(name)

    def name(self, token: int) -> str:
        if token == NO_VALUE:
            return "NO_VALUE"
        return self._names[token]

    def __contains__(self, name: str) -> bool:
        return name in self._ids

    def __len__(self) -> int:
        return len(self._names)


# ═══════════════════════════════════════════════════════════════════
# Priorities and rules
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class NaturalTerrainInfo:
    """Blending properties of one terrain.

    *priority* — higher values win; borders fade from higher into lower.
    *xon_dist* — transition distance in metres; 0 disables fading.
    """

    name: str
    priority: int
    xon_dist: float = 0.0


@dataclass
class TerrainSample:
    """What the classifier knows about one face."""

    lon: float
    lat: float
    elevation: float
    slope: float
    feature: int = NO_VALUE
    zoning: int = NO_VALUE
    near_water: bool = False
    variant: int = 0
    layers: Dict[str, float] = field(default_factory=dict)


Range = Tuple[float, float]


@dataclass
class TerrainRule:
    """One classification rule.  ``None`` conditions match anything.

    Ranges are inclusive ``(min, max)``; *slope* is in degrees from
    horizontal.  *layers* maps an auxiliary DEM name to a range its
    sampled value must fall in.
    """

    terrain: str
    feature: Optional[str] = None
    zoning: Optional[str] = None
    slope: Optional[Range] = None
    elevation: Optional[Range] = None
    lat: Optional[Range] = None
    near_water: Optional[bool] = None
    variant: Optional[int] = None
    layers: Dict[str, Range] = field(default_factory=dict)

    def matches(self, sample: TerrainSample, tokens: TokenTable) -> bool:
        if self.feature is not None and tokens.find(self.feature) != sample.feature:
            return False
        if self.zoning is not None and tokens.find(self.zoning) != sample.zoning:
            return False
        if not _in_range(self.slope, sample.slope):
            return False
        if not _in_range(self.elevation, sample.elevation):
            return False
        if not _in_range(self.lat, sample.lat):
            return False
        if self.near_water is not None and self.near_water != sample.near_water:
            return False
        if self.variant is not None and self.variant != sample.variant:
            return False
        for name, rng in self.layers.items():
            value = sample.layers.get(name)
            if value is None or not _in_range(rng, value):
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"terrain": self.terrain}
        for key in ("feature", "zoning", "slope", "elevation", "lat", "near_water", "variant"):
            value = getattr(self, key)
            if value is not None:
                d[key] = list(value) if isinstance(value, tuple) else value
        if self.layers:
            d["layers"] = {k: list(v) for k, v in self.layers.items()}
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TerrainRule":
        def rng(key: str) -> Optional[Range]:
            value = d.get(key)
            return None if value is None else (float(value[0]), float(value[1]))

        return cls(
            terrain=d["terrain"],
            feature=d.get("feature"),
            zoning=d.get("zoning"),
            slope=rng("slope"),
            elevation=rng("elevation"),
            lat=rng("lat"),
            near_water=d.get("near_water"),
            variant=d.get("variant"),
            layers={k: (float(v[0]), float(v[1])) for k, v in d.get("layers", {}).items()},
        )


def _in_range(rng: Optional[Range], value: float) -> bool:
    return rng is None or rng[0] <= value <= rng[1]


class NaturalTerrainRules:
    """Priority table plus ordered classification rules.

    Parameters
    ----------
    terrains : list[NaturalTerrainInfo]
        Every terrain the rules may produce.  Priorities must be unique
        so that "lower priority" is a strict total order.
    rules : list[TerrainRule]
        Evaluated in order; first match wins.
    tokens : TokenTable | None
        Table to intern names into (a fresh one if omitted).
    """

    def __init__(
        self,
        terrains: Iterable[NaturalTerrainInfo],
        rules: Iterable[TerrainRule] = (),
        tokens: Optional[TokenTable] = None,
    ) -> None:
        self.tokens = tokens if tokens is not None else TokenTable()
        self.info: Dict[int, NaturalTerrainInfo] = {}
        seen_priorities: Dict[int, str] = {}
        for info in terrains:
            if info.priority in seen_priorities:
                raise ValueError(
                    f"terrains '{info.name}' and '{seen_priorities[info.priority]}' "
                    f"share priority {info.priority}"
                )
            if info.xon_dist < 0:
                raise ValueError(f"terrain '{info.name}' has a negative xon_dist")
            seen_priorities[info.priority] = info.name
            self.info[self.tokens.lookup(info.name)] = info
        self.rules: List[TerrainRule] = list(rules)
        for rule in self.rules:
            if self.tokens.find(rule.terrain) not in self.info:
                raise ValueError(f"rule produces unknown terrain '{rule.terrain}'")
            for name in (rule.feature, rule.zoning):
                if name is not None:
                    self.tokens.lookup(name)

    # ── priority ────────────────────────────────────────────────────

    def _rank(self, terrain: int) -> Tuple[int, int]:
        info = self.info.get(terrain)
        return (info.priority if info is not None else -1, terrain)

    def lower_priority(self, lhs: int, rhs: int) -> bool:
        """True if *lhs* ranks strictly below *rhs*."""
        return self._rank(lhs) < self._rank(rhs)

    def has_no_xon(self, terrain: int) -> bool:
        info = self.info.get(terrain)
        return info is None or info.xon_dist <= 0.0

    def xon_dist(self, a: int, b: int, normal_z: float) -> float:
        """Maximum fade distance between *a* and *b* on a face tilted to *normal_z*."""
        ia = self.info.get(a)
        ib = self.info.get(b)
        if ia is None or ib is None:
            return 0.0
        return min(ia.xon_dist, ib.xon_dist) * normal_z

    # ── classification ──────────────────────────────────────────────

    def find_terrain(self, sample: TerrainSample) -> int:
        """Terrain id of the first matching rule, or ``NO_VALUE``."""
        for rule in self.rules:
            if rule.matches(sample, self.tokens):
                return self.tokens.lookup(rule.terrain)
        return NO_VALUE

    # ── serialisation ───────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "terrains": [
                {"name": i.name, "priority": i.priority, "xon_dist": i.xon_dist}
                for i in self.info.values()
            ],
            "rules": [r.to_dict() for r in self.rules],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], tokens: Optional[TokenTable] = None) -> "NaturalTerrainRules":
        terrains = [
            NaturalTerrainInfo(t["name"], int(t["priority"]), float(t.get("xon_dist", 0.0)))
            for t in data.get("terrains", [])
        ]
        rules = [TerrainRule.from_dict(r) for r in data.get("rules", [])]
        return cls(terrains, rules, tokens=tokens)


def load_rules(path: Union[str, Path], tokens: Optional[TokenTable] = None) -> NaturalTerrainRules:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return NaturalTerrainRules.from_dict(data, tokens=tokens)
