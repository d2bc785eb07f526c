"""Border matching — persisted tile edges and cross-tile reconciliation.

Each finished tile writes a ``.border.txt`` file describing its four
edges: the boundary vertices (location, height, blend levels) and, for
each boundary segment, the base terrain and border layers of the face
behind it.  A later neighbour loads the side facing it as a *master*
record and conforms its own boundary to it.

Sides are numbered ``0`` west, ``1`` south, ``2`` east, ``3`` north.

File format (one section per side, in that order, then ``END``)::

    VT <lon>, <lat>, <height>
    VBC <count>
    VB <blend> <terrain>
    TERRAIN <terrain>
    BORDER_C <count>
    BORDER_T <terrain>
    ...
    VC <lon>, <lat>, <height>
    VBC <count>
    VB <blend> <terrain>
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from .algorithms import finite_face_on_edge, next_along_line
from .models import MeshFace, MeshInvariantError, MeshVertex
from .terrain import TokenTable
from .triangulation import ConstrainedTriangulation

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Bounds = Tuple[float, float, float, float]

SIDE_NAMES = ("west", "south", "east", "north")


# ═══════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════


@dataclass(eq=False)
class MatchVertex:
    """One boundary vertex of a master record."""

    loc: Tuple[float, float]
    height: float
    blending: Dict[int, float] = field(default_factory=dict)
    buddy: Optional[MeshVertex] = field(default=None, repr=False)


@dataclass(eq=False)
class MatchEdge:
    """One boundary segment of a master record."""

    base: int
    borders: Set[int] = field(default_factory=set)
    buddy: Optional[MeshFace] = field(default=None, repr=False)


@dataclass
class MeshMatch:
    """A tile edge: ``len(vertices) == len(edges) + 1`` unless empty."""

    vertices: List[MatchVertex] = field(default_factory=list)
    edges: List[MatchEdge] = field(default_factory=list)

    def clear(self) -> None:
        self.vertices.clear()
        self.edges.clear()

    def is_empty(self) -> bool:
        return not self.vertices


# ═══════════════════════════════════════════════════════════════════
# Paths
# ═══════════════════════════════════════════════════════════════════


def latlon_bucket(value: int) -> int:
    """Round down to the enclosing 10-degree bucket."""
    return int(math.floor(value / 10.0)) * 10


def border_file_path(folder: PathLike, west: int, south: int) -> Path:
    """``<folder>/+40-080/+42-072.border.txt`` for the tile at (west, south)."""
    bucket = f"{latlon_bucket(south):+03d}{latlon_bucket(west):+04d}"
    return Path(folder) / bucket / f"{south:+03d}{west:+04d}.border.txt"


def _side_walk(bounds: Bounds, side: int) -> Tuple[Tuple[float, float], Tuple[float, float], Tuple[float, float]]:
    """Start corner, end corner and direction for walking one side."""
    west, south, east, north = bounds
    if side == 0:
        return (west, south), (west, north), (0.0, 1.0)
    if side == 1:
        return (west, south), (east, south), (1.0, 0.0)
    if side == 2:
        return (east, south), (east, north), (0.0, 1.0)
    if side == 3:
        return (west, north), (east, north), (1.0, 0.0)
    raise ValueError(f"side must be 0-3, got {side}")


# ═══════════════════════════════════════════════════════════════════
# Writing
# ═══════════════════════════════════════════════════════════════════


def _num(value: float) -> str:
    return repr(float(value))


def _blend_lines(blends: Dict[int, float], tokens: TokenTable) -> List[str]:
    lines = [f"VBC {len(blends)}"]
    for layer in sorted(blends):
        lines.append(f"VB {_num(blends[layer])} {tokens.name(layer)}")
    return lines


def border_lines(tri: ConstrainedTriangulation, bounds: Bounds, tokens: TokenTable) -> List[str]:
    """Text lines describing all four sides of a finished mesh."""
    lines: List[str] = []
    for side in range(4):
        start, stop, (dx, dy) = _side_walk(bounds, side)
        cur = tri.vertex_at(*start)
        if cur is None or tri.vertex_at(*stop) is None:
            raise MeshInvariantError(f"tile corner missing on the {SIDE_NAMES[side]} side")
        while True:
            if (cur.x, cur.y) == stop:
                lines.append(f"VC {_num(cur.x)}, {_num(cur.y)}, {_num(cur.height)}")
                lines.extend(_blend_lines(dict(cur.border_blend), tokens))
                break
            blends = {layer: level for layer, level in cur.border_blend.items() if level > 0.0}
            for f in tri.incident_faces(cur):
                if not f.is_infinite:
                    blends[f.terrain] = 1.0
            lines.append(f"VT {_num(cur.x)}, {_num(cur.y)}, {_num(cur.height)}")
            lines.extend(_blend_lines(blends, tokens))

            nxt, face = next_along_line(tri, cur, dx, dy)
            lines.append(f"TERRAIN {tokens.name(face.terrain)}")
            lines.append(f"BORDER_C {len(face.terrain_border)}")
            for layer in sorted(face.terrain_border):
                lines.append(f"BORDER_T {tokens.name(layer)}")
            cur = nxt
    lines.append("END")
    return lines


def write_border_file(
    tri: ConstrainedTriangulation,
    bounds: Bounds,
    tokens: TokenTable,
    path: PathLike,
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(border_lines(tri, bounds, tokens)) + "\n", encoding="utf-8")
    logger.info("wrote border file %s", path)
    return path


# ═══════════════════════════════════════════════════════════════════
# Reading
# ═══════════════════════════════════════════════════════════════════


class _Lines:
    def __init__(self, text: str) -> None:
        self._it: Iterator[str] = (ln.strip() for ln in text.splitlines() if ln.strip())

    def next(self, tag: str) -> str:
        line = next(self._it)
        head, _, rest = line.partition(" ")
        if head != tag:
            raise ValueError(f"expected {tag}, found {line!r}")
        return rest.strip()

    def raw(self) -> str:
        return next(self._it)

    def next_vertex(self) -> Tuple[str, str]:
        line = next(self._it)
        head, _, rest = line.partition(" ")
        if head not in ("VT", "VC"):
            raise ValueError(f"expected VT or VC, found {line!r}")
        return head, rest


def _parse_blends(lines: _Lines, tokens: TokenTable) -> Dict[int, float]:
    blends: Dict[int, float] = {}
    for _ in range(int(lines.next("VBC"))):
        level, name = lines.next("VB").split()
        blends[tokens.lookup(name)] = float(level)
    return blends


def parse_border_text(text: str, tokens: TokenTable) -> List[MeshMatch]:
    """Parse a whole border file; raises ``ValueError`` when malformed."""
    lines = _Lines(text)
    records: List[MeshMatch] = []
    try:
        for _ in range(4):
            match = MeshMatch()
            while True:
                tag, rest = lines.next_vertex()
                x, y, h = (float(part) for part in rest.split(","))
                match.vertices.append(MatchVertex((x, y), h, _parse_blends(lines, tokens)))
                if tag == "VC":
                    break
                base = tokens.lookup(lines.next("TERRAIN"))
                borders = {
                    tokens.lookup(lines.next("BORDER_T"))
                    for _ in range(int(lines.next("BORDER_C")))
                }
                match.edges.append(MatchEdge(base, borders))
            records.append(match)
        if lines.raw() != "END":
            raise ValueError("missing END")
    except StopIteration:
        raise ValueError("border file is truncated") from None
    return records


def load_border_file(path: PathLike, tokens: TokenTable) -> Optional[List[MeshMatch]]:
    """Load all four sides, or ``None`` if the file is missing or malformed."""
    path = Path(path)
    if not path.is_file():
        logger.info("no border file at %s", path)
        return None
    try:
        return parse_border_text(path.read_text(encoding="utf-8"), tokens)
    except (OSError, ValueError) as exc:
        logger.warning("discarding border file %s: %s", path, exc)
        return None


def neighbor_border_paths(folder: PathLike, west: int, south: int) -> List[Tuple[Path, int]]:
    """For each side, the neighbour file and which of its sections faces us."""
    return [
        (border_file_path(folder, west - 1, south), 2),
        (border_file_path(folder, west, south - 1), 3),
        (border_file_path(folder, west + 1, south), 0),
        (border_file_path(folder, west, south + 1), 1),
    ]


def load_neighbor_borders(folder: PathLike, west: int, south: int, tokens: TokenTable) -> List[MeshMatch]:
    """Master records for the four sides; empty where no neighbour exists."""
    result = []
    for path, section in neighbor_border_paths(folder, west, south):
        records = load_border_file(path, tokens)
        result.append(records[section] if records is not None else MeshMatch())
    return result


# ═══════════════════════════════════════════════════════════════════
# Matching
# ═══════════════════════════════════════════════════════════════════


def fetch_border(
    tri: ConstrainedTriangulation, origin: Tuple[float, float], side: int
) -> List[Tuple[float, MeshVertex]]:
    """Hull vertices on the side's bounding line, sorted by offset from *origin*."""
    found = []
    for v in tri.incident_vertices(tri.infinite_vertex):
        if side in (0, 2):
            if v.x == origin[0]:
                found.append((v.y - origin[1], v))
        elif v.y == origin[1]:
            found.append((v.x - origin[0], v))
    found.sort(key=lambda item: item[0])
    return found


def match_border(tri: ConstrainedTriangulation, match: MeshMatch, side: int) -> int:
    """Bind every master vertex to a local buddy; returns unmatched local count.

    Pairs are taken greedily, globally nearest first; ties go to the
    earlier master, then the lower offset.  Masters left over are
    inserted at their exact location with their recorded height.
    """
    if match.is_empty():
        return 0
    origin = match.vertices[0].loc
    axis = 1 if side in (0, 2) else 0
    slaves = fetch_border(tri, origin, side)
    for mv in match.vertices:
        mv.buddy = None

    while slaves:
        best = None
        for mv in match.vertices:
            if mv.buddy is not None:
                continue
            offset = mv.loc[axis] - origin[axis]
            for k, (s_off, _) in enumerate(slaves):
                dist = abs(s_off - offset)
                if best is None or dist < best[0]:
                    best = (dist, mv, k)
        if best is None:
            break
        _, mv, k = best
        mv.buddy = slaves.pop(k)[1]
        if mv.buddy.point == mv.loc:
            mv.buddy.height = mv.height

    hint = None
    inserted = 0
    for mv in match.vertices:
        if mv.buddy is None:
            v = tri.insert(mv.loc[0], mv.loc[1], hint)
            v.height = mv.height
            mv.buddy = v
            hint = v.face
            inserted += 1

    if slaves:
        logger.warning(
            "%s edge: %d local boundary vertices have no master counterpart",
            SIDE_NAMES[side], len(slaves),
        )
    logger.info(
        "%s edge: %d master vertices, %d inserted from master",
        SIDE_NAMES[side], len(match.vertices), inserted,
    )
    return len(slaves)


def border_find_edge_tris(tri: ConstrainedTriangulation, match: MeshMatch) -> int:
    """Resolve each master edge to the local face behind it; returns unresolved count."""
    unresolved = 0
    for n, edge in enumerate(match.edges):
        a = match.vertices[n].buddy
        b = match.vertices[n + 1].buddy
        edge.buddy = finite_face_on_edge(tri, a, b) if a is not None and b is not None else None
        if edge.buddy is None:
            unresolved += 1
    if unresolved:
        logger.warning("%d master edges have no matching local edge", unresolved)
    return unresolved
