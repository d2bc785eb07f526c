"""Terramesh command-line interface."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from .io import load_tile, save_mesh_json
from .models import MeshInvariantError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="terramesh", description="Terrain mesh builder")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Build a tile mesh")
    build.add_argument("--tile", dest="tile_path", required=True)
    build.add_argument("--borders", dest="border_dir")
    build.add_argument("--out", dest="output_path", required=True)
    build.add_argument("--preset", choices=["desktop", "phone"])
    build.add_argument("--seed", type=int, default=0)
    build.add_argument("--diagnose-json", dest="diagnose_json")

    info = sub.add_parser("border-info", help="Summarise a border file")
    info.add_argument("path")

    error = sub.add_parser("error", help="Build a tile and report how well it fits its DEM")
    error.add_argument("--tile", dest="tile_path", required=True)
    error.add_argument("--seed", type=int, default=0)

    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "build":
            _cmd_build(args)
        elif args.command == "border-info":
            _cmd_border_info(args)
        elif args.command == "error":
            _cmd_error(args)
    except (MeshInvariantError, ValueError) as exc:
        print(exc)
        raise SystemExit(1)


def _cmd_build(args) -> None:
    from .diagnostics import diagnostics_report
    from .io import PRESETS
    from .pipeline import build_tile

    tile = load_tile(args.tile_path)
    prefs = PRESETS[args.preset] if args.preset else tile.prefs
    ctx, result = build_tile(
        tile.dem, tile.pmap, tile.rules, prefs,
        border_folder=args.border_dir, layers=tile.layers, seed=args.seed,
    )
    save_mesh_json(ctx.tri, tile.rules.tokens, args.output_path)
    for name, seconds in result.elapsed.items():
        print(f"{name:<18} {seconds:8.3f}s")
    if args.diagnose_json:
        report = diagnostics_report(ctx.tri, tile.dem, tile.rules.tokens)
        Path(args.diagnose_json).write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(f"Saved {args.output_path}")


def _cmd_border_info(args) -> None:
    from .borders import SIDE_NAMES, load_border_file
    from .terrain import TokenTable

    tokens = TokenTable()
    records = load_border_file(args.path, tokens)
    if records is None:
        print(f"{args.path}: not a readable border file")
        raise SystemExit(1)
    for side, match in zip(SIDE_NAMES, records):
        terrains = sorted({tokens.name(e.base) for e in match.edges})
        print(f"{side:<6} {len(match.vertices):5d} vertices  {len(match.edges):5d} edges  {' '.join(terrains)}")


def _cmd_error(args) -> None:
    from .pipeline import TileContext, triangulate_mesh
    from .query import calc_mesh_error

    tile = load_tile(args.tile_path)
    ctx = TileContext(
        dem=tile.dem, pmap=tile.pmap, rules=tile.rules,
        prefs=tile.prefs.with_overrides(border_match=False),
        layers=tile.layers, seed=args.seed,
    )
    triangulate_mesh(ctx)
    stats = calc_mesh_error(ctx.tri, tile.dem)
    print(f"samples   {stats.count}")
    print(f"min       {stats.min:.3f}")
    print(f"max       {stats.max:.3f}")
    print(f"mean      {stats.mean:.3f}")
    print(f"std dev   {stats.std:.3f}")
    if stats.worst_pos_at:
        print(f"worst +   {stats.worst_pos:.3f} at {stats.worst_pos_at[0]:+.6f}, {stats.worst_pos_at[1]:+.6f}")
    if stats.worst_neg_at:
        print(f"worst -   {stats.worst_neg:.3f} at {stats.worst_neg_at[0]:+.6f}, {stats.worst_neg_at[1]:+.6f}")


if __name__ == "__main__":
    main()
