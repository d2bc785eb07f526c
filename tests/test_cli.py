"""Tests for ``terramesh.cli`` — the build, border-info and error commands."""

from __future__ import annotations

import json

import pytest

from terramesh.borders import border_file_path
from terramesh.cli import build_parser, main


# ── helpers ─────────────────────────────────────────────────────────

TILE = {
    "dem": {"bounds": [-72, 42, -71, 43], "heights": [[10.0] * 5 for _ in range(5)]},
    "polygons": [{"ring": [[-72, 42], [-71.5, 42], [-71.5, 42.5], [-72, 42.5]]}],
    "rules": {
        "terrains": [{"name": "lu_grass", "priority": 10, "xon_dist": 300}],
        "rules": [{"terrain": "lu_grass"}],
    },
}


@pytest.fixture()
def tile_path(tmp_path):
    path = tmp_path / "tile.json"
    path.write_text(json.dumps(TILE), encoding="utf-8")
    return path


# ═══════════════════════════════════════════════════════════════════
# Parser
# ═══════════════════════════════════════════════════════════════════


def test_parser_build_defaults():
    args = build_parser().parse_args(["build", "--tile", "t.json", "--out", "m.json"])
    assert args.tile_path == "t.json"
    assert args.output_path == "m.json"
    assert args.border_dir is None
    assert args.seed == 0
    assert args.preset is None


def test_parser_needs_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_parser_rejects_unknown_preset():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["build", "--tile", "t", "--out", "m", "--preset", "tablet"])


# ═══════════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════════


class TestBuild:
    def test_writes_mesh(self, tile_path, tmp_path, capsys):
        out = tmp_path / "mesh.json"
        main(["build", "--tile", str(tile_path), "--out", str(out)])
        assert f"Saved {out}" in capsys.readouterr().out
        mesh = json.loads(out.read_text(encoding="utf-8"))
        assert mesh["vertices"] and mesh["faces"]

    def test_timings_listed(self, tile_path, tmp_path, capsys):
        main(["build", "--tile", str(tile_path), "--out", str(tmp_path / "m.json")])
        out = capsys.readouterr().out
        assert "greedy_error" in out
        assert "write_borders" in out

    def test_borders(self, tile_path, tmp_path):
        folder = tmp_path / "borders"
        main([
            "build", "--tile", str(tile_path), "--out", str(tmp_path / "m.json"),
            "--borders", str(folder),
        ])
        assert border_file_path(folder, -72, 42).exists()

    def test_diagnose_json(self, tile_path, tmp_path):
        report_path = tmp_path / "report.json"
        main([
            "build", "--tile", str(tile_path), "--out", str(tmp_path / "m.json"),
            "--preset", "phone", "--diagnose-json", str(report_path),
        ])
        report = json.loads(report_path.read_text(encoding="utf-8"))
        assert report["water_faces_with_borders"] == 0
        assert report["structure_errors"] == []

    def test_bad_tile_exits(self, tmp_path, capsys):
        bad = dict(TILE, polygons=[{"ring": [[0, 0], [1, 1], [2, 2]]}])
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(bad), encoding="utf-8")
        with pytest.raises(SystemExit) as exc:
            main(["build", "--tile", str(path), "--out", str(tmp_path / "m.json")])
        assert exc.value.code == 1
        assert "degenerate polygon" in capsys.readouterr().out


class TestBorderInfo:
    def test_sides(self, tile_path, tmp_path, capsys):
        folder = tmp_path / "borders"
        main([
            "build", "--tile", str(tile_path), "--out", str(tmp_path / "m.json"),
            "--borders", str(folder),
        ])
        capsys.readouterr()
        main(["border-info", str(border_file_path(folder, -72, 42))])
        lines = capsys.readouterr().out.splitlines()
        assert [ln.split()[0] for ln in lines] == ["west", "south", "east", "north"]
        assert all("lu_grass" in ln for ln in lines)

    def test_unreadable(self, tmp_path, capsys):
        path = tmp_path / "junk.border.txt"
        path.write_text("nonsense\n", encoding="utf-8")
        with pytest.raises(SystemExit) as exc:
            main(["border-info", str(path)])
        assert exc.value.code == 1
        assert "not a readable border file" in capsys.readouterr().out


def test_error_command(tile_path, capsys):
    main(["error", "--tile", str(tile_path)])
    out = capsys.readouterr().out
    assert "samples   25" in out
    mean = next(ln for ln in out.splitlines() if ln.startswith("mean"))
    assert abs(float(mean.split()[1])) < 1e-3
