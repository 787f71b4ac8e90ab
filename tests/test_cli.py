"""Pytest for the command line interface."""

from pathlib import Path

import pytest

import seqplore.dtypes
from seqplore.cli import main, parse_args, read_gene_list
from seqplore.tests.helpers import (
    CELL_TYPES,
    TEST_FPKM_CSV,
    TEST_STATS_CSV,
    make_expression,
    make_marker_sets,
)


def fake_load_markers(sources=None, species="hs", save_dir=None):
    return make_marker_sets()


def test_parse_args() -> None:
    args = parse_args(["heatmap", "fpkm.csv", "stats.csv", "-n", "20"])
    assert args.command == "heatmap"
    assert args.n_genes == 20
    assert args.fpkm.is_absolute()
    assert args.output.name == "heatmap.html"

    args = parse_args(["overlaps", "CD3E,CD3D CD2", "--species", "mm"])
    assert args.genes == ["CD3E", "CD3D", "CD2"]
    assert args.species == "mm"

    args = parse_args(["annotate", "counts.h5ad", "--no_reference", "--app"])
    assert args.no_reference
    assert args.app
    assert args.port == 8050

    with pytest.raises(SystemExit):
        parse_args([])
    with pytest.raises(SystemExit):
        parse_args(["enrichment", "expr.csv", "--method", "gsva"])


def test_read_gene_list(tmp_path: Path) -> None:
    path = tmp_path / "genes.txt"
    path.write_text("CD19\nMS4A1\n\nCD79A\n")
    assert read_gene_list(str(path)) == ["CD19", "MS4A1", "CD79A"]
    assert read_gene_list("CD19, MS4A1") == ["CD19", "MS4A1"]


def test_download_list(capsys) -> None:
    assert main(["download", "--list"]) == 0
    assert "ca_genes_fpkm" in capsys.readouterr().out


def test_heatmap_command(tmp_path: Path) -> None:
    fpkm_path = tmp_path / "fpkm.csv"
    stats_path = tmp_path / "stats.csv"
    fpkm_path.write_bytes(TEST_FPKM_CSV)
    stats_path.write_bytes(TEST_STATS_CSV)
    output = tmp_path / "heatmap.html"

    main(["heatmap", str(fpkm_path), str(stats_path), "-o", str(output)])
    assert output.exists()


def test_overlaps_command(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(seqplore.dtypes, "load_markers", fake_load_markers)
    output = tmp_path / "overlaps.csv"
    genes = ",".join(CELL_TYPES["NK cells"])

    main(["overlaps", genes, "-n", "2", "-o", str(output)])
    assert "NK cells" in capsys.readouterr().out
    assert output.read_text().count("\n") == 5


def test_enrichment_command(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr(seqplore.dtypes, "load_markers", fake_load_markers)
    expr, _ = make_expression(n_per_type=1, seed=6)
    expr_path = tmp_path / "expr.csv"
    expr.to_csv(expr_path)

    main(["enrichment", str(expr_path), "-n", "1"])
    out = capsys.readouterr().out
    assert "B_0" in out
    assert "Monocytes" in out
