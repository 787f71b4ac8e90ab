"""Pytest for marker gene sets."""

from pathlib import Path

import pandas as pd
import pytest

from seqplore.dtypes import (
    MarkerSets,
    load_markers,
    normalize_gene_case,
    normalize_species,
)
from seqplore.dtypes import markers as markers_module
from seqplore.tests.helpers import (
    TEST_GMT,
    TEST_PANGLAODB_TSV,
    TempFile,
    make_marker_sets,
)


def test_normalize_species() -> None:
    assert normalize_species("Human") == "hs"
    assert normalize_species("mus musculus") == "mm"
    with pytest.raises(ValueError):
        normalize_species("zebrafish")


def test_normalize_gene_case() -> None:
    assert normalize_gene_case(["cd19", "Ms4a1"], "hs").tolist() == [
        "CD19",
        "MS4A1",
    ]
    assert normalize_gene_case(["CD19", "HBB-BS"], "mm").tolist() == [
        "Cd19",
        "Hbb-bs",
    ]


def test_from_panglaodb() -> None:
    """Genes of both species are listed once per species."""
    tmp_file = TempFile(TEST_PANGLAODB_TSV, ".tsv.gz")
    markers = MarkerSets.from_panglaodb(tmp_file.path)
    gene_sets = markers.to_gene_sets()

    human_b = gene_sets["B cells | Immune system | hs | PanglaoDB"]
    mouse_b = gene_sets["B cells | Immune system | mm | PanglaoDB"]
    assert len(human_b) == 6
    assert "Cd79a" in mouse_b
    assert "IL7R" in gene_sets["T cells | Immune system | hs | PanglaoDB"]
    assert "Il7r" not in gene_sets["T cells | Immune system | mm | PanglaoDB"]
    assert len(markers.filter(species="hs")) == 3
    assert len(markers.filter(species="mm")) == 3


def test_from_gmt() -> None:
    tmp_file = TempFile(TEST_GMT, ".gmt")
    markers = MarkerSets.from_gmt(tmp_file.path, db="custom")
    info = markers.set_info().set_index("celltype")
    assert info.loc["B_cells", "organ"] == "Immune system"
    assert info.loc["T_cells", "organ"] == ""
    assert info.loc["B_cells", "n_genes"] == 5
    assert len(markers) == 2


def test_filter_and_summary() -> None:
    markers = MarkerSets.concat(
        [
            make_marker_sets(db="one"),
            make_marker_sets({"Tiny": ["A", "B"]}, db="two"),
        ]
    )
    assert len(markers) == 5
    assert len(markers.filter(db="two")) == 1
    assert len(markers.filter(min_genes=5)) == 4
    assert len(markers.filter(max_genes=2)) == 1
    assert len(markers.filter(organ="Other")) == 0
    summary = markers.summary().set_index("db")
    assert summary.loc["one", "n_sets"] == 4
    assert "CD19" in markers.universe()
    assert "gene sets: 5" in str(markers)


def test_missing_columns() -> None:
    with pytest.raises(ValueError):
        MarkerSets(pd.DataFrame({"celltype": ["B"], "gene": ["CD19"]}))


def test_load_markers(tmp_path: Path, monkeypatch) -> None:
    """Databases are read from the download location."""
    panglao_path = tmp_path / "panglao.tsv"
    panglao_path.write_bytes(TEST_PANGLAODB_TSV)
    gmt_path = tmp_path / "extra.gmt"
    gmt_path.write_text(TEST_GMT)

    def fake_download_dataset(name, save_dir):
        assert name == "panglaodb"
        return panglao_path

    monkeypatch.setattr(
        markers_module, "download_dataset", fake_download_dataset
    )
    markers = load_markers(
        sources=["panglaodb", str(gmt_path)],
        species="human",
        save_dir=tmp_path,
    )
    assert set(markers.df["species"]) == {"hs"}
    assert set(markers.df["db"]) == {"PanglaoDB", "extra"}
    assert len(markers) == 5
    with pytest.raises(ValueError):
        load_markers(sources=["unknown"], save_dir=tmp_path)
