"""Pytest for the dataset downloader."""

from pathlib import Path

import pytest

from seqplore.utils import downloader
from seqplore.utils.downloader import (
    _geo_group,
    dataset_names,
    download_dataset,
    download_geo_supplementary,
    geo_file_url,
    geo_suppl_dir_url,
    list_geo_supplementary,
    pmc_file_url,
)

GEO_LISTING = """<html><body>
<a href="?C=N;O=D">Name</a>
<a href="/geo/series/GSE96nnn/GSE96583/">Parent Directory</a>
<a href="GSE96583_RAW.tar">GSE96583_RAW.tar</a>
<a href="GSE96583_batch2.genes.tsv.gz">GSE96583_batch2.genes.tsv.gz</a>
<a href="GSE96583_batch2.total.tsne.df.tsv.gz">tsne</a>
</body></html>
"""


class FakeResponse:
    def __init__(self, text):
        self.text = text

    def raise_for_status(self):
        pass


def fake_listing(url, timeout):
    return FakeResponse(GEO_LISTING)


def test_geo_urls() -> None:
    assert _geo_group("GSE96583") == "GSE96nnn"
    assert _geo_group("GSE123") == "GSEnnn"
    assert geo_suppl_dir_url("GSM2560245") == (
        "https://ftp.ncbi.nlm.nih.gov/geo/samples/"
        "GSM2560nnn/GSM2560245/suppl/"
    )
    assert "file=a%2Fb.csv" in geo_file_url("GSE1", "a/b.csv")
    assert pmc_file_url("123", "s1.xlsx").endswith("/PMC123/bin/s1.xlsx")
    with pytest.raises(ValueError):
        _geo_group("SRA123")


def test_list_geo_supplementary(monkeypatch) -> None:
    monkeypatch.setattr(downloader.requests, "get", fake_listing)
    names = list_geo_supplementary("GSE96583")
    assert names == [
        "GSE96583_RAW.tar",
        "GSE96583_batch2.genes.tsv.gz",
        "GSE96583_batch2.total.tsne.df.tsv.gz",
    ]


def test_download_geo_supplementary(tmp_path: Path, monkeypatch) -> None:
    """Only files matching the pattern are downloaded."""
    requested = []

    def fake_download_files(urls, paths, show_progress=True):
        requested.extend(urls)
        return []

    monkeypatch.setattr(downloader.requests, "get", fake_listing)
    monkeypatch.setattr(downloader, "download_files", fake_download_files)
    paths = download_geo_supplementary(
        "GSE96583", tmp_path, pattern=r"genes\.tsv\.gz$"
    )
    assert paths == [tmp_path / "GSE96583" / "GSE96583_batch2.genes.tsv.gz"]
    assert len(requested) == 1
    with pytest.raises(FileNotFoundError):
        download_geo_supplementary("GSE96583", tmp_path, pattern="xyz")


def test_download_dataset(tmp_path: Path, monkeypatch) -> None:
    saved = {}

    def fake_download_file(url, save_path, overwrite, show_progress):
        saved["url"] = url
        return save_path

    monkeypatch.setattr(downloader, "download_file", fake_download_file)
    path = download_dataset("ca_genes_fpkm", tmp_path)

    assert "ca_genes_fpkm" in dataset_names()
    assert path == tmp_path / "ca_genes_fpkm" / "ca-genes-fpkm.csv"
    assert saved["url"].endswith("ca-genes-fpkm.csv")
    with pytest.raises(ValueError):
        download_dataset("unknown_dataset", tmp_path)
