"""Pytest for file utilities."""

import gzip
import zipfile
from pathlib import Path

import pytest
import requests

from seqplore.utils import files
from seqplore.utils.files import (
    download_file,
    download_files,
    filename_from_url,
    open_archive_member,
    strip_compression_suffix,
)


class FakeResponse:
    """Minimal streaming response used instead of the network."""

    def __init__(self, content, status_code=200):
        self.content = content
        self.status_code = status_code
        self.headers = {"content-length": str(len(content))}

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            msg = f"HTTP {self.status_code}"
            raise requests.HTTPError(msg)

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]


def test_filename_from_url() -> None:
    assert filename_from_url("https://host/dir/table.csv") == "table.csv"
    geo_url = (
        "https://www.ncbi.nlm.nih.gov/geo/download/"
        "?acc=GSE1&format=file&file=GSE1%5Fcounts%2Ecsv%2Egz"
    )
    assert filename_from_url(geo_url) == "GSE1_counts.csv.gz"
    with pytest.raises(ValueError):
        filename_from_url("https://host/")


def test_strip_compression_suffix() -> None:
    assert strip_compression_suffix("a/table.csv.gz") == Path("a/table.csv")
    assert strip_compression_suffix("table.tsv") == Path("table.tsv")


def test_open_archive_member(tmp_path: Path) -> None:
    """Reads plain, gzipped and zipped files."""
    plain = tmp_path / "genes.txt"
    plain.write_bytes(b"CD19\n")
    gz_path = tmp_path / "genes.txt.gz"
    with gzip.open(gz_path, "wb") as file:
        file.write(b"CD3E\n")
    zip_path = tmp_path / "genes.zip"
    with zipfile.ZipFile(zip_path, "w") as zip_file:
        zip_file.writestr("dir/a.txt", "NKG7\n")
        zip_file.writestr("dir/b.txt", "LYZ\n")

    with open_archive_member(plain) as file:
        assert file.read() == b"CD19\n"
    with open_archive_member(gz_path) as file:
        assert file.read() == b"CD3E\n"
    with open_archive_member(zip_path, "b.txt") as file:
        assert file.read() == b"LYZ\n"
    with pytest.raises(ValueError):
        open_archive_member(zip_path)
    with pytest.raises(FileNotFoundError):
        open_archive_member(zip_path, "c.txt")


def test_download_file(tmp_path: Path, monkeypatch) -> None:
    """Downloads to a temporary file and skips existing files."""
    calls = []

    def fake_get(url, **kwargs):
        calls.append(url)
        return FakeResponse(b"gene,value\nCD19,1\n")

    monkeypatch.setattr(files.requests, "get", fake_get)
    save_path = tmp_path / "sub" / "table.csv"
    result = download_file("https://host/table.csv", save_path)

    assert result == save_path
    assert save_path.read_bytes() == b"gene,value\nCD19,1\n"
    assert not save_path.with_suffix(".csv.part").exists()

    download_file("https://host/table.csv", save_path)
    assert len(calls) == 1


def test_download_file_failure(tmp_path: Path, monkeypatch) -> None:
    def fake_get(url, **kwargs):
        return FakeResponse(b"", status_code=404)

    monkeypatch.setattr(files.requests, "get", fake_get)
    with pytest.raises(RuntimeError):
        download_file(
            "https://host/missing.csv",
            tmp_path / "missing.csv",
            max_attempts=2,
            retry_delay=0,
        )


def test_download_files(tmp_path: Path, monkeypatch) -> None:
    def fake_get(url, **kwargs):
        if url.endswith("bad"):
            return FakeResponse(b"", status_code=500)
        return FakeResponse(url.encode())

    monkeypatch.setattr(files.requests, "get", fake_get)
    monkeypatch.setattr(files.time, "sleep", lambda x: None)
    urls = ["https://host/a", "https://host/bad"]
    paths = [tmp_path / "a", tmp_path / "b"]
    failed = download_files(urls, paths, show_progress=False)

    assert failed == ["https://host/bad"]
    assert paths[0].read_bytes() == b"https://host/a"
    with pytest.raises(ValueError):
        download_files(urls, paths[:1])
