"""Downloader for the public datasets used in the tutorials.

Provides helpers to fetch supplementary files from GEO series or samples,
PubMed Central articles and OSF projects, and the named datasets declared in
the package configuration.

Examples:
    # Download a named dataset from the configuration
    download_dataset("ca_genes_fpkm", save_dir="~/seqplore/data")

    # Download all count tables of a GEO series
    download_geo_supplementary(
        "GSE96583", save_dir="~/seqplore/data", pattern=r"\\.tsv\\.gz$"
    )

    # Download a single file from a GEO sample
    download_geo_file(
        "GSM2560245", "GSM2560245_A.mat.gz", save_dir="~/seqplore/data"
    )
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import quote

import requests

from seqplore.utils.files import (
    download_file,
    download_files,
    filename_from_url,
)
from seqplore.utils.varia import CONFIG, SEQPLORE_DATA_DIR

logger = logging.getLogger(__name__)

GEO_FILE_URL = CONFIG["urls"]["geo_file"]
GEO_SUPPL_DIR_URL = CONFIG["urls"]["geo_suppl_dir"]
PMC_FILE_URL = CONFIG["urls"]["pmc_file"]
OSF_FILE_URL = CONFIG["urls"]["osf_file"]
GEO_KINDS = {"GSE": "series", "GSM": "samples", "GPL": "platforms"}


def _split_accession(geo_id: str) -> tuple:
    match = re.fullmatch(r"(GSE|GSM|GPL)(\d+)", geo_id.strip().upper())
    if match is None:
        msg = f"Invalid GEO accession: '{geo_id}'"
        raise ValueError(msg)
    return match.group(1), match.group(2)


def _geo_group(geo_id: str) -> str:
    """Compute the GEO group folder used on the FTP server.

    Example:
        >>> _geo_group('GSE12345')
        'GSE12nnn'
        >>> _geo_group('GSE123')
        'GSEnnn'
    """
    prefix, digits = _split_accession(geo_id)
    return f"{prefix}{digits[:-3]}nnn"


def geo_file_url(acc: str, filename: str) -> str:
    """Returns the GEO download URL of a supplementary file."""
    _split_accession(acc)
    return GEO_FILE_URL.format(acc=acc, filename=quote(filename, safe=""))


def geo_suppl_dir_url(acc: str) -> str:
    """Returns the URL of the supplementary folder of a GEO accession."""
    prefix, _ = _split_accession(acc)
    return GEO_SUPPL_DIR_URL.format(
        kind=GEO_KINDS[prefix], group=_geo_group(acc), acc=acc
    )


def pmc_file_url(pmcid: str, filename: str) -> str:
    """Returns the URL of a supplementary file of a PubMed Central article."""
    pmcid = pmcid.strip().upper()
    if not pmcid.startswith("PMC"):
        pmcid = f"PMC{pmcid}"
    return PMC_FILE_URL.format(pmcid=pmcid, filename=quote(filename))


def osf_file_url(osf_id: str) -> str:
    """Returns the download URL of an OSF file."""
    return OSF_FILE_URL.format(osf_id=osf_id.strip())


def list_geo_supplementary(acc: str, timeout: float = 10) -> list:
    """Lists the supplementary file names of a GEO series or sample.

    Parses the HTML directory listing served by the NCBI FTP site.
    """
    url = geo_suppl_dir_url(acc)
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    names = re.findall(r'href="([^"?/][^"/]*)"', response.text)
    names = [x for x in dict.fromkeys(names) if not x.startswith("http")]
    logger.info("Found %d supplementary files for %s", len(names), acc)
    return names


def download_geo_file(
    acc: str,
    filename: str,
    save_dir: Union[str, Path] = SEQPLORE_DATA_DIR,
    show_progress: bool = True,
) -> Path:
    """Downloads one supplementary file of a GEO accession.

    The file is saved to '<save_dir>/<acc>/<filename>'.
    """
    save_path = Path(save_dir).expanduser() / acc / filename
    return download_file(
        geo_file_url(acc, filename), save_path, show_progress=show_progress
    )


def download_geo_supplementary(
    acc: str,
    save_dir: Union[str, Path] = SEQPLORE_DATA_DIR,
    pattern: Optional[str] = None,
    show_progress: bool = True,
) -> list:
    """Downloads all supplementary files of a GEO accession.

    Args:
        acc (str): GEO series or sample accession (e.g., "GSE96583").
        save_dir (path_like): Base directory. Files are saved to
            '<save_dir>/<acc>/'.
        pattern (str, optional): Regular expression, only matching file names
            are downloaded.
        show_progress (bool): Show a progress bar.

    Returns:
        list: Paths of the files on disk.

    Raises:
        FileNotFoundError: If no supplementary file matches.
    """
    names = list_geo_supplementary(acc)
    if pattern is not None:
        names = [x for x in names if re.search(pattern, x)]
    if not names:
        msg = f"No supplementary files found for {acc} (pattern={pattern})"
        raise FileNotFoundError(msg)
    base_url = geo_suppl_dir_url(acc)
    samples_dir = Path(save_dir).expanduser() / acc
    paths = [samples_dir / x for x in names]
    failed = download_files(
        [base_url + quote(x) for x in names],
        paths,
        show_progress=show_progress,
    )
    if failed:
        msg = f"Failed to download {len(failed)} file(s): {failed}"
        raise RuntimeError(msg)
    logger.info("Downloaded %d files to %s", len(paths), samples_dir)
    return paths


def download_pmc_file(
    pmcid: str,
    filename: str,
    save_dir: Union[str, Path] = SEQPLORE_DATA_DIR,
    show_progress: bool = True,
) -> Path:
    """Downloads a supplementary file of a PubMed Central article."""
    url = pmc_file_url(pmcid, filename)
    save_path = Path(save_dir).expanduser() / pmcid.upper() / filename
    return download_file(url, save_path, show_progress=show_progress)


def download_osf_file(
    osf_id: str,
    filename: str,
    save_dir: Union[str, Path] = SEQPLORE_DATA_DIR,
    show_progress: bool = True,
) -> Path:
    """Downloads a file stored on OSF under the given file id."""
    save_path = Path(save_dir).expanduser() / "osf" / filename
    return download_file(
        osf_file_url(osf_id), save_path, show_progress=show_progress
    )


def dataset_names() -> list:
    """Names of all datasets declared in the configuration."""
    return sorted(CONFIG["datasets"])


def download_dataset(
    name: str,
    save_dir: Union[str, Path] = SEQPLORE_DATA_DIR,
    overwrite: bool = False,
    show_progress: bool = True,
) -> Path:
    """Downloads a dataset declared in the '[datasets]' configuration.

    Args:
        name (str): Dataset key, e.g. 'ca_genes_fpkm'.
        save_dir (path_like): Base directory, the file is stored at
            '<save_dir>/<name>/<filename>'.
        overwrite (bool): Download again even if the file exists.
        show_progress (bool): Show a progress bar.

    Returns:
        Path: The path of the file on disk.

    Raises:
        ValueError: If `name` is not a configured dataset.
    """
    datasets = CONFIG["datasets"]
    if name not in datasets:
        msg = (
            f"Unknown dataset '{name}'. Available: "
            f"{', '.join(dataset_names())}"
        )
        raise ValueError(msg)
    entry = datasets[name]
    filename = entry.get("filename") or filename_from_url(entry["url"])
    save_path = Path(save_dir).expanduser() / name / filename
    return download_file(
        entry["url"],
        save_path,
        overwrite=overwrite,
        show_progress=show_progress,
    )


def setup_tutorial_files(save_dir: Union[str, Path] = SEQPLORE_DATA_DIR):
    """Downloads the expression tables used in the heatmap tutorial.

    Returns:
        dict: Maps dataset name to its path on disk.
    """
    return {
        name: download_dataset(name, save_dir)
        for name in ("ca_genes_fpkm", "ca_genes_stats")
    }
