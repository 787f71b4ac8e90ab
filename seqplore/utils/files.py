"""Utilities for handling file operations.

This module provides utilities such as downloading files (used to fetch
expression tables and marker databases from public archives), ensuring
directories exist, and opening members of compressed archives.
"""

import gzip
import logging
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from importlib.resources import files
from pathlib import Path, PurePosixPath
from typing import IO, Iterable, Union
from urllib.parse import unquote, urlparse

import requests
from tqdm import tqdm

logger = logging.getLogger(__name__)


__all__ = [
    "download_file",
    "download_files",
    "ensure_directory_exists",
    "filename_from_url",
    "get_resource_path",
    "open_archive_member",
    "strip_compression_suffix",
]

COMPRESSION_SUFFIXES = (".gz", ".bz2", ".xz", ".zip")


def get_resource_path(package: str, resource_name: str = "") -> Path:
    """Returns the full path to the resource within the specified package."""
    package_path = files(package)
    return package_path.joinpath(resource_name)


def ensure_directory_exists(path_like: Union[str, Path]) -> None:
    """Ensures the directory (and its ancestors) exists."""
    Path(path_like).mkdir(parents=True, exist_ok=True)


def filename_from_url(url: str) -> str:
    """Guesses a file name from a URL.

    Query parameters named ``file`` (as used by the GEO download service) take
    precedence over the last path component.

    Examples:
        >>> filename_from_url("https://host/dir/table.csv")
        'table.csv'
        >>> filename_from_url(
        ...     "https://www.ncbi.nlm.nih.gov/geo/download/"
        ...     "?acc=GSE1&format=file&file=GSE1%5Fcounts%2Ecsv%2Egz"
        ... )
        'GSE1_counts.csv.gz'
    """
    parsed = urlparse(url)
    for part in parsed.query.split("&"):
        key, _, value = part.partition("=")
        if key == "file" and value:
            return unquote(value)
    name = PurePosixPath(unquote(parsed.path)).name
    if not name:
        msg = f"Cannot derive a file name from URL '{url}'"
        raise ValueError(msg)
    return name


def strip_compression_suffix(path: Union[str, Path]) -> Path:
    """Removes a trailing compression suffix such as '.gz'."""
    path = Path(path)
    if path.suffix in COMPRESSION_SUFFIXES:
        return path.with_suffix("")
    return path


def download_file(
    url: str,
    save_path: Union[str, Path],
    overwrite: bool = False,
    show_progress: bool = True,
    chunk_size: int = 8192,
    max_attempts: int = 5,
    retry_delay: float = 3.0,
) -> Path:
    """Download a file from a URL and save it to disk.

    The download is streamed to a '.part' file next to `save_path` that is
    renamed once complete. Interrupted downloads are resumed with an HTTP
    Range request. Retries the download up to `max_attempts` times.

    Args:
        url (str): The URL from which the file will be downloaded.
        save_path (path_like): The path where the file will be saved.
        overwrite (bool): If True, overwrite existing file. Defaults to False.
        show_progress (bool): Display logs and progress bar. Defaults to True.
        chunk_size (int): Chunk size in bytes. Defaults to 8192.
        max_attempts (int): Number of times to try. Defaults to 5.
        retry_delay (float): Seconds to wait between retries. Defaults to 3.0.

    Returns:
        Path: The path of the downloaded file.

    Raises:
        RuntimeError: If all download attempts fail.
    """
    save_path = Path(save_path).expanduser()
    ensure_directory_exists(save_path.parent)

    if save_path.exists() and not overwrite:
        if show_progress:
            logger.info(
                "File already exists at %s. Skipping download.", save_path
            )
        return save_path

    temp_path = save_path.with_suffix(save_path.suffix + ".part")

    def _single_download() -> None:
        if temp_path.exists() and not overwrite:
            mode = "ab"
            resume_size = temp_path.stat().st_size
        else:
            mode = "wb"
            resume_size = 0

        headers = {"Range": f"bytes={resume_size}-"} if resume_size > 0 else {}

        with requests.get(
            url, stream=True, headers=headers, timeout=10
        ) as response:
            response.raise_for_status()
            if resume_size > 0 and response.status_code != 206:
                # Server ignored the range request, start from scratch
                mode = "wb"
                resume_size = 0

            total_size = (
                int(response.headers.get("content-length", 0)) + resume_size
            )
            with temp_path.open(mode) as file, tqdm(
                total=total_size,
                initial=resume_size,
                unit="iB",
                unit_scale=True,
                desc=save_path.name,
                disable=not show_progress,
            ) as progress_bar:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        file.write(chunk)
                        progress_bar.update(len(chunk))

    for attempt in range(1, max_attempts + 1):
        try:
            if show_progress:
                logger.info("Downloading from %s to %s...", url, save_path)
            _single_download()
            temp_path.replace(save_path)
            if show_progress:
                logger.info("Download completed: %s", save_path)
            return save_path
        except requests.RequestException as exc:
            logger.warning(
                "Download attempt %d/%d failed: %s", attempt, max_attempts, exc
            )
            if attempt < max_attempts:
                logger.warning("Retrying in %.1f seconds...", retry_delay)
                time.sleep(retry_delay)

    logger.warning("All %d download attempts failed for %s", max_attempts, url)
    msg = f"Failed to download {url} after {max_attempts} attempts."
    raise RuntimeError(msg)


def download_files(
    urls: Iterable[str],
    save_paths: Iterable[Union[str, Path]],
    overwrite: bool = False,
    show_progress: bool = True,
    max_workers: Union[int, None] = None,
) -> list:
    """Download multiple files in parallel.

    Args:
        urls (Iterable[str]): URLs to download.
        save_paths (Iterable[str | Path]): Corresponding save paths.
        overwrite (bool): Overwrite existing files.
        show_progress (bool): Show a progress bar over all files.
        max_workers (int | None): Number of parallel downloads.

    Returns:
        list: URLs that could not be downloaded.
    """
    urls = list(urls)
    save_paths = [Path(p) for p in save_paths]

    if len(urls) != len(save_paths):
        msg = "urls and save_paths must have the same length"
        raise ValueError(msg)

    failed = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(download_file, url, path, overwrite, False): url
            for url, path in zip(urls, save_paths)
        }
        with tqdm(
            total=len(futures),
            desc="Downloading (parallel)",
            unit="file",
            disable=not show_progress,
        ) as progress:
            for future in as_completed(futures):
                error = future.exception()
                if error is not None:
                    logger.error(
                        "Error downloading %s: %s", futures[future], error
                    )
                    failed.append(futures[future])
                progress.update(1)
    return failed


def open_archive_member(
    archive: Union[str, Path], member: Union[str, None] = None
) -> IO[bytes]:
    """Opens a file that may be gzipped or stored in a ZIP archive.

    Args:
        archive (str or Path): Path to a plain, '.gz' or '.zip' file.
        member (str, optional): For ZIP archives, the (suffix of the) name of
            the member to open. If None, the archive must hold exactly one
            file.

    Returns:
        A binary file-like object.

    Raises:
        FileNotFoundError: If the requested member is not in the archive.
        ValueError: If no member is given and the archive holds more than one
            file.
    """
    archive = Path(archive)
    if archive.suffix == ".gz":
        return gzip.open(archive, "rb")
    if archive.suffix != ".zip":
        return archive.open("rb")

    zip_file = zipfile.ZipFile(archive, "r")
    names = [x for x in zip_file.namelist() if not x.endswith("/")]
    if member is None:
        if len(names) != 1:
            zip_file.close()
            msg = (
                f"Archive '{archive}' contains {len(names)} files, specify "
                "which one to open."
            )
            raise ValueError(msg)
        return zip_file.open(names[0], "r")
    match = next((x for x in names if x.endswith(member)), None)
    if match is None:
        zip_file.close()
        msg = f"File '{member}' not found in the ZIP archive."
        raise FileNotFoundError(msg)
    return zip_file.open(match, "r")
