"""seqplore.utils package.

This package provides utility functions for configuration, file handling and
downloading public datasets.
"""

from .downloader import (
    dataset_names,
    download_dataset,
    download_geo_file,
    download_geo_supplementary,
    download_osf_file,
    download_pmc_file,
    setup_tutorial_files,
)
from .files import (
    download_file,
    download_files,
    ensure_directory_exists,
    filename_from_url,
    get_resource_path,
    open_archive_member,
)
from .varia import (
    CONFIG,
    SEQPLORE_DATA_DIR,
    SEQPLORE_TMP_DIR,
    Timer,
    get_free_port,
    make_log_file,
)

__all__ = [
    "CONFIG",
    "SEQPLORE_DATA_DIR",
    "SEQPLORE_TMP_DIR",
    "Timer",
    "dataset_names",
    "download_dataset",
    "download_file",
    "download_files",
    "download_geo_file",
    "download_geo_supplementary",
    "download_osf_file",
    "download_pmc_file",
    "ensure_directory_exists",
    "filename_from_url",
    "get_free_port",
    "get_resource_path",
    "make_log_file",
    "open_archive_member",
    "setup_tutorial_files",
]
