"""Contains the package configuration, temp paths and a debug timer.

Usage:
    timer = Timer()
    timer.start()
    # process to be measured
    timer.stop("process_name")
"""

import logging
import socket
import tempfile
import time
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from uuid import uuid4

import toml

from seqplore.utils.files import get_resource_path

__all__ = [
    "CONFIG",
    "SEQPLORE_DATA_DIR",
    "SEQPLORE_TMP_DIR",
    "Timer",
    "get_app_version",
    "get_free_port",
    "make_log_file",
]


def get_app_version():
    """Retrieve the app version from the package metadata."""
    try:
        return version("seqplore")
    except PackageNotFoundError:
        return "unknown"


logger = logging.getLogger(__name__)

version_str = get_app_version().replace(".", "_")
SEQPLORE_TMP_DIR = Path(tempfile.gettempdir()) / f"seqplore-{version_str}"
SEQPLORE_DATA_DIR = Path.home() / "seqplore" / "data"
LOG_DIR = SEQPLORE_TMP_DIR / "log"

LOG_DIR.mkdir(parents=True, exist_ok=True)


def make_log_file(suffix):
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    unique_id = uuid4().hex[:8]
    log_file = LOG_DIR / f"{suffix}-{timestamp}-{unique_id}.log"
    log_file.touch(exist_ok=True)
    return log_file


class Timer:
    """Measures the time elapsed in milliseconds."""

    def __init__(self):
        self.time0 = time.time()

    def start(self):
        """Resets timer."""
        self.time0 = time.time()

    def stop(self, text=None):
        """Resets timer and logs the elapsed time."""
        delta_time = 1000 * (time.time() - self.time0)
        comment = "" if text is None else f" ({text})"
        logger.info("Time passed: %.1f ms%s", delta_time, comment)
        self.time0 = time.time()
        return delta_time


def get_free_port(start_port):
    """Returns the first free port from start position."""
    port = start_port
    while True:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            if s.connect_ex(("localhost", port)) != 0:
                return port
            port += 1


def load_config():
    """Loads the configuration from the package's config.toml."""
    config_path = get_resource_path("seqplore", "data/config.toml")
    return toml.load(config_path)


CONFIG = load_config()
