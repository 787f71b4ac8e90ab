"""seqplore package.

This package provides tools for exploring RNA-seq data: expression heatmaps
and cell type annotation of single-cell clusters with labeled references or
marker gene databases.
"""

import logging

from seqplore.dtypes import (
    ExpressionMatrix,
    GeneStats,
    MarkerSets,
    load_markers,
    read_dataframe,
)
from seqplore.utils import make_log_file

LOG_FILE = make_log_file("stdout")


def setup_logging():
    logger = logging.getLogger("seqplore")

    if logger.hasHandlers():
        logger.handlers.clear()

    logger.setLevel(logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)

    # File handler
    file_handler = logging.FileHandler(LOG_FILE, mode="a")
    file_handler.setLevel(logging.INFO)

    log_format = "%(asctime)s [%(module)s] %(message)s"
    formatter = logging.Formatter(log_format, "%H:%M:%S")
    console_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    # Prevent root logger propagation to avoid notebook conflicts
    logger.propagate = False

    # Don't show logging statements of other libraries.
    logging.getLogger("werkzeug").setLevel(logging.ERROR)

    logger.debug("Logging is set up")


setup_logging()

__all__ = [
    "ExpressionMatrix",
    "GeneStats",
    "LOG_FILE",
    "MarkerSets",
    "load_markers",
    "read_dataframe",
]
