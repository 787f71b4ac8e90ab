"""Module providing the tabular data types and caching utilities."""

from .cache import input_args_id, memoize
from .expression import ExpressionMatrix
from .markers import (
    MarkerSets,
    load_markers,
    normalize_gene_case,
    normalize_species,
)
from .stats import GeneStats, bh_adjust
from .tables import read_dataframe

__all__ = [
    "ExpressionMatrix",
    "GeneStats",
    "MarkerSets",
    "bh_adjust",
    "input_args_id",
    "load_markers",
    "memoize",
    "normalize_gene_case",
    "normalize_species",
    "read_dataframe",
]
