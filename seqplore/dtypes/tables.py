"""Reading tabular files into pandas data frames."""

import logging
from pathlib import Path

import pandas as pd

from seqplore.utils.files import strip_compression_suffix

logger = logging.getLogger(__name__)

SPREADSHEET_SUFFIXES = [".ods", ".xls", ".xlsx"]
TEXT_SUFFIXES = [".csv", ".tsv", ".txt", ".tab"]


def table_suffix(path):
    """Returns the suffix of a table file ignoring compression suffixes."""
    return strip_compression_suffix(path).suffix.lower()


def read_dataframe(path, **kwargs):
    """Reads a DataFrame from the specified file path.

    Supports ods, xlsx, xls and delimited text files (csv, tsv, txt, tab),
    the latter optionally compressed. The separator of text files is
    detected automatically.

    Args:
        path (str): The file path to read the DataFrame from.
        **kwargs: Additional keyword arguments to pass to the underlying pandas
            read function.

    Returns:
        pd.DataFrame: The loaded DataFrame.

    Raises:
        ValueError: If the file format is not supported.
    """
    path = Path(path).expanduser()
    suffix = table_suffix(path)
    if suffix in [".xlsx", ".xls"]:
        return pd.read_excel(path, **kwargs)
    if suffix == ".ods":
        return pd.read_excel(path, engine="odf", **kwargs)
    if suffix in TEXT_SUFFIXES:
        if "sep" not in kwargs:
            kwargs["sep"] = "\t" if suffix in [".tsv", ".tab"] else None
        if kwargs["sep"] is None:
            kwargs["engine"] = "python"
        return pd.read_csv(path, **kwargs)
    msg = (
        f"Unsupported file format '{suffix}'. Supported: ods, xlsx, xls, csv, "
        "tsv, txt, tab."
    )
    raise ValueError(msg)


def numeric_columns(data_frame):
    """Splits a data frame into its numeric part and the dropped columns.

    A column is dropped if one of its non-missing values is not a number.
    Columns without any value are kept.
    """
    numeric = data_frame.apply(pd.to_numeric, errors="coerce")
    keep = ~(numeric.isna() & data_frame.notna()).any(axis=0)
    dropped = list(data_frame.columns[~keep])
    if dropped:
        logger.info("Dropping non-numeric columns: %s", dropped)
    return numeric.loc[:, keep], dropped
