"""Expression matrix with genes as rows and samples or cells as columns."""

import logging

import numpy as np
import pandas as pd

from seqplore.dtypes.tables import numeric_columns, read_dataframe

logger = logging.getLogger(__name__)


class ExpressionMatrix:
    """Gene expression values with genes as rows and samples as columns.

    Wraps a pandas DataFrame and provides the table manipulations used before
    plotting or annotation: log transformation, gene filtering, subsetting,
    row scaling and alignment of two matrices by gene name.

    Args:
        data_frame (pd.DataFrame): Table with gene identifiers as index and
            sample identifiers as columns. Non-numeric columns are dropped.
        is_log (bool): Whether the values are already log-transformed.
            Defaults to False.

    Attributes:
        df (pd.DataFrame): The numeric expression table (float).
        is_log (bool): Whether the values are log-transformed.

    Examples:
        >>> fpkm = ExpressionMatrix.from_file("ca-genes-fpkm.csv")
        >>> log_fpkm = fpkm.log_transform()
        >>> log_fpkm.subset(["Gata1", "Klf1"]).scale_rows()
    """

    def __init__(self, data_frame, is_log=False):
        data_frame, _ = numeric_columns(pd.DataFrame(data_frame))
        data_frame.index = data_frame.index.astype(str)
        data_frame.columns = data_frame.columns.astype(str)
        data_frame.index.name = "gene"
        if data_frame.index.has_duplicates:
            n_dup = data_frame.index.duplicated().sum()
            logger.info("Collapsing %d duplicated gene names by sum", n_dup)
            data_frame = data_frame.groupby(level=0, sort=False).sum()
        self.df = data_frame.astype(float)
        self.is_log = is_log

    @classmethod
    def from_file(cls, path, is_log=False, **kwargs):
        """Reads a table whose first column contains the gene identifiers."""
        data_frame = read_dataframe(path, index_col=0, **kwargs)
        logger.info(
            "Read expression matrix with %d genes and %d columns from %s",
            data_frame.shape[0],
            data_frame.shape[1],
            path,
        )
        return cls(data_frame, is_log=is_log)

    def _new(self, data_frame, is_log=None):
        # Derived tables are already numeric with unique gene names.
        new = ExpressionMatrix.__new__(ExpressionMatrix)
        new.df = data_frame.astype(float)
        new.is_log = self.is_log if is_log is None else is_log
        return new

    @property
    def genes(self):
        return self.df.index

    @property
    def samples(self):
        return self.df.columns

    @property
    def shape(self):
        return self.df.shape

    def log_transform(self, base=2, pseudocount=1):
        """Returns log_base(x + pseudocount).

        Raises:
            ValueError: If the matrix is already log-transformed or contains
                negative values.
        """
        if self.is_log:
            msg = "Expression matrix is already log-transformed"
            raise ValueError(msg)
        if (self.df.to_numpy() < 0).any():
            msg = "Cannot log-transform negative expression values"
            raise ValueError(msg)
        values = np.log(self.df + pseudocount) / np.log(base)
        return self._new(values, is_log=True)

    def filter_genes(self, min_value=1, min_samples=1):
        """Keeps genes with at least `min_samples` values >= `min_value`."""
        mask = (self.df >= min_value).sum(axis=1) >= min_samples
        logger.info(
            "Keeping %d of %d genes (value >= %s in >= %d samples)",
            mask.sum(),
            len(mask),
            min_value,
            min_samples,
        )
        return self._new(self.df.loc[mask])

    def top_variable(self, n):
        """Returns the `n` genes with largest variance, most variable first."""
        variance = self.df.var(axis=1).sort_values(
            ascending=False, kind="stable"
        )
        return self._new(self.df.loc[variance.index[:n]])

    def subset(self, genes, strict=False):
        """Rows of `genes` in the given order.

        Args:
            genes (iterable): Gene identifiers.
            strict (bool): Raise if a gene is missing instead of dropping it.

        Raises:
            KeyError: If `strict` and some genes are not in the matrix.
        """
        genes = list(dict.fromkeys(str(x) for x in genes))
        missing = [x for x in genes if x not in self.df.index]
        if missing:
            if strict:
                msg = f"{len(missing)} genes not found: {missing[:10]}"
                raise KeyError(msg)
            logger.warning(
                "%d of %d genes not found in expression matrix: %s",
                len(missing),
                len(genes),
                missing[:10],
            )
        present = [x for x in genes if x in self.df.index]
        return self._new(self.df.loc[present])

    def scale_rows(self):
        """Returns the row-wise z-scores as a data frame.

        Uses the sample standard deviation (as R's `scale`). Rows without
        variance are set to 0.
        """
        mean = self.df.mean(axis=1)
        std = self.df.std(axis=1, ddof=1).replace(0, np.nan)
        scaled = self.df.sub(mean, axis=0).div(std, axis=0)
        return scaled.fillna(0.0)

    def align(self, other):
        """Restricts both matrices to their common genes, in the same order.

        Args:
            other (ExpressionMatrix or pd.DataFrame): Table indexed by gene.

        Returns:
            tuple: (self restricted, other restricted).

        Raises:
            ValueError: If there are no common genes.
        """
        other_df = other.df if isinstance(other, ExpressionMatrix) else other
        other_index = pd.Index(other_df.index.astype(str))
        common = self.df.index[self.df.index.isin(other_index)]
        if len(common) == 0:
            msg = "The tables have no gene identifiers in common"
            raise ValueError(msg)
        logger.info(
            "Aligned tables on %d common genes (%d and %d before)",
            len(common),
            len(self.df),
            len(other_df),
        )
        other_aligned = other_df.set_axis(other_index, axis=0).loc[common]
        if isinstance(other, ExpressionMatrix):
            other_aligned = other._new(other_aligned)
        return self._new(self.df.loc[common]), other_aligned

    def rename_samples(self, mapper):
        """Renames the sample columns with a dict or a callable."""
        renamed = self.df.rename(columns=mapper).rename(columns=str)
        return self._new(renamed)

    def __str__(self):
        lines = [
            "ExpressionMatrix(",
            f"    genes: {self.shape[0]}",
            f"    samples: {self.shape[1]}",
            f"    is_log: {self.is_log}",
            ")",
        ]
        return "\n".join(lines)

    def __repr__(self):
        return str(self)
