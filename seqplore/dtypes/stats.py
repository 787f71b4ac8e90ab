"""Differential expression statistics per gene."""

import logging

import numpy as np
import pandas as pd
from scipy.stats import false_discovery_control

from seqplore.dtypes.tables import read_dataframe
from seqplore.utils.varia import CONFIG

logger = logging.getLogger(__name__)

LOG2_FOLD_CHANGE = "log2_fold_change"
FOLD_CHANGE = "fold_change"
P_VALUE = "p_value"
Q_VALUE = "q_value"
STATS_ALIASES = {
    key: [x.lower() for x in CONFIG["stats"][key]]
    for key in (LOG2_FOLD_CHANGE, FOLD_CHANGE, P_VALUE, Q_VALUE)
}


def canonical_columns(columns):
    """Maps input column names to the canonical statistics names.

    Matching is case-insensitive. For every canonical name the first matching
    input column is used.

    Example:
        >>> canonical_columns(["baseMean", "log2FoldChange", "pvalue", "padj"])
        {'log2FoldChange': 'log2_fold_change', 'pvalue': 'p_value',
         'padj': 'q_value'}
    """
    mapping = {}
    for canonical, aliases in STATS_ALIASES.items():
        for column in columns:
            if column in mapping:
                continue
            if str(column).strip().lower() in aliases:
                mapping[column] = canonical
                break
    return mapping


class GeneStats:
    """Table of per-gene statistics from a differential expression test.

    Columns are renamed to 'log2_fold_change', 'p_value' and 'q_value'. A
    plain fold change column is converted to log2 scale, and a missing
    q-value column is computed from the p-values (Benjamini-Hochberg).
    Further columns are kept unchanged.

    Args:
        data_frame (pd.DataFrame): Table with gene identifiers as index.

    Raises:
        ValueError: If neither a p-value nor a q-value column is found.
    """

    def __init__(self, data_frame):
        data_frame = pd.DataFrame(data_frame).copy()
        data_frame.index = data_frame.index.astype(str)
        data_frame.index.name = "gene"
        if data_frame.index.has_duplicates:
            logger.info("Dropping duplicated genes in statistics table")
            data_frame = data_frame[~data_frame.index.duplicated()]
        mapping = canonical_columns(data_frame.columns)
        data_frame = data_frame.rename(columns=mapping)
        logger.debug("Statistics columns renamed: %s", mapping)

        if LOG2_FOLD_CHANGE not in data_frame and FOLD_CHANGE in data_frame:
            fold_change = pd.to_numeric(data_frame[FOLD_CHANGE])
            if (fold_change <= 0).any():
                logger.info(
                    "Fold change contains values <= 0, assuming log2 scale"
                )
                data_frame[LOG2_FOLD_CHANGE] = fold_change
            else:
                data_frame[LOG2_FOLD_CHANGE] = np.log2(fold_change)

        if P_VALUE not in data_frame and Q_VALUE not in data_frame:
            msg = (
                "No p-value or q-value column found in columns "
                f"{list(data_frame.columns)}"
            )
            raise ValueError(msg)
        if Q_VALUE not in data_frame:
            logger.info("Computing q-values (Benjamini-Hochberg)")
            data_frame[Q_VALUE] = bh_adjust(data_frame[P_VALUE])
        self.df = data_frame

    @classmethod
    def from_file(cls, path, **kwargs):
        """Reads a table whose first column contains the gene identifiers."""
        return cls(read_dataframe(path, index_col=0, **kwargs))

    @property
    def genes(self):
        return self.df.index

    def _new(self, data_frame):
        return GeneStats(data_frame)

    def _require_fold_change(self):
        if LOG2_FOLD_CHANGE not in self.df:
            msg = "Statistics table has no fold change column"
            raise ValueError(msg)

    def significant(self, q_max=0.05, min_abs_log2_fold_change=0):
        """Genes with q-value <= `q_max` and a minimal absolute fold change."""
        mask = self.df[Q_VALUE] <= q_max
        if min_abs_log2_fold_change > 0:
            self._require_fold_change()
            mask &= self.df[LOG2_FOLD_CHANGE].abs() >= min_abs_log2_fold_change
        logger.info(
            "%d of %d genes significant (q <= %s)",
            mask.sum(),
            len(mask),
            q_max,
        )
        return self._new(self.df.loc[mask])

    def sort_by(self, column=Q_VALUE, ascending=True):
        """Sorts genes by a statistic.

        Ties are broken by absolute fold change (largest first) if available.
        """
        if column not in self.df:
            msg = f"Unknown column '{column}'"
            raise ValueError(msg)
        data_frame = self.df.assign(_key=self.df[column])
        by = ["_key"]
        order = [ascending]
        if LOG2_FOLD_CHANGE in self.df and column != LOG2_FOLD_CHANGE:
            data_frame["_abs_fc"] = self.df[LOG2_FOLD_CHANGE].abs()
            by.append("_abs_fc")
            order.append(False)
        data_frame = data_frame.sort_values(by, ascending=order, kind="stable")
        return self._new(data_frame.drop(columns=by))

    def top(self, n, by=Q_VALUE):
        """The `n` best genes by a statistic (smallest for p/q values)."""
        ascending = by in (P_VALUE, Q_VALUE)
        return self._new(self.sort_by(by, ascending=ascending).df.head(n))

    def up(self):
        """Genes with positive fold change."""
        self._require_fold_change()
        return self._new(self.df[self.df[LOG2_FOLD_CHANGE] > 0])

    def down(self):
        """Genes with negative fold change."""
        self._require_fold_change()
        return self._new(self.df[self.df[LOG2_FOLD_CHANGE] < 0])

    def __len__(self):
        return len(self.df)

    def __str__(self):
        lines = [
            "GeneStats(",
            f"    genes: {len(self.df)}",
            f"    columns: {list(self.df.columns)}",
            ")",
        ]
        return "\n".join(lines)

    def __repr__(self):
        return str(self)


def bh_adjust(p_values):
    """Benjamini-Hochberg adjusted p-values, NaN values are kept."""
    p_values = pd.to_numeric(pd.Series(p_values), errors="coerce")
    result = pd.Series(np.nan, index=p_values.index)
    valid = p_values.notna()
    if valid.any():
        result[valid] = false_discovery_control(
            p_values[valid].to_numpy(), method="bh"
        )
    return result
