"""Pytest for the differential statistics table."""

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from seqplore.dtypes import GeneStats, bh_adjust
from seqplore.dtypes.stats import canonical_columns
from seqplore.tests.helpers import TEST_STATS_CSV, TempFile


def test_canonical_columns() -> None:
    columns = ["baseMean", "log2FoldChange", "pvalue", "padj"]
    mapping = canonical_columns(columns)
    assert mapping == {
        "log2FoldChange": "log2_fold_change",
        "pvalue": "p_value",
        "padj": "q_value",
    }
    assert canonical_columns(["logFC", "P.Value", "adj.P.Val"]) == {
        "logFC": "log2_fold_change",
        "P.Value": "p_value",
        "adj.P.Val": "q_value",
    }


def test_from_file() -> None:
    tmp_file = TempFile(TEST_STATS_CSV, ".csv")
    stats = GeneStats.from_file(tmp_file.path)
    assert len(stats) == 10
    assert {"log2_fold_change", "p_value", "q_value", "baseMean"} <= set(
        stats.df.columns
    )


def test_significant_and_top() -> None:
    tmp_file = TempFile(TEST_STATS_CSV, ".csv")
    stats = GeneStats.from_file(tmp_file.path)
    significant = stats.significant(q_max=0.05)
    assert len(significant) == 7
    assert len(stats.significant(0.05, min_abs_log2_fold_change=3)) == 5
    top = significant.top(3)
    assert list(top.genes) == ["Hbb-b1", "Gata1", "Klf1"]
    assert list(significant.up().genes) == ["Car1", "Car2", "Mpo", "Elane"]
    assert len(significant.down()) == 3


def test_fold_change_and_q_values() -> None:
    """Fold changes are converted to log2, q-values are computed."""
    df = pd.DataFrame(
        {"FC": [4.0, 0.5, 1.0], "pval": [0.01, 0.02, 0.5]},
        index=["a", "b", "c"],
    )
    stats = GeneStats(df)
    assert_allclose(stats.df["log2_fold_change"], [2.0, -1.0, 0.0])
    assert_allclose(stats.df["q_value"], [0.03, 0.03, 0.5])


def test_missing_p_values() -> None:
    with pytest.raises(ValueError):
        GeneStats(pd.DataFrame({"log2FoldChange": [1.0]}, index=["a"]))


def test_sort_by_tie_break() -> None:
    df = pd.DataFrame(
        {"log2FC": [0.5, -3.0, 1.0], "padj": [0.01, 0.01, 0.001]},
        index=["a", "b", "c"],
    )
    stats = GeneStats(df)
    assert list(stats.sort_by().genes) == ["c", "b", "a"]
    with pytest.raises(ValueError):
        stats.sort_by("unknown")


def test_bh_adjust() -> None:
    p_values = pd.Series([0.01, np.nan, 0.04, 0.03])
    adjusted = bh_adjust(p_values)
    assert np.isnan(adjusted[1])
    assert_allclose(adjusted.dropna(), [0.03, 0.04, 0.04])
