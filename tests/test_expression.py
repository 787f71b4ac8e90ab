"""Pytest for the expression matrix."""

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from seqplore.dtypes import ExpressionMatrix
from seqplore.tests.helpers import TEST_FPKM_CSV, TempFile


def small_matrix():
    return ExpressionMatrix(
        pd.DataFrame(
            {"s1": [0.0, 3.0, 5.0], "s2": [1.0, 3.0, 7.0], "s3": [7, 3, 0]},
            index=["g1", "g2", "g3"],
        )
    )


def test_from_file() -> None:
    tmp_file = TempFile(TEST_FPKM_CSV, ".csv")
    fpkm = ExpressionMatrix.from_file(tmp_file.path)
    assert fpkm.shape == (10, 6)
    assert fpkm.genes[0] == "Gata1"
    assert not fpkm.is_log
    assert "genes: 10" in str(fpkm)


def test_duplicated_genes_are_summed() -> None:
    expr = ExpressionMatrix(
        pd.DataFrame({"s1": [1.0, 2.0, 3.0]}, index=["a", "a", "b"])
    )
    assert expr.df.loc["a", "s1"] == 3.0
    assert list(expr.genes) == ["a", "b"]


def test_log_transform() -> None:
    expr = small_matrix()
    log_expr = expr.log_transform(base=2, pseudocount=1)
    assert log_expr.is_log
    assert log_expr.df.loc["g2", "s1"] == pytest.approx(2.0)
    with pytest.raises(ValueError):
        log_expr.log_transform()
    with pytest.raises(ValueError):
        ExpressionMatrix(pd.DataFrame({"s": [-1.0]})).log_transform()


def test_filter_and_top_variable() -> None:
    expr = small_matrix()
    assert list(expr.filter_genes(min_value=5, min_samples=1).genes) == [
        "g1",
        "g3",
    ]
    assert list(expr.filter_genes(min_value=3, min_samples=3).genes) == [
        "g2"
    ]
    top = expr.top_variable(2)
    assert list(top.genes) == ["g1", "g3"]


def test_subset() -> None:
    expr = small_matrix()
    assert list(expr.subset(["g3", "g1", "missing"]).genes) == ["g3", "g1"]
    with pytest.raises(KeyError):
        expr.subset(["missing"], strict=True)


def test_scale_rows() -> None:
    """Rows are z-scored and constant rows are set to zero."""
    scaled = small_matrix().scale_rows()
    assert_allclose(scaled.mean(axis=1), 0, atol=1e-12)
    assert_allclose(scaled.loc[["g1", "g3"]].std(axis=1, ddof=1), 1)
    assert (scaled.loc["g2"] == 0).all()


def test_align() -> None:
    expr = small_matrix()
    other = pd.DataFrame({"q": [0.1, 0.2]}, index=["g3", "other"])
    left, right = expr.align(other)
    assert list(left.genes) == ["g3"]
    assert list(right.index) == ["g3"]
    with pytest.raises(ValueError):
        expr.align(pd.DataFrame({"q": [1]}, index=["none"]))


def test_non_numeric_columns_dropped() -> None:
    df = pd.DataFrame(
        {"symbol": ["A", "B"], "s1": [1.0, np.nan]}, index=["g1", "g2"]
    )
    expr = ExpressionMatrix(df)
    assert list(expr.samples) == ["s1"]


def test_empty_results_keep_samples() -> None:
    expr = small_matrix()
    assert expr.subset(["missing"]).shape == (0, 3)
    assert expr.filter_genes(min_value=100).shape == (0, 3)
    assert expr.top_variable(0).shape == (0, 3)
    assert list(expr.subset([]).samples) == ["s1", "s2", "s3"]


def test_missing_sample_is_kept() -> None:
    df = pd.DataFrame(
        {"s1": [1.0, 2.0], "s2": [np.nan, np.nan]}, index=["g1", "g2"]
    )
    expr = ExpressionMatrix(df)
    assert list(expr.samples) == ["s1", "s2"]
    assert expr.df["s2"].isna().all()
