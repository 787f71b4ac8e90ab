"""Pytest for memoization and argument hashing."""

from pathlib import Path

import numpy as np
import pandas as pd

from seqplore.dtypes.cache import cache_key, input_args_id, memoize


def test_memoize_function() -> None:
    """Repeated calls with equal arguments are computed once."""
    calls = []

    @memoize
    def total(values, offset=0):
        calls.append(1)
        return float(np.sum(values)) + offset

    array = np.arange(5)
    assert total(array) == 10
    assert total(np.arange(5)) == 10
    assert total(array, offset=0) == 10
    assert len(calls) == 1
    assert total(array, offset=1) == 11
    assert len(calls) == 2

    total.cache_clear()
    total(array)
    assert len(calls) == 3


def test_memoize_class() -> None:
    @memoize
    class Table:
        def __init__(self, path):
            self.path = path

    first = Table(Path("a.csv"))
    assert Table(Path("a.csv")) is first
    assert Table(Path("b.csv")) is not first
    assert isinstance(first, Table)


def test_cache_key_data_frame() -> None:
    df = pd.DataFrame({"a": [1.0, 2.0]}, index=["CD19", "CD3E"])
    assert cache_key(df) == cache_key(df.copy())
    assert cache_key(df) != cache_key(df.rename(index={"CD19": "MS4A1"}))


def test_input_args_id() -> None:
    file_id = input_args_id("overlaps", "leiden", 0.05)
    assert file_id.startswith("overlaps-leiden-005-")
    assert file_id == input_args_id("overlaps", "leiden", 0.05)
    assert file_id != input_args_id("overlaps", "leiden", 0.01)
    assert input_args_id("a", extra_hash=["x"]) != input_args_id(
        "a", extra_hash=["y"]
    )
    df = pd.DataFrame({"x": [1, 2]})
    assert input_args_id(df) != input_args_id(df + 1)
