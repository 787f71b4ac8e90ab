"""Utility functions for caching and memoization.

Utility functions for caching and memoization to avoid re-reading marker
databases and to derive stable file names for results written to disk.
"""

import inspect
import re
from pathlib import Path

import numpy as np
import pandas as pd
import xxhash


def np_hash(array):
    """Generates a hashable key for a NumPy array.

    Numeric arrays are converted to bytes. Object arrays (gene names, labels)
    are hashed element-wise with xxhash.

    Example:
        >>> arr = np.array([1, 2, 3, 4, 5])
        >>> np_hash(arr)
    """
    if array.dtype != np.dtype(object):
        return array.tobytes()
    hasher = xxhash.xxh64()
    for item in array:
        hasher.update(str(item).encode())
        hasher.update(b"\0")
    return (hasher.hexdigest(), len(array))


def pd_hash(data_frame):
    """Generates a hashable key for a pandas DataFrame."""
    return (
        np_hash(np.asarray(data_frame.index, dtype=object)),
        np_hash(np.asarray(data_frame.columns, dtype=object)),
        tuple(np_hash(data_frame[col].values) for col in data_frame),
    )


def cache_key(*args):
    """Generates a cache key for arguments based on their type.

    Args:
        arg: The input arguments, which can be of various types such as
            Path, bool, int, float, NoneType, str, tuple, list, Index,
            ndarray or DataFrame.

    Returns:
        The cache key for the arguments.
    """
    type_map = {
        "PosixPath": str,
        "WindowsPath": str,
        "Path": str,
        "bool": str,
        "int": str,
        "float": str,
        "NoneType": str,
        "str": str,
        "tuple": lambda x: tuple(cache_key(y) for y in x),
        "list": lambda x: tuple(cache_key(y) for y in x),
        "RangeIndex": lambda x: np_hash(np.asarray(x)),
        "Index": lambda x: np_hash(np.asarray(x, dtype=object)),
        "ndarray": np_hash,
        "DataFrame": pd_hash,
    }
    keys = tuple(type_map.get(type(arg).__name__, id)(arg) for arg in args)
    return keys[0] if len(args) == 1 else keys


def get_id_tuple(f, args, kwargs):
    """Generates an identifier tuple for a class/function and its arguments.

    The keyword arguments are sorted by key to ensure a consistent order. The
    keyword argument 'verbose' is excluded from the identifier.
    """
    id_list = [cache_key(f)]
    id_list.extend(cache_key(arg) for arg in args)
    sorted_kwargs = sorted((k, v) for k, v in kwargs.items() if k != "verbose")
    id_list.extend((key, cache_key(value)) for key, value in sorted_kwargs)
    return tuple(id_list)


def memoize(f):
    """Memoization decorator for classes and functions.

    Caches the return value (or the instance for classes) based on the
    arguments provided. Default values of keyword arguments are part of the
    key, so `f(x)` and `f(x, default=...)` share a cache entry.

    Note:
        Adapted from:
        https://stackoverflow.com/questions/10879137/how-can-i-memoize-a-class-instantiation-in-python
    """

    class Memoize:
        def __init__(self, func):
            self.func = func
            self._cache = {}
            self.__name__ = func.__name__
            self.__doc__ = func.__doc__
            self.__module__ = func.__module__
            target = func.__init__ if inspect.isclass(func) else func
            signature = inspect.signature(target)
            self.defaults = {
                key: val.default
                for key, val in signature.parameters.items()
                if val.default is not inspect.Parameter.empty
            }

        def __call__(self, *args, **kwargs):
            complete_kwargs = {**self.defaults, **kwargs}
            key = get_id_tuple(self.func, args, complete_kwargs)
            if key not in self._cache:
                self._cache[key] = self.func(*args, **kwargs)
            return self._cache[key]

        def cache_clear(self):
            """Empties the cache."""
            self._cache.clear()

        def __instancecheck__(self, other):
            """Make isinstance() work."""
            return isinstance(other, self.func)

    return Memoize(f)


def input_args_id(*args, extra_hash=None, suffix_limit=40):
    """Returns a file name safe identifier for a set of arguments.

    Strings, numbers and path names make up a readable prefix, the complete
    argument set (including tables) goes into a 64-bit xxhash.

    Example:
        >>> input_args_id("overlaps", "leiden", 0.05)
        'overlaps-leiden-005-<hash>'
    """
    components = []
    hasher = xxhash.xxh64()

    def _encode_arg(arg):
        if isinstance(arg, np.ndarray):
            return str(np_hash(arg)).encode()
        if isinstance(arg, (pd.DataFrame, pd.Series)):
            return pd.util.hash_pandas_object(arg, index=True).values.tobytes()
        if isinstance(arg, Path):
            components.append(arg.name)
            return str(arg).encode()
        if isinstance(arg, set):
            return ",".join(map(str, sorted(arg, key=str))).encode()
        if isinstance(arg, (list, tuple)):
            return ",".join(map(str, arg)).encode()
        if isinstance(arg, dict):
            items = sorted(arg.items())
            return ",".join(f"{k}={v}" for k, v in items).encode()
        components.append(str(arg))
        return str(arg).encode()

    for arg in args:
        hasher.update(_encode_arg(arg))
    if extra_hash:
        hasher.update(",".join(map(str, extra_hash)).encode())
    arg_hash = hasher.hexdigest()
    suffix = "-".join(components)[:suffix_limit]
    filename = f"{suffix}-{arg_hash}" if suffix else arg_hash
    return re.sub(r"[^a-zA-Z0-9_-]", "", filename)
