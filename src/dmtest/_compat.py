"""Input compatibility layer for counts, designs and genotypes.

Internal code works on NumPy arrays extracted from pandas frames.  The
public entry points accept any of:

* ``pandas.DataFrame`` — used as-is;
* ``numpy.ndarray`` (2-D) — wrapped with a default ``RangeIndex`` on
  both axes;
* ``polars.DataFrame`` / ``polars.LazyFrame`` — converted via
  ``.to_pandas()`` when Polars is installed.

Polars is **not** a required dependency.  Without it, Polars objects are
simply not recognised and a ``TypeError`` is raised like for any other
unsupported type.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | np.ndarray | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame | np.ndarray

try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "input") -> pd.DataFrame:
    """Convert *obj* to a :class:`pandas.DataFrame` if necessary.

    Args:
        obj: A pandas / Polars frame or a 2-D NumPy array.
        name: Label used in error messages (e.g. ``"design"``).

    Returns:
        A pandas ``DataFrame``.

    Raises:
        TypeError: If *obj* is not a recognised table type.
        ValueError: If *obj* is an array that is not 2-D.
    """
    if isinstance(obj, pd.DataFrame):
        return obj

    if isinstance(obj, np.ndarray):
        if obj.ndim != 2:
            raise ValueError(f"'{name}' must be 2-D, got shape {obj.shape}.")
        return pd.DataFrame(obj)

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_pandas()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    raise TypeError(
        f"'{name}' must be a pandas DataFrame or a 2-D NumPy array"
        + (" or Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )
