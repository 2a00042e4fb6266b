"""Typed result objects for DM / BB fits and tests.

Frozen dataclasses that provide:

* **Attribute access** — ``result.lik``, ``result.results``, etc.
* **Dict-like access** — ``result["lik"]``, ``result.get("key")``,
  ``"key" in result``.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with NumPy and pandas types converted to native Python.

Two result types exist:

* :class:`FitResult` — one per gene (or genotype block) and model:
  coefficients ``b``, likelihood ``lik`` and fitted proportions ``fit``.
  Its arrays are flagged read-only so a fit can be shared between the
  full-model, null-model and permutation stages without being mutated.
* :class:`TestResult` — the aggregate returned by
  :func:`~dmtest.core.dm_test` and :func:`~dmtest.core.dm_sqtl_test`.
  It is built by composition: it *references* the input
  :class:`~dmtest.design.DMData` and the full-model fits rather than
  copying their fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .design import DMData

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy / pandas objects to Python-native types."""
    if isinstance(obj, pd.DataFrame):
        return obj.to_dict(orient="records")
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        return obj.to_dict()
    return obj


def _readonly(arr: Any) -> Any:
    """Return *arr* as a read-only float array (scalars pass through)."""
    if np.isscalar(arr) or arr is None:
        return arr
    if isinstance(arr, np.ndarray) and arr.dtype == float and not arr.flags.writeable:
        return arr
    out = np.array(arr, dtype=float)
    out.setflags(write=False)
    return out


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses."""

    # Fields to exclude from to_dict() serialisation.
    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            result[f.name] = _numpy_to_python(getattr(self, f.name))
        return result


# ------------------------------------------------------------------ #
# FitResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FitResult(_DictAccessMixin):
    """Outcome of one DM or BB regression fit.

    A failed or degenerate fit is still well shaped: every array is
    filled with ``nan`` and ``lik`` is ``nan`` (DM) or a ``nan`` vector
    (BB).
    """

    b: np.ndarray
    """Coefficient matrix ``(q, p)``."""

    lik: float | np.ndarray
    """Log-likelihood: scalar for DM, ``(q,)`` vector for BB."""

    fit: np.ndarray
    """Fitted proportions ``(q, n)``."""

    feature_ids: list[Any] | None = None
    """Feature identifiers (row labels of ``b`` and ``fit``)."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "b", _readonly(self.b))
        object.__setattr__(self, "fit", _readonly(self.fit))
        lik = self.lik
        if isinstance(lik, np.ndarray):
            object.__setattr__(self, "lik", _readonly(lik))
        else:
            object.__setattr__(self, "lik", float(lik))

    @property
    def converged(self) -> bool:
        """``True`` when the likelihood is defined."""
        return bool(np.all(np.isfinite(self.lik)))

    def coefficients(self, covariate_names: list[str] | None = None) -> pd.DataFrame:
        """Return ``b`` as a labelled ``DataFrame``."""
        return pd.DataFrame(
            self.b, index=self.feature_ids, columns=covariate_names
        )

    def proportions(self, sample_ids: list[Any] | None = None) -> pd.DataFrame:
        """Return ``fit`` as a labelled ``DataFrame``."""
        return pd.DataFrame(self.fit, index=self.feature_ids, columns=sample_ids)


# ------------------------------------------------------------------ #
# TestResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class TestResult(_DictAccessMixin):
    """Aggregate of a DM likelihood-ratio test over many genes.

    All fields are accessible both as attributes and via dict syntax.
    """

    __test__ = False  # not a pytest test class

    results: pd.DataFrame
    """Gene (or gene/block) table with ``lr, df, pvalue, adj_pvalue``."""

    lik_full: dict[str, Any]
    """Full-model DM log-likelihoods per gene (scalar or per-block array)."""

    lik_null: dict[str, Any]
    """Null-model DM log-likelihoods per gene."""

    permutation_mode: str | None
    """``"all_genes"``, ``"per_gene"`` or ``None`` (no permutations)."""

    optimizer: str
    """Name of the optimizer strategy that produced the fits."""

    n_permutation_cycles: Any = None
    """Cycles run: an ``int`` (pooled) or per-gene counts (per-gene)."""

    results_feature: pd.DataFrame | None = None
    """BB feature table (``bb_model=True`` only)."""

    fit_full: dict[str, Any] = field(default_factory=dict, repr=False)
    """Full-model :class:`FitResult` objects, keyed by gene."""

    data: DMData | None = field(default=None, repr=False, compare=False)
    """The input data this result was computed from (not serialised)."""

    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"data", "fit_full"})


__all__ = ["FitResult", "TestResult"]
