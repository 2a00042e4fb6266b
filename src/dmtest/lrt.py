"""Likelihood-ratio test of a full DM model against a nested null model.

The statistic is

    LR = 2 (ℓ_full − ℓ_null)

and, under H₀, LR ~ χ²(df) asymptotically, so the raw p-value is the
upper-tail probability ``chi2.sf(LR, df)``.

Two situations are *not* reported as ordinary statistics:

* **LR < 0** — a correctly optimised full model can never fit worse
  than the nested null, so a negative statistic means one of the two
  fits stopped short.  The statistic and its p-value become ``nan``
  rather than a misleadingly large p-value.
* **df = 0** — there is nothing to test (e.g. identical full and null
  designs).  When both likelihoods are defined the p-value is 1.

Missing likelihoods (degenerate or failed fits, single-feature genes)
propagate as ``nan`` whatever *df* is, so such rows never enter a
permutation pool or the BH ranking.
These p-values are provisional; :mod:`dmtest.engine` recalibrates them
by permutation and applies the BH correction.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from scipy.stats import chi2


def degrees_of_freedom(n_features: int | np.ndarray, n_levels: int | np.ndarray) -> np.ndarray:
    """Return ``(n_features − 1) × (n_levels − 1)``, floored at 0.

    *n_levels* is the number of distinct levels of the tested factor
    (or, for general designs, one plus the rank difference between the
    full and null designs).
    """
    n_features = np.asarray(n_features)
    n_levels = np.asarray(n_levels)
    df = (n_features - 1) * (n_levels - 1)
    return np.maximum(df, 0).astype(int)


def _lrt_arrays(
    lik_full: float | np.ndarray,
    lik_null: float | np.ndarray,
    df: int | np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    lik_full_arr, lik_null_arr, df_arr = np.broadcast_arrays(
        np.atleast_1d(np.asarray(lik_full, dtype=float)),
        np.atleast_1d(np.asarray(lik_null, dtype=float)),
        np.atleast_1d(np.asarray(df)),
    )
    if np.any(df_arr < 0):
        raise ValueError("df must be non-negative.")

    defined = np.isfinite(lik_full_arr) & np.isfinite(lik_null_arr)
    lr = 2.0 * (lik_full_arr - lik_null_arr)
    with np.errstate(invalid="ignore"):
        lr = np.where(lr < 0, np.nan, lr)
        pvalue = np.where(np.isfinite(lr), chi2.sf(lr, np.maximum(df_arr, 1)), np.nan)
    pvalue = np.where((df_arr == 0) & defined, 1.0, pvalue)
    return lr, df_arr.astype(int), pvalue


def likelihood_ratio_test(
    lik_full: float | np.ndarray,
    lik_null: float | np.ndarray,
    df: int | np.ndarray,
) -> pd.DataFrame:
    """Compute LR statistics and raw χ² p-values.

    Vectorised: the three arguments broadcast against each other, so a
    single call handles all genes, all genotype blocks of one gene, or
    all features of a BB fit.

    Args:
        lik_full: Full-model log-likelihood(s).
        lik_null: Null-model log-likelihood(s).
        df: Degrees of freedom (integers ``>= 0``).

    Returns:
        ``DataFrame`` with columns ``lr``, ``df`` and ``pvalue``.

    Raises:
        ValueError: If any *df* is negative.
    """
    lr, df_arr, pvalue = _lrt_arrays(lik_full, lik_null, df)
    return pd.DataFrame({"lr": lr, "df": df_arr, "pvalue": pvalue})


def lrt_pvalue(lik_full: float, lik_null: float, df: int) -> float:
    """Scalar shortcut of :func:`likelihood_ratio_test` returning the p-value only."""
    return float(_lrt_arrays(lik_full, lik_null, df)[2][0])


__all__ = ["degrees_of_freedom", "likelihood_ratio_test", "lrt_pvalue"]
