"""Empirical p-values and Benjamini–Hochberg adjustment.

Empirical p-values — add-one correction
---------------------------------------
Counting the fraction of null p-values at least as small as the observed
one,

    p_naïve = #{p*_b <= p} / B,

can return exactly zero when the observed p-value is more extreme than
every null draw.  Treating the observed statistic as one member of the
reference set gives

    p = (#{p*_b <= p} + 1) / (B + 1),

which is never zero (minimum 1/(B+1)) and keeps the test valid
(Phipson & Smyth, 2010).  Because the count is a non-decreasing
function of p, a smaller raw p-value can never receive a larger
empirical p-value than a larger raw p-value from the same null pool.

Undefined (``nan``) values
--------------------------
Genes whose full or null fit failed carry ``nan`` raw p-values.  They
are never counted in a null pool, receive ``nan`` empirical p-values,
and are excluded from the BH ranking, so they do not inflate the
number of tests for the others.

Reference:
    Phipson, B. & Smyth, G. K. (2010). Permutation p-values should
    never be zero: calculating exact p-values when permutations are
    randomly drawn. *Statistical Applications in Genetics and Molecular
    Biology*, 9(1), Article 39.
"""

from __future__ import annotations

import numpy as np
from statsmodels.stats.multitest import multipletests


def pooled_empirical_pvalues(pvalues: np.ndarray, null_pvalues: np.ndarray) -> np.ndarray:
    """Add-one empirical p-values against one pooled null distribution.

    Args:
        pvalues: Observed raw p-values, any shape; ``nan`` allowed.
        null_pvalues: Pooled null p-values, any shape; non-finite
            entries are dropped.

    Returns:
        Array with the shape of *pvalues*.
    """
    pvalues = np.asarray(pvalues, dtype=float)
    null = np.asarray(null_pvalues, dtype=float).ravel()
    null = np.sort(null[np.isfinite(null)])

    # side="right" counts every null value <= p.
    counts = np.searchsorted(null, np.nan_to_num(pvalues, nan=0.0), side="right")
    adjusted = (counts + 1) / (null.size + 1)
    return np.where(np.isfinite(pvalues), adjusted, np.nan)


def bh_adjust(pvalues: np.ndarray) -> np.ndarray:
    """Benjamini–Hochberg adjustment over the finite entries of *pvalues*.

    ``nan`` entries are returned as ``nan`` and do not count towards the
    number of tests.
    """
    pvalues = np.asarray(pvalues, dtype=float)
    flat = pvalues.ravel()
    out = np.full(flat.shape, np.nan)
    finite = np.isfinite(flat)
    if finite.any():
        _, adjusted, _, _ = multipletests(flat[finite], method="fdr_bh")
        out[finite] = np.minimum(adjusted, 1.0)
    return out.reshape(pvalues.shape)


__all__ = ["bh_adjust", "pooled_empirical_pvalues"]
