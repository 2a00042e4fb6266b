"""Log-likelihood kernels for Dirichlet-multinomial and beta-binomial models.

Dirichlet-multinomial (DM)
--------------------------
For one gene with q features and n samples, let ``y[j, i]`` be the count
of feature j in sample i, ``m_i = Σ_j y[j, i]`` the sample total, ``π[j, i]``
the feature proportion and γ the precision.  Dropping the multinomial
coefficient (constant in the parameters), the log-likelihood is

    ℓ = Σ_i [ lnΓ(γ) − lnΓ(m_i + γ) + Σ_j ( lnΓ(y[j,i] + γπ[j,i]) − lnΓ(γπ[j,i]) ) ]

Regression enters through the multinomial-logit link with the last
feature as the reference category:

    η[j, i] = x_iᵀ β_j   (j < q),      η[q, i] = 0,
    π[·, i] = softmax(η[·, i]).

Score
-----
With ``g[j, i] = ∂ℓ/∂π[j, i] = γ (ψ(y[j,i] + γπ[j,i]) − ψ(γπ[j,i]))`` and the
softmax Jacobian ``∂π_k/∂η_j = π_k (δ_kj − π_j)``:

    ∂ℓ/∂η[j, i] = π[j, i] ( g[j, i] − Σ_k g[k, i] π[k, i] )
    ∂ℓ/∂β_j     = Σ_i ∂ℓ/∂η[j, i] · x_i

Beta-binomial (BB)
------------------
Each feature is scored against "all other features" with its own
marginal beta-binomial:

    ℓ_j = Σ_i [ lnΓ(γ) − lnΓ(m_i + γ)
                + lnΓ(y[j,i] + γπ[j,i]) − lnΓ(γπ[j,i])
                + lnΓ(m_i − y[j,i] + γ(1 − π[j,i])) − lnΓ(γ(1 − π[j,i])) ]

yielding one value per feature instead of a single scalar.
"""

from __future__ import annotations

import numpy as np
from scipy.special import digamma, gammaln


def dm_proportions(b: np.ndarray, design: np.ndarray) -> np.ndarray:
    """Return DM proportions ``(q, n)`` for a ``(q-1, p)`` coefficient block.

    Uses a max-shifted softmax so large linear predictors do not
    overflow.
    """
    eta = design @ b.T  # (n, q-1)
    eta = np.column_stack([eta, np.zeros(design.shape[0])])  # reference = 0
    eta -= eta.max(axis=1, keepdims=True)
    z = np.exp(eta)
    prop: np.ndarray = (z / z.sum(axis=1, keepdims=True)).T
    return prop


def dm_loglik(prop: np.ndarray, prec: float, y: np.ndarray) -> float:
    """DM log-likelihood of counts *y* ``(q, n)`` given proportions ``(q, n)``."""
    m = y.sum(axis=0)
    a = prec * prop
    with np.errstate(invalid="ignore", divide="ignore"):
        lik = np.sum(gammaln(prec) - gammaln(m + prec))
        lik += np.sum(gammaln(y + a) - gammaln(a))
    return float(lik)


def dm_loglik_regression(
    params: np.ndarray, design: np.ndarray, prec: float, y: np.ndarray
) -> float:
    """DM log-likelihood as a function of the flattened coefficient block.

    Args:
        params: Flattened ``(q-1, p)`` coefficient block (row-major, one
            row per non-reference feature).
        design: Design matrix ``(n, p)``.
        prec: Precision γ.
        y: Counts ``(q, n)``.
    """
    q = y.shape[0]
    b = np.asarray(params, dtype=float).reshape(q - 1, design.shape[1])
    return dm_loglik(dm_proportions(b, design), prec, y)


def dm_score_regression(
    params: np.ndarray, design: np.ndarray, prec: float, y: np.ndarray
) -> np.ndarray:
    """Analytic gradient of :func:`dm_loglik_regression`, same layout as *params*."""
    q = y.shape[0]
    b = np.asarray(params, dtype=float).reshape(q - 1, design.shape[1])
    prop = dm_proportions(b, design)  # (q, n)
    a = prec * prop
    with np.errstate(invalid="ignore", divide="ignore"):
        g = prec * (digamma(y + a) - digamma(a))  # ∂ℓ/∂π, (q, n)
    weighted = np.sum(g * prop, axis=0)  # (n,)
    d_eta = prop[:-1] * (g[:-1] - weighted)  # (q-1, n)
    score: np.ndarray = (d_eta @ design).ravel()  # (q-1, p) → flat
    return score


def bb_loglik(y: np.ndarray, prec: float, prop: np.ndarray) -> np.ndarray:
    """Per-feature BB log-likelihood.

    Args:
        y: Counts ``(n, q)`` — samples in rows.
        prec: Precision γ.
        prop: Fitted proportions ``(n, q)``.

    Returns:
        Array of shape ``(q,)``; ``nan`` where the proportions are
        undefined.
    """
    m = y.sum(axis=1, keepdims=True)
    a = prec * prop
    b = prec * (1.0 - prop)
    with np.errstate(invalid="ignore", divide="ignore"):
        lik = (
            gammaln(prec)
            - gammaln(m + prec)
            + gammaln(y + a)
            - gammaln(a)
            + gammaln(m - y + b)
            - gammaln(b)
        )
    out: np.ndarray = lik.sum(axis=0)
    return out


__all__ = [
    "bb_loglik",
    "dm_loglik",
    "dm_loglik_regression",
    "dm_proportions",
    "dm_score_regression",
]
