"""Dirichlet-multinomial and beta-binomial regression fits for one gene.

Two fits share one output shape, :class:`~dmtest._results.FitResult`
``(b, lik, fit)``:

* :func:`dm_fit_regression` maximises the DM log-likelihood over the
  multinomial-logit coefficients with a pluggable optimizer
  (see :mod:`dmtest._optimizers`).  The last feature is the reference
  category; its coefficient row is fixed at exactly zero.

* :func:`bb_fit_regression` runs no optimizer.  Given proportions
  already fitted by the DM model it evaluates the per-feature BB
  log-likelihood in closed form and re-estimates per-feature logit
  coefficients by one pseudoinverse multiply over the distinct design
  rows (each distinct covariate pattern carries exactly one fitted
  proportion, so the regression is exact).

Degenerate genes (fewer than two features, or an undefined precision)
and optimizer failures are never raised: they produce a ``nan``-filled
result of the correct shape so that batch processing of the other
genes continues.

Rank-deficient designs are solved through :func:`numpy.linalg.pinv`,
which returns the minimum-norm solution; coefficients are then not
unique but proportions and likelihoods are.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import numpy as np

from ._optimizers import OptimizerProtocol, resolve_optimizer
from ._results import FitResult
from .likelihoods import bb_loglik, dm_loglik_regression, dm_proportions, dm_score_regression

logger = logging.getLogger(__name__)

DEFAULT_TOL = 1e-12

# ------------------------------------------------------------------ #
# Initializers
# ------------------------------------------------------------------ #
#
# Both return the flattened (q-1, p) starting block.
#
# "empirical_logit": add a pseudocount of 1 so that zero counts do not
# give ±inf logits, normalise each sample to proportions, take the log
# ratio against the reference (last) feature and regress it on the
# design.  "zeros": start from equal proportions.


def _init_empirical_logit(y: np.ndarray, design: np.ndarray) -> np.ndarray:
    yt = y.T + 1.0  # (n, q)
    prop = yt / yt.sum(axis=1, keepdims=True)
    logit_prop = np.log(prop[:, :-1] / prop[:, -1:])  # (n, q-1)
    b_init: np.ndarray = (np.linalg.pinv(design) @ logit_prop).T.ravel()
    return b_init


def _init_zeros(y: np.ndarray, design: np.ndarray) -> np.ndarray:
    return np.zeros((y.shape[0] - 1) * design.shape[1])


_INITIALIZERS: dict[str, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    "empirical_logit": _init_empirical_logit,
    "zeros": _init_zeros,
}


def _resolve_initializer(name: str) -> Callable[[np.ndarray, np.ndarray], np.ndarray]:
    init = _INITIALIZERS.get(name)
    if init is None:
        valid = ", ".join(sorted(_INITIALIZERS))
        raise ValueError(f"Unknown initializer {name!r}. Choose from: {valid}.")
    return init


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def is_undefined(prec: float | None) -> bool:
    """Return ``True`` if the precision is missing, non-finite or non-positive."""
    if prec is None:
        return True
    try:
        value = float(prec)
    except (TypeError, ValueError):
        return True
    return not (np.isfinite(value) and value > 0)


def _nan_fit(q: int, p: int, n: int, lik: Any, feature_ids: list[Any] | None) -> FitResult:
    return FitResult(
        b=np.full((q, p), np.nan),
        lik=lik,
        fit=np.full((q, n), np.nan),
        feature_ids=feature_ids,
    )


def fitted_proportions(b: np.ndarray, design: np.ndarray) -> np.ndarray:
    """Fitted DM proportions ``(q, n)`` for a full ``(q, p)`` coefficient matrix.

    Non-reference features get ``exp(η_j) / (1 + Σ exp(η))``; the
    reference feature gets ``1 − Σ`` of the others.
    """
    prop = dm_proportions(b[:-1], design)
    prop[-1] = 1.0 - prop[:-1].sum(axis=0)
    return prop


# ------------------------------------------------------------------ #
# DM regression
# ------------------------------------------------------------------ #


def dm_fit_regression(
    y: np.ndarray,
    design: np.ndarray,
    prec: float | None,
    *,
    optimizer: str | OptimizerProtocol | None = None,
    tol: float = DEFAULT_TOL,
    initializer: str = "empirical_logit",
    feature_ids: list[Any] | None = None,
) -> FitResult:
    """Fit a Dirichlet-multinomial regression for one gene.

    Args:
        y: Counts ``(q, n)``; no all-zero feature row.
        design: Design matrix ``(n, p)``.
        prec: Precision; ``None`` / ``nan`` marks the gene as degenerate.
        optimizer: Optimizer name or instance; ``None`` uses the
            configured default (:func:`~dmtest.get_optimizer`).
        tol: Convergence tolerance forwarded to the optimizer.
        initializer: ``"empirical_logit"`` or ``"zeros"``.
        feature_ids: Optional row labels carried on the result.

    Returns:
        :class:`FitResult` with ``b`` ``(q, p)``, scalar ``lik`` and
        ``fit`` ``(q, n)``.  All ``nan`` on degenerate input or
        non-convergence.

    Raises:
        ValueError: On an unknown optimizer / initializer name or a
            non-positive tolerance.
    """
    if not tol > 0:
        raise ValueError(f"tol must be positive, got {tol!r}.")
    init = _resolve_initializer(initializer)
    opt = resolve_optimizer(optimizer)

    y = np.asarray(y, dtype=float)
    design = np.asarray(design, dtype=float)
    q, n = y.shape
    p = design.shape[1]

    if q < 2 or is_undefined(prec):
        return _nan_fit(q, p, n, float("nan"), feature_ids)
    prec = float(prec)  # type: ignore[arg-type]

    b_init = init(y, design)
    res = opt.optimize(
        lambda b: dm_loglik_regression(b, design, prec, y),
        lambda b: dm_score_regression(b, design, prec, y),
        b_init,
        tol=tol,
    )

    if not res.converged:
        logger.debug("DM fit did not converge (optimizer=%s, q=%d, n=%d)", opt.name, q, n)
        return _nan_fit(q, p, n, float("nan"), feature_ids)

    lik = res.objective_value if opt.maximize else -res.objective_value
    b = np.vstack([np.reshape(res.parameters, (q - 1, p)), np.zeros(p)])
    prop = fitted_proportions(b, design)

    return FitResult(b=b, lik=lik, fit=prop, feature_ids=feature_ids)


# ------------------------------------------------------------------ #
# BB regression
# ------------------------------------------------------------------ #


def bb_fit_regression(
    y: np.ndarray,
    design: np.ndarray,
    prec: float | None,
    fit: np.ndarray,
    *,
    feature_ids: list[Any] | None = None,
) -> FitResult:
    """Recompute beta-binomial statistics from DM-fitted proportions.

    Args:
        y: Counts ``(q, n)``.
        design: Design matrix ``(n, p)``.
        prec: Precision; ``None`` / ``nan`` marks the gene as degenerate.
        fit: DM-fitted proportions ``(q, n)``.
        feature_ids: Optional row labels carried on the result.

    Returns:
        :class:`FitResult` with per-feature logit coefficients ``(q, p)``,
        per-feature log-likelihoods ``(q,)`` and *fit* unchanged.
    """
    y = np.asarray(y, dtype=float)
    design = np.asarray(design, dtype=float)
    q, n = y.shape
    p = design.shape[1]

    if q < 2 or is_undefined(prec):
        return _nan_fit(q, p, n, np.full(q, np.nan), feature_ids)
    prec = float(prec)  # type: ignore[arg-type]

    prop = np.asarray(fit, dtype=float).T  # (n, q)
    lik = bb_loglik(y.T, prec, prop)

    # First occurrence of every distinct design row, in sample order.
    _, first = np.unique(design, axis=0, return_index=True)
    first = np.sort(first)
    with np.errstate(divide="ignore", invalid="ignore"):
        logit_prop = np.log(prop[first] / (1.0 - prop[first]))
    b = (np.linalg.pinv(design[first]) @ logit_prop).T  # (q, p)

    return FitResult(b=b, lik=lik, fit=fit, feature_ids=feature_ids)


__all__ = [
    "DEFAULT_TOL",
    "bb_fit_regression",
    "dm_fit_regression",
    "fitted_proportions",
    "is_undefined",
]
