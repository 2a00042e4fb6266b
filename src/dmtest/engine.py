"""Permutation engine: observed fits, LRT and the shared refit primitives.

The :class:`PermutationEngine` centralises everything that happens
*before* a permutation strategy executes:

1. **Validation**: tolerance, verbosity, initializer and optimizer
   names are checked eagerly so that a typo fails before any fit.
2. **Optimizer resolution**: an explicit ``optimizer=`` argument wins
   over :func:`~dmtest.set_optimizer` / ``DMTEST_OPTIMIZER``.
3. **Observed fits**: full and null DM models for every test unit,
   spread over a ``joblib`` thread pool.
4. **LRT**: raw χ² p-values for every unit.

It then exposes the two primitives every strategy consumes:
:meth:`null_pvalue` (refit one unit under one sample permutation) and
:meth:`null_pvalues` (the same for many units, in parallel).

Failed fits never raise.  A unit whose full or null fit failed carries
``nan`` through the LRT, is skipped by the strategies and keeps
``nan`` in every later column.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ._optimizers import OptimizerProtocol, resolve_optimizer
from ._results import FitResult
from ._strategies import PermutationOutcome, resolve_strategy
from .design import TestUnit
from .lrt import likelihood_ratio_test, lrt_pvalue
from .regression import DEFAULT_TOL, _resolve_initializer, dm_fit_regression

logger = logging.getLogger(__name__)

_T = TypeVar("_T")
_R = TypeVar("_R")


def _parallel_map(func: Callable[[_T], _R], items: Iterable[_T], n_jobs: int) -> list[_R]:
    """Apply *func* to every item, in order, over a joblib thread pool.

    ``n_jobs=1`` runs sequentially without joblib overhead.  Threads are
    used because the objective functions spend their time in NumPy /
    SciPy kernels, and they avoid pickling the work for every task.
    """
    if n_jobs == 1:
        return [func(item) for item in items]
    return list(
        Parallel(n_jobs=n_jobs, prefer="threads")(delayed(func)(item) for item in items)
    )


def _validate_options(tol: float, verbose: int) -> None:
    if not tol > 0:
        raise ValueError(f"tol must be positive, got {tol!r}.")
    if verbose not in (0, 1, 2):
        raise ValueError(f"verbose must be 0, 1 or 2, got {verbose!r}.")


class PermutationEngine:
    """Builder that fits the observed models and serves permutation refits.

    The engine is immutable after construction: it captures the
    resolved optimizer and the observed fits.

    Attributes:
        units: The resolved test units, in output order.
        fit_full: Observed full-model fits, aligned with ``units``.
        fit_null: Observed null-model fits, aligned with ``units``.
        lrt: ``DataFrame`` with ``lr``, ``df`` and ``pvalue`` per unit.
        pvalues: Raw p-values as an array (``lrt["pvalue"]``).
        optimizer_name: Name of the resolved optimizer.
    """

    def __init__(
        self,
        units: Sequence[TestUnit],
        *,
        optimizer: str | OptimizerProtocol | None = None,
        tol: float = DEFAULT_TOL,
        initializer: str = "empirical_logit",
        n_jobs: int = 1,
        verbose: int = 0,
    ) -> None:
        _validate_options(tol, verbose)
        _resolve_initializer(initializer)

        self.units: list[TestUnit] = list(units)
        self._optimizer = resolve_optimizer(optimizer)
        self.optimizer_name: str = self._optimizer.name
        self._tol = tol
        self._initializer = initializer
        self.verbose = verbose
        self.n_samples: int = self.units[0].y.shape[1] if self.units else 0

        self.n_jobs = n_jobs
        if n_jobs != 1 and len(self.units) < 2:
            warnings.warn(
                "n_jobs has no effect with a single test because work is "
                "parallelised over genes.  Falling back to n_jobs=1.",
                UserWarning,
                stacklevel=3,
            )
            self.n_jobs = 1

        # ---- Observed fits -------------------------------------------
        if self.verbose >= 1:
            logger.info(
                "Fitting full and null models for %d test(s) with optimizer=%s",
                len(self.units),
                self.optimizer_name,
            )
        fits = self.map(self._fit_observed, range(len(self.units)))
        self.fit_full: list[FitResult] = [full for full, _ in fits]
        self.fit_null: list[FitResult] = [null for _, null in fits]

        # ---- LRT -----------------------------------------------------
        self.lrt: pd.DataFrame = likelihood_ratio_test(
            self.lik_full,
            self.lik_null,
            np.array([u.df for u in self.units], dtype=int),
        )
        self.pvalues: np.ndarray = self.lrt["pvalue"].to_numpy()

        n_failed = int(np.sum(~np.isfinite(self.pvalues)))
        if n_failed:
            logger.debug("%d of %d test(s) have undefined p-values", n_failed, len(self.units))

    # ---- Properties --------------------------------------------------

    @property
    def lik_full(self) -> np.ndarray:
        return np.array([f.lik for f in self.fit_full], dtype=float)

    @property
    def lik_null(self) -> np.ndarray:
        return np.array([f.lik for f in self.fit_null], dtype=float)

    def unit_label(self, index: int) -> str:
        unit = self.units[index]
        if unit.block_id is None:
            return str(unit.gene_id)
        return f"{unit.gene_id}/{unit.block_id}"

    # ---- Worker pool -------------------------------------------------

    def map(self, func: Callable[[_T], _R], items: Iterable[_T]) -> list[_R]:
        """Apply *func* to every item, in order, over the worker pool."""
        return _parallel_map(func, items, self.n_jobs)

    # ---- Fitting primitives -----------------------------------------

    def _fit(self, y: np.ndarray, design: np.ndarray, unit: TestUnit) -> FitResult:
        return dm_fit_regression(
            y,
            design,
            unit.prec,
            optimizer=self._optimizer,
            tol=self._tol,
            initializer=self._initializer,
            feature_ids=unit.feature_ids,
        )

    def _fit_observed(self, index: int) -> tuple[FitResult, FitResult]:
        unit = self.units[index]
        y = unit.counts()
        full = self._fit(y, unit.design_full, unit)
        null = self._fit(y, unit.design_null, unit)
        if self.verbose >= 1:
            logger.info(
                "%s: lik_full=%.4f lik_null=%.4f", self.unit_label(index), full.lik, null.lik
            )
        return full, null

    def null_pvalue(self, index: int, perm: np.ndarray) -> float:
        """Raw p-value of unit *index* after relabelling samples by *perm*.

        The null model is reused from the observed fit when relabelling
        cannot change it (every row of the null design is identical and
        no samples are masked).
        """
        unit = self.units[index]
        y = unit.counts(perm)
        lik_full = self._fit(y, unit.design_full, unit).lik
        if unit.null_is_permutation_invariant:
            lik_null = self.fit_null[index].lik
        else:
            lik_null = self._fit(y, unit.design_null, unit).lik
        return lrt_pvalue(float(lik_full), float(lik_null), unit.df)

    def null_pvalues(self, perm: np.ndarray, indices: Sequence[int] | np.ndarray) -> np.ndarray:
        """Raw p-values of the units *indices* under one shared permutation."""
        return np.array(
            self.map(lambda i: self.null_pvalue(int(i), perm), indices), dtype=float
        )

    # ---- Strategy dispatch ------------------------------------------

    def run(
        self,
        permutation_mode: str,
        *,
        random_state: int | np.random.SeedSequence | None = None,
        max_cycles: int | None = None,
        max_sign: int | None = None,
    ) -> PermutationOutcome:
        """Execute the permutation strategy named by *permutation_mode*.

        Raises:
            ValueError: If *permutation_mode* is not recognised.
        """
        strategy = resolve_strategy(permutation_mode)
        if self.verbose >= 1:
            logger.info("Running %s permutations", strategy.name)
        return strategy.execute(
            self,
            random_state=random_state,
            max_cycles=max_cycles,
            max_sign=max_sign,
        )


__all__ = ["PermutationEngine"]
