"""Public entry points: per-gene DM fits and DM likelihood-ratio tests.

Three functions are exported:

* :func:`dm_fit` — fit one DM regression per gene against the full or
  the null design.
* :func:`dm_test` — group-comparison test: full versus null design for
  every gene, optional permutation recalibration, BH correction and an
  optional beta-binomial feature-level test.
* :func:`dm_sqtl_test` — genotype (QTL) test: every genotype block of
  every gene against an intercept-only null.

All three follow the same pipeline::

    inputs ─► DMData ─► TestUnits ─► PermutationEngine (observed fits, LRT)
                                      └─► strategy.execute() (optional)
                                            └─► BH ─► TestResult

Undefined outcomes (degenerate genes, failed fits) never raise; they
surface as ``nan`` rows, which downstream consumers must read as "no
test performed".
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike
from ._optimizers import OptimizerProtocol, resolve_optimizer
from ._results import FitResult, TestResult
from ._strategies import resolve_strategy
from .design import DMData, TestUnit, design_rank_difference, genotype_units, group_units
from .engine import PermutationEngine, _parallel_map, _validate_options
from .lrt import likelihood_ratio_test
from .pvalues import bh_adjust
from .regression import DEFAULT_TOL, _resolve_initializer, bb_fit_regression, dm_fit_regression

logger = logging.getLogger(__name__)

PrecisionLike = Mapping[str, Any] | pd.Series | float | None


def _precision_by_gene(precision: PrecisionLike, gene_ids: list[str]) -> dict[str, Any]:
    """Normalise *precision* to a gene → value mapping.

    A scalar applies to every gene; genes missing from a mapping get
    ``None`` (undefined precision, reported as ``nan``).
    """
    if isinstance(precision, pd.Series):
        precision = precision.to_dict()
    if isinstance(precision, Mapping):
        lookup = {str(k): v for k, v in precision.items()}
        return {g: lookup.get(g) for g in gene_ids}
    return {g: precision for g in gene_ids}


def _check_permutation_mode(permutation_mode: str | None) -> None:
    # Fail on a typo before any model is fitted.
    if permutation_mode is not None:
        resolve_strategy(permutation_mode)


def _finalise(
    engine: PermutationEngine,
    ids: pd.DataFrame,
    *,
    permutation_mode: str | None,
    random_state: int | np.random.SeedSequence | None,
    max_cycles: int | None,
    max_sign: int | None,
) -> tuple[pd.DataFrame, Any]:
    """Assemble the results table: LRT, optional permutations, then BH."""
    table = pd.concat([ids.reset_index(drop=True), engine.lrt], axis=1)
    n_cycles = None
    if permutation_mode is not None:
        outcome = engine.run(
            permutation_mode,
            random_state=random_state,
            max_cycles=max_cycles,
            max_sign=max_sign,
        )
        table["pvalue_chisq"] = table["pvalue"]
        table["pvalue"] = outcome.pvalues
        n_cycles = outcome.n_cycles
    table["adj_pvalue"] = bh_adjust(table["pvalue"].to_numpy())
    return table, n_cycles


# ------------------------------------------------------------------ #
# dm_fit
# ------------------------------------------------------------------ #


def dm_fit(
    data: DMData,
    precision: PrecisionLike,
    *,
    design: str = "full",
    optimizer: str | OptimizerProtocol | None = None,
    tol: float = DEFAULT_TOL,
    initializer: str = "empirical_logit",
    n_jobs: int = 1,
    verbose: int = 0,
) -> dict[str, FitResult]:
    """Fit one DM regression per gene.

    Args:
        data: Input container with ``design_full`` / ``design_null``.
        precision: Per-gene precision (mapping or ``Series``) or one
            scalar for every gene.
        design: ``"full"`` or ``"null"``.
        optimizer: Optimizer name or instance (``None`` for the
            configured default).
        tol: Convergence tolerance.
        initializer: ``"empirical_logit"`` or ``"zeros"``.
        n_jobs: Worker threads; ``-1`` uses every core.
        verbose: 0 silent, 1 or 2 log per-gene progress at INFO.

    Returns:
        Gene id → :class:`FitResult`, in input order.

    Raises:
        ValueError: On an unknown *design*, optimizer or initializer,
            a non-positive *tol* or *verbose* outside 0–2.
    """
    _validate_options(tol, verbose)
    _resolve_initializer(initializer)
    if design not in ("full", "null"):
        raise ValueError(f"design must be 'full' or 'null', got {design!r}.")
    opt = resolve_optimizer(optimizer)
    units = group_units(data, _precision_by_gene(precision, data.gene_ids))

    def _fit_one(unit: TestUnit) -> FitResult:
        fit = dm_fit_regression(
            unit.counts(),
            unit.design_full if design == "full" else unit.design_null,
            unit.prec,
            optimizer=opt,
            tol=tol,
            initializer=initializer,
            feature_ids=unit.feature_ids,
        )
        if verbose >= 1:
            logger.info("%s: lik=%.4f", unit.gene_id, fit.lik)
        return fit

    fits = _parallel_map(_fit_one, units, n_jobs)
    return {u.gene_id: f for u, f in zip(units, fits)}


# ------------------------------------------------------------------ #
# dm_test
# ------------------------------------------------------------------ #


def _bb_feature_table(engine: PermutationEngine) -> pd.DataFrame:
    """Per-feature BB likelihood-ratio tests, BH-adjusted across all features."""
    frames = []
    for unit, full, null in zip(engine.units, engine.fit_full, engine.fit_null):
        y = unit.counts()
        bb_full = bb_fit_regression(y, unit.design_full, unit.prec, full.fit)
        bb_null = bb_fit_regression(y, unit.design_null, unit.prec, null.fit)
        df = design_rank_difference(unit.design_full, unit.design_null)
        lrt = likelihood_ratio_test(bb_full.lik, bb_null.lik, df)
        lrt.insert(0, "feature_id", unit.feature_ids)
        lrt.insert(0, "gene_id", unit.gene_id)
        frames.append(lrt)
    table = pd.concat(frames, ignore_index=True)
    table["adj_pvalue"] = bh_adjust(table["pvalue"].to_numpy())
    return table


def dm_test(
    counts: Mapping[str, DataFrameLike],
    design_full: DataFrameLike,
    design_null: DataFrameLike,
    precision: PrecisionLike,
    *,
    permutation_mode: str | None = None,
    bb_model: bool = False,
    optimizer: str | OptimizerProtocol | None = None,
    tol: float = DEFAULT_TOL,
    initializer: str = "empirical_logit",
    random_state: int | np.random.SeedSequence | None = None,
    max_cycles: int | None = None,
    max_sign: int | None = None,
    n_jobs: int = 1,
    verbose: int = 0,
) -> TestResult:
    """Test every gene for a change in feature proportions.

    For each gene the DM model is fitted against *design_full* and
    *design_null*; ``LR = 2(ℓ_full − ℓ_null)`` is referred to a χ²
    distribution with ``(q − 1) × (rank(full) − rank(null))`` degrees of
    freedom.  With a *permutation_mode* the χ² p-values are recalibrated
    empirically before the BH correction.

    Args:
        counts: Gene id → counts (features × samples); every gene must
            have the same sample columns.
        design_full: Full design (samples × covariates).
        design_null: Null design, nested in *design_full*.
        precision: Per-gene precision (mapping or ``Series``) or one
            scalar for every gene; missing / non-positive / ``nan``
            values make the gene untestable.
        permutation_mode: ``None`` (χ² only), ``"all_genes"`` or
            ``"per_gene"``.
        bb_model: Also run the beta-binomial feature-level test.
        optimizer: Optimizer name or instance.
        tol: Convergence tolerance.
        initializer: ``"empirical_logit"`` or ``"zeros"``.
        random_state: Seed for the permutations.
        max_cycles: Permutation cycle cap (default 10 pooled, 10⁶
            per gene).
        max_sign: Early-stopping count (default 1000 pooled, 100
            per gene).
        n_jobs: Worker threads; ``-1`` uses every core.
        verbose: 0 silent, 1 per-gene / per-stage progress, 2 also
            per-permutation detail (logged at INFO).

    Returns:
        :class:`TestResult` whose ``results`` table has one row per gene
        with ``gene_id, lr, df, pvalue, adj_pvalue`` (plus
        ``pvalue_chisq`` when permutations were run).

    Raises:
        ValueError: On inconsistent inputs or unknown option names.
        TypeError: If an input table has an unsupported type.
    """
    _check_permutation_mode(permutation_mode)
    data = DMData.from_inputs(counts, design_full=design_full, design_null=design_null)
    units = group_units(data, _precision_by_gene(precision, data.gene_ids))

    engine = PermutationEngine(
        units,
        optimizer=optimizer,
        tol=tol,
        initializer=initializer,
        n_jobs=n_jobs,
        verbose=verbose,
    )
    ids = pd.DataFrame({"gene_id": [u.gene_id for u in units]})
    table, n_cycles = _finalise(
        engine,
        ids,
        permutation_mode=permutation_mode,
        random_state=random_state,
        max_cycles=max_cycles,
        max_sign=max_sign,
    )

    return TestResult(
        results=table,
        lik_full={u.gene_id: f.lik for u, f in zip(units, engine.fit_full)},
        lik_null={u.gene_id: f.lik for u, f in zip(units, engine.fit_null)},
        permutation_mode=permutation_mode,
        optimizer=engine.optimizer_name,
        n_permutation_cycles=n_cycles,
        results_feature=_bb_feature_table(engine) if bb_model else None,
        fit_full={u.gene_id: f for u, f in zip(units, engine.fit_full)},
        data=data,
    )


# ------------------------------------------------------------------ #
# dm_sqtl_test
# ------------------------------------------------------------------ #


def dm_sqtl_test(
    counts: Mapping[str, DataFrameLike],
    genotypes: Mapping[str, DataFrameLike],
    precision: PrecisionLike,
    *,
    permutation_mode: str | None = "all_genes",
    optimizer: str | OptimizerProtocol | None = None,
    tol: float = DEFAULT_TOL,
    initializer: str = "empirical_logit",
    random_state: int | np.random.SeedSequence | None = None,
    max_cycles: int | None = None,
    max_sign: int | None = None,
    n_jobs: int = 1,
    verbose: int = 0,
) -> TestResult:
    """Test every genotype block of every gene for an effect on proportions.

    Each block is tested on the samples with a genotype call: the full
    model is the one-way design of the genotype groups, the null model
    is intercept only, and ``df = (q − 1) × (distinct genotypes − 1)``.

    Args:
        counts: Gene id → counts (features × samples).
        genotypes: Gene id → genotypes (blocks × samples); ``nan`` marks
            a missing call.
        precision: Per-gene precision or one scalar.
        permutation_mode: ``"all_genes"`` (default), ``"per_gene"`` or
            ``None``.
        optimizer: Optimizer name or instance.
        tol: Convergence tolerance.
        initializer: ``"empirical_logit"`` or ``"zeros"``.
        random_state: Seed for the permutations.
        max_cycles: Permutation cycle cap.
        max_sign: Early-stopping count.
        n_jobs: Worker threads; ``-1`` uses every core.
        verbose: 0, 1 or 2.

    Returns:
        :class:`TestResult` with one row per gene/block
        (``gene_id, block_id, lr, df, pvalue, adj_pvalue``).  Per-gene
        likelihoods are arrays over the gene's blocks.
    """
    _check_permutation_mode(permutation_mode)
    data = DMData.from_inputs(counts, genotypes=genotypes)
    units = genotype_units(data, _precision_by_gene(precision, data.gene_ids))

    engine = PermutationEngine(
        units,
        optimizer=optimizer,
        tol=tol,
        initializer=initializer,
        n_jobs=n_jobs,
        verbose=verbose,
    )
    ids = pd.DataFrame(
        {
            "gene_id": [u.gene_id for u in units],
            "block_id": [u.block_id for u in units],
        }
    )
    table, n_cycles = _finalise(
        engine,
        ids,
        permutation_mode=permutation_mode,
        random_state=random_state,
        max_cycles=max_cycles,
        max_sign=max_sign,
    )

    lik_full: dict[str, list[float]] = {g: [] for g in data.gene_ids}
    lik_null: dict[str, list[float]] = {g: [] for g in data.gene_ids}
    fit_full: dict[str, list[FitResult]] = {g: [] for g in data.gene_ids}
    for unit, full, null in zip(units, engine.fit_full, engine.fit_null):
        lik_full[unit.gene_id].append(full.lik)
        lik_null[unit.gene_id].append(null.lik)
        fit_full[unit.gene_id].append(full)

    return TestResult(
        results=table,
        lik_full={g: np.array(v, dtype=float) for g, v in lik_full.items()},
        lik_null={g: np.array(v, dtype=float) for g, v in lik_null.items()},
        permutation_mode=permutation_mode,
        optimizer=engine.optimizer_name,
        n_permutation_cycles=n_cycles,
        fit_full=fit_full,
        data=data,
    )


__all__ = ["dm_fit", "dm_sqtl_test", "dm_test"]
