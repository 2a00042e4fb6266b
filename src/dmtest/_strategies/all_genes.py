"""Pooled permutation across all genes.

Each cycle draws one sample permutation, relabels the count columns of
*every* gene with it, refits the full and null models and adds one
null p-value per gene to a single pooled null distribution.  With G
genes and B cycles the pool holds about G·B values, so a handful of
cycles is enough for a fine-grained empirical distribution.

Cycles stop early once the pool holds ``max_sign`` null p-values at
least as small as the smallest observed p-value: from then on every
gene's empirical p-value is resolved well enough.

All cycle permutations are pre-generated from one generator seeded by
``random_state``, so the result does not depend on ``n_jobs``.
Genes whose observed p-value is ``nan`` (failed or degenerate fits)
are not permuted and keep ``nan``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from .._state import PermutationState
from ..permutations import generate_unique_permutations
from ..pvalues import pooled_empirical_pvalues
from . import PermutationOutcome

if TYPE_CHECKING:
    from ..engine import PermutationEngine

logger = logging.getLogger(__name__)


class AllGenesStrategy:
    """Pooled null distribution shared by every gene."""

    name: str = "all_genes"
    default_max_cycles: int = 10
    default_max_sign: int = 1_000

    def execute(
        self,
        engine: PermutationEngine,
        *,
        random_state: int | np.random.SeedSequence | None = None,
        max_cycles: int | None = None,
        max_sign: int | None = None,
    ) -> PermutationOutcome:
        """Run pooled permutation cycles.

        Args:
            engine: Engine with observed fits.
            random_state: Seed for the cycle permutations.
            max_cycles: Maximum number of cycles (default 10).
            max_sign: Stop once this many pooled null p-values are
                ``<=`` the smallest observed p-value (default 1000).

        Returns:
            Add-one empirical p-values against the pooled null.
        """
        max_cycles = self.default_max_cycles if max_cycles is None else max_cycles
        max_sign = self.default_max_sign if max_sign is None else max_sign

        observed = engine.pvalues
        active = np.flatnonzero(np.isfinite(observed))
        if active.size == 0:
            return PermutationOutcome(pvalues=np.full(observed.shape, np.nan), n_cycles=0)

        rng = np.random.default_rng(random_state)
        perms = generate_unique_permutations(rng, engine.n_samples, max_cycles)

        threshold = float(observed[active].min())
        state = PermutationState(max_cycles=len(perms), max_sign=max_sign)
        pool: list[np.ndarray] = []

        for perm in perms:
            if state.done:
                break
            null_p = engine.null_pvalues(perm, active)
            pool.append(null_p)
            state.update(null_p, threshold)
            if engine.verbose >= 2:
                logger.info(
                    "Pooled cycle %d: %d null p-values, %d <= %.3g so far",
                    state.n_cycles,
                    state.n_null,
                    state.n_sign,
                    threshold,
                )

        if engine.verbose >= 1:
            logger.info(
                "Pooled permutations finished after %d cycle(s) (%d null p-values)",
                state.n_cycles,
                state.n_null,
            )

        if state.n_null == 0:
            # No permuted refit succeeded: there is no null to compare with.
            return PermutationOutcome(
                pvalues=np.full(observed.shape, np.nan), n_cycles=state.n_cycles
            )
        return PermutationOutcome(
            pvalues=pooled_empirical_pvalues(observed, np.concatenate(pool)),
            n_cycles=state.n_cycles,
        )
