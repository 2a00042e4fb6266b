"""Adaptive permutation for each gene on its own.

Every test unit runs an independent loop: draw a sample permutation,
refit the full and null models, compare the null p-value with the
unit's observed one.  The loop stops after ``max_sign`` null p-values
at least as small as the observed one (the estimate is then precise
enough) or after ``max_cycles`` cycles.  The empirical p-value is

    (n_sign + 1) / (n_null + 1)

where failed permutation fits do not count towards ``n_null``.  A unit
whose permuted refits all fail reports ``nan``; a run of 1000
consecutive failures ends its loop early.

Strongly significant genes hit the cycle cap, so this mode can cost up
to ``max_cycles`` refits per gene; it is meant for small gene sets.
Each unit draws from its own child generator
(:func:`~dmtest.permutations.spawn_generators`), so results are the
same whatever ``n_jobs`` is.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING

import numpy as np

from .._state import PermutationState
from ..permutations import draw_permutation, spawn_generators
from . import PermutationOutcome

if TYPE_CHECKING:
    from ..engine import PermutationEngine

logger = logging.getLogger(__name__)

# Above this many test units a pooled run is almost always the better choice.
_MANY_UNITS = 1_000


class PerGeneStrategy:
    """Separate adaptive null distribution for every gene."""

    name: str = "per_gene"
    default_max_cycles: int = 1_000_000
    default_max_sign: int = 100

    def execute(
        self,
        engine: PermutationEngine,
        *,
        random_state: int | np.random.SeedSequence | None = None,
        max_cycles: int | None = None,
        max_sign: int | None = None,
    ) -> PermutationOutcome:
        """Run one adaptive loop per test unit.

        Args:
            engine: Engine with observed fits.
            random_state: Seed partitioned into one stream per unit.
            max_cycles: Per-unit cycle cap (default 10⁶).
            max_sign: Per-unit early-stopping count (default 100).

        Returns:
            Per-unit empirical p-values and cycle counts.
        """
        max_cycles = self.default_max_cycles if max_cycles is None else max_cycles
        max_sign = self.default_max_sign if max_sign is None else max_sign

        n_units = len(engine.units)
        if n_units > _MANY_UNITS:
            warnings.warn(
                f"permutation_mode='per_gene' with {n_units} tests may be very "
                "slow; consider permutation_mode='all_genes'.",
                UserWarning,
                stacklevel=4,
            )

        observed = engine.pvalues
        generators = spawn_generators(random_state, n_units)

        def _run_one(i: int) -> tuple[float, int]:
            if not np.isfinite(observed[i]) or engine.n_samples < 2:
                return float("nan"), 0
            rng = generators[i]
            state = PermutationState(max_cycles=max_cycles, max_sign=max_sign)
            while not state.done:
                perm = draw_permutation(rng, engine.n_samples)
                state.update(np.array([engine.null_pvalue(i, perm)]), observed[i])
            if engine.verbose >= 2:
                logger.info(
                    "%s: %d cycle(s), %d of %d null p-values <= %.3g",
                    engine.unit_label(i),
                    state.n_cycles,
                    state.n_sign,
                    state.n_null,
                    observed[i],
                )
            return state.empirical_pvalue(), state.n_cycles

        outcomes = engine.map(_run_one, range(n_units))
        pvalues = np.array([p for p, _ in outcomes], dtype=float)
        n_cycles = np.array([c for _, c in outcomes], dtype=int)

        if engine.verbose >= 1:
            logger.info(
                "Per-gene permutations finished (%d cycle(s) in total)", int(n_cycles.sum())
            )

        return PermutationOutcome(pvalues=pvalues, n_cycles=n_cycles)
