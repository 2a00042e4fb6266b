"""Permutation state — mutable accumulator for adaptive stopping.

A :class:`PermutationState` is owned by exactly one strategy run (the
pooled run, or one gene in per-gene mode).  It counts the cycles
executed and the null statistics that were at least as extreme as the
observed one, and answers the single question the permutation loops
ask on every iteration: *stop now?*

Lifecycle::

    state = PermutationState(max_cycles=..., max_sign=...)
    while not state.done:
        null_p = ...one permutation cycle...
        state.update(null_p, observed_p)
    p_adj = state.empirical_pvalue()

The state never leaves the strategy that created it; the values it
produces are copied into the immutable results table.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class PermutationState:
    """Running counters of one adaptive permutation run."""

    max_cycles: int
    """Cycle cap."""

    max_sign: int
    """Stop once this many null p-values reach the observed one."""

    n_cycles: int = 0
    """Permutation cycles executed so far."""

    n_null: int = 0
    """Finite null p-values collected so far."""

    n_sign: int = 0
    """Null p-values ``<=`` the observed p-value so far."""

    max_failed: int = 1_000
    """Stop after this many consecutive cycles without a finite null p-value."""

    n_failed: int = 0
    """Current run of consecutive cycles without a finite null p-value."""

    @property
    def done(self) -> bool:
        return (
            self.n_cycles >= self.max_cycles
            or self.n_sign >= self.max_sign
            or self.n_failed >= self.max_failed
        )

    def update(self, null_pvalues: np.ndarray, threshold: float) -> None:
        """Account for one cycle's null p-values against *threshold*."""
        null_pvalues = np.asarray(null_pvalues, dtype=float)
        finite = null_pvalues[np.isfinite(null_pvalues)]
        self.n_cycles += 1
        self.n_null += finite.size
        self.n_sign += int(np.sum(finite <= threshold))
        self.n_failed = 0 if finite.size else self.n_failed + 1

    def empirical_pvalue(self) -> float:
        """Add-one empirical p-value ``(n_sign + 1) / (n_null + 1)``.

        ``nan`` when no permuted refit produced a defined p-value.
        """
        if self.n_null == 0:
            return float("nan")
        return (self.n_sign + 1) / (self.n_null + 1)


__all__ = ["PermutationState"]
