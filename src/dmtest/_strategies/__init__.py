"""Permutation strategy registry and protocol.

Each strategy encapsulates one way of recalibrating the raw χ²
p-values by permutation and exposes a uniform ``execute()`` interface
that :meth:`~dmtest.engine.PermutationEngine.run` calls after the
observed full and null models are fitted.

Two strategies exist:

* ``"all_genes"`` — one sample permutation per cycle is applied to
  every gene; all null p-values go into a single pooled null
  distribution.  Few cycles suffice because each contributes one null
  p-value per gene.
* ``"per_gene"`` — each gene runs its own adaptive loop and is compared
  only against its own null p-values.  Intended for small gene sets.

Both return a :class:`PermutationOutcome`.

Adding a new strategy
~~~~~~~~~~~~~~~~~~~~~
1. Create a module under ``_strategies/`` with a class that satisfies
   the :class:`PermutationStrategy` protocol.
2. Register it in the :data:`_STRATEGY_REGISTRY` mapping below.
3. :func:`~dmtest.core.dm_test` and :func:`~dmtest.core.dm_sqtl_test`
   will accept its name as ``permutation_mode``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from ..engine import PermutationEngine


@dataclass(frozen=True)
class PermutationOutcome:
    """Permutation-adjusted p-values plus bookkeeping."""

    pvalues: np.ndarray
    """Empirical p-values, one per test unit (``nan`` where undefined)."""

    n_cycles: int | np.ndarray
    """Cycles run: one ``int`` (pooled) or one per unit (per-gene)."""


# ------------------------------------------------------------------ #
# Strategy protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class PermutationStrategy(Protocol):
    """Interface that every permutation strategy must satisfy.

    Attributes:
        name: The ``permutation_mode`` string this strategy answers to.
        default_max_cycles: Cycle cap used when the caller passes none.
        default_max_sign: Early-stopping count used when the caller
            passes none.
    """

    name: str
    default_max_cycles: int
    default_max_sign: int

    def execute(
        self,
        engine: PermutationEngine,
        *,
        random_state: int | np.random.SeedSequence | None = None,
        max_cycles: int | None = None,
        max_sign: int | None = None,
    ) -> PermutationOutcome:
        """Run the permutation loop against *engine*'s observed fits.

        Args:
            engine: Engine holding the test units, observed p-values
                and the refit primitives.
            random_state: Seed for reproducibility.
            max_cycles: Cycle cap (``None`` for the default).
            max_sign: Early-stopping count (``None`` for the default).

        Returns:
            Empirical p-values aligned with ``engine.units``.
        """
        ...


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

_STRATEGY_REGISTRY: dict[str, type[PermutationStrategy]] = {}


def _ensure_registry() -> None:
    """Populate the registry on first access."""
    if _STRATEGY_REGISTRY:
        return

    from .all_genes import AllGenesStrategy
    from .per_gene import PerGeneStrategy

    _STRATEGY_REGISTRY.update(
        {
            "all_genes": AllGenesStrategy,
            "per_gene": PerGeneStrategy,
        }
    )


def resolve_strategy(mode: str) -> PermutationStrategy:
    """Return a strategy instance for the given permutation mode.

    Args:
        mode: ``"all_genes"`` or ``"per_gene"``.

    Raises:
        ValueError: If *mode* is not recognised.
    """
    _ensure_registry()
    cls = _STRATEGY_REGISTRY.get(mode)
    if cls is None:
        valid = ", ".join(sorted(_STRATEGY_REGISTRY))
        raise ValueError(f"Invalid permutation_mode '{mode}'. Choose from: {valid}.")
    return cls()


__all__ = [
    "PermutationOutcome",
    "PermutationStrategy",
    "resolve_strategy",
]
