"""Optimizer abstraction layer for the DM regression fit.

Each optimizer implements the :class:`OptimizerProtocol` interface: it
receives a log-likelihood, its analytic gradient and a starting vector,
and returns an :class:`OptimizerResult` with the uniform contract

    ``OptimizerResult(converged, parameters, objective_value)``

``objective_value`` is expressed in the optimizer's own sense.  Strategies
that minimise the negated log-likelihood set ``maximize = False`` and
report the minimum; the caller flips the sign.  This keeps every
strategy honest about what it optimised while letting
:func:`~dmtest.regression.dm_fit_regression` treat them interchangeably.

Resolution follows the policy set by :mod:`._config`:

1. An explicit ``optimizer=`` argument.
2. Programmatic override via :func:`~dmtest.set_optimizer`.
3. ``DMTEST_OPTIMIZER`` environment variable.
4. ``"lbfgs"``.

Adding a new optimizer requires a class implementing
:class:`OptimizerProtocol`, a branch in :func:`resolve_optimizer`, and
the name in ``_OPTIMIZERS`` in :mod:`._config`.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np

from .._config import _OPTIMIZERS, get_optimizer

Objective = Callable[[np.ndarray], float]
Gradient = Callable[[np.ndarray], np.ndarray]


@dataclass(frozen=True)
class OptimizerResult:
    """Uniform outcome of one optimizer run."""

    converged: bool
    """``True`` only if the backend reported success and a finite optimum."""

    parameters: np.ndarray
    """Final parameter vector (meaningless when not converged)."""

    objective_value: float
    """Objective at ``parameters`` in the optimizer's own sense."""


@runtime_checkable
class OptimizerProtocol(Protocol):
    """Interface that every optimizer strategy must implement.

    Attributes:
        name: Short identifier (``"lbfgs"``, ``"bfgs"``, ``"newton"``).
        maximize: ``True`` if ``objective_value`` is the maximised
            log-likelihood, ``False`` if it is the minimised negated
            log-likelihood.
    """

    @property
    def name(self) -> str: ...

    @property
    def maximize(self) -> bool: ...

    def optimize(
        self,
        fun: Objective,
        grad: Gradient,
        x0: np.ndarray,
        *,
        tol: float,
    ) -> OptimizerResult:
        """Maximise *fun* (a log-likelihood) starting from *x0*.

        Args:
            fun: Log-likelihood as a function of the parameter vector.
            grad: Analytic gradient of *fun*.
            x0: Starting vector.
            tol: Convergence tolerance; its meaning is strategy
                specific and some strategies ignore it.

        Returns:
            The strategy's :class:`OptimizerResult`.  Never raises on
            numerical failure — such runs come back with
            ``converged=False``.
        """
        ...


# Singleton cache: one instance per optimizer name.
_OPTIMIZER_CACHE: dict[str, OptimizerProtocol] = {}


def resolve_optimizer(name: str | OptimizerProtocol | None = None) -> OptimizerProtocol:
    """Return an :class:`OptimizerProtocol` instance for *name*.

    Args:
        name: ``"lbfgs"``, ``"bfgs"``, ``"newton"``, a pre-built
            optimizer instance (returned as-is) or ``None`` for the
            configured default.

    Raises:
        ValueError: If *name* is not a recognised optimizer.
    """
    if isinstance(name, OptimizerProtocol):
        return name
    if name is None:
        name = get_optimizer()
    name = name.strip().lower()

    if name in _OPTIMIZER_CACHE:
        return _OPTIMIZER_CACHE[name]

    from ._scipy import BFGSMinimizer, LBFGSMaximizer, NewtonMinimizer

    optimizer: OptimizerProtocol
    if name == "lbfgs":
        optimizer = LBFGSMaximizer()
    elif name == "bfgs":
        optimizer = BFGSMinimizer()
    elif name == "newton":
        optimizer = NewtonMinimizer()
    else:
        msg = f"Unknown optimizer {name!r}.  Choose from: {', '.join(_OPTIMIZERS)}."
        raise ValueError(msg)

    _OPTIMIZER_CACHE[name] = optimizer
    return optimizer


__all__ = [
    "OptimizerProtocol",
    "OptimizerResult",
    "resolve_optimizer",
]
