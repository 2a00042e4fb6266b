"""Optimizer configuration for the dmtest package.

Controls which optimizer strategy the Dirichlet-multinomial regression
fit uses when a caller does not pass ``optimizer=`` explicitly.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_optimizer`.
    2. The ``DMTEST_OPTIMIZER`` environment variable.
    3. The package default, ``"lbfgs"``.

Valid optimizer names are ``"lbfgs"``, ``"bfgs"`` and ``"newton"``
(case-insensitive).

Examples:
    Switch to the Newton-CG optimizer from the shell::

        export DMTEST_OPTIMIZER=newton

    Switch programmatically::

        import dmtest
        dmtest.set_optimizer("bfgs")

    Restore the default resolution::

        dmtest.set_optimizer("auto")
"""

from __future__ import annotations

import os

_OPTIMIZERS = ("lbfgs", "bfgs", "newton")
_VALID_OPTIMIZERS = {*_OPTIMIZERS, "auto"}
_DEFAULT_OPTIMIZER = "lbfgs"

# Sentinel indicating "no programmatic override has been set".
_optimizer_override: str | None = None


def get_optimizer() -> str:
    """Return the active optimizer name.

    Resolution order:
        1. Value set by :func:`set_optimizer` (unless ``"auto"``).
        2. ``DMTEST_OPTIMIZER`` environment variable.
        3. ``"lbfgs"``.

    Returns:
        One of ``"lbfgs"``, ``"bfgs"`` or ``"newton"``.
    """
    if _optimizer_override is not None and _optimizer_override != "auto":
        return _optimizer_override

    env = os.environ.get("DMTEST_OPTIMIZER", "").strip().lower()
    if env in _OPTIMIZERS:
        return env

    return _DEFAULT_OPTIMIZER


def set_optimizer(name: str) -> None:
    """Override the optimizer selection.

    Args:
        name: One of ``"lbfgs"``, ``"bfgs"``, ``"newton"`` or ``"auto"``
            (case-insensitive).  ``"auto"`` restores the default
            resolution order.

    Raises:
        ValueError: If *name* is not a recognised optimizer.
    """
    global _optimizer_override
    normalised = name.strip().lower()
    if normalised not in _VALID_OPTIMIZERS:
        raise ValueError(
            f"Unknown optimizer '{name}'. Choose from: {sorted(_VALID_OPTIMIZERS)}"
        )
    _optimizer_override = normalised
