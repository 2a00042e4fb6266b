"""SciPy optimizer strategies for the DM regression fit.

Three interchangeable strategies, all built on
:func:`scipy.optimize.minimize` and all fed the analytic DM score:

1. **LBFGSMaximizer** (``"lbfgs"``) — limited-memory quasi-Newton
   maximiser.  SciPy only minimises, so the negated log-likelihood is
   optimised and the optimum is reported back on the maximised scale
   (``maximize = True``).  Stops on the relative reduction rule

       (f_k − f_{k+1}) / max(|f_k|, |f_{k+1}|, 1) <= tol

   which is L-BFGS-B's ``ftol``.

2. **BFGSMinimizer** (``"bfgs"``) — dense BFGS minimiser of the negated
   log-likelihood.  ``tol`` is the relative step tolerance (``xrtol``);
   the gradient-norm rule (``gtol``) stays at the SciPy default.

3. **NewtonMinimizer** (``"newton"``) — truncated Newton (Newton-CG)
   minimiser of the negated log-likelihood.  Hessian-vector products
   are finite differences of the analytic gradient.  ``tol`` is not
   used; the solver keeps its own ``xtol``.

Failure handling
~~~~~~~~~~~~~~~~
Degenerate permuted data routinely push the likelihood into regions
where ``lnΓ`` overflows.  Non-finite objective values are mapped to
``+inf`` so the line searches backtrack, and SciPy's
``RuntimeWarning``\\s are suppressed inside each run.  A run that ends
without ``success`` or at a non-finite optimum is returned with
``converged=False``; nothing is raised.  Newton-CG is the exception:
its precision-loss and indefinite-Hessian stops are accepted at a
stationary point (see :class:`NewtonMinimizer`).
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np
from scipy.optimize import OptimizeResult, minimize

from . import Gradient, Objective, OptimizerResult


def _negated(fun: Objective, grad: Gradient) -> tuple[Objective, Gradient]:
    """Wrap a log-likelihood and its score as a minimisation problem."""

    def neg_fun(x: np.ndarray) -> float:
        value = fun(x)
        return -value if np.isfinite(value) else np.inf

    def neg_grad(x: np.ndarray) -> np.ndarray:
        g = grad(x)
        # A NaN gradient would poison the quasi-Newton update; zero
        # lets the line search reject the step on the objective alone.
        return np.where(np.isfinite(g), -g, 0.0)

    return neg_fun, neg_grad


def _run(
    fun: Objective,
    grad: Gradient,
    x0: np.ndarray,
    method: str,
    options: dict[str, float | int],
) -> OptimizeResult | None:
    neg_fun, neg_grad = _negated(fun, grad)
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=RuntimeWarning)
        try:
            return minimize(
                neg_fun, np.asarray(x0, dtype=float), jac=neg_grad,
                method=method, options=options,
            )
        except (ValueError, FloatingPointError, np.linalg.LinAlgError):
            return None


def _stationary(res: OptimizeResult, gtol: float) -> bool:
    jac = np.asarray(res.get("jac", np.nan), dtype=float)
    return bool(np.all(np.isfinite(jac))) and float(np.max(np.abs(jac), initial=0.0)) <= gtol


def _failed(x0: np.ndarray) -> OptimizerResult:
    return OptimizerResult(
        converged=False,
        parameters=np.full(np.shape(x0), np.nan),
        objective_value=float("nan"),
    )


@dataclass(frozen=True)
class LBFGSMaximizer:
    """Quasi-Newton maximiser with a relative function-value stop rule."""

    max_iter: int = 1_000

    @property
    def name(self) -> str:
        return "lbfgs"

    @property
    def maximize(self) -> bool:
        return True

    def optimize(
        self, fun: Objective, grad: Gradient, x0: np.ndarray, *, tol: float
    ) -> OptimizerResult:
        res = _run(fun, grad, x0, "L-BFGS-B", {"ftol": tol, "maxiter": self.max_iter})
        if res is None:
            return _failed(x0)
        converged = bool(res.success) and bool(np.isfinite(res.fun))
        return OptimizerResult(converged, np.asarray(res.x), -float(res.fun))


@dataclass(frozen=True)
class BFGSMinimizer:
    """Quasi-Newton minimiser of the negated log-likelihood."""

    max_iter: int = 1_000

    @property
    def name(self) -> str:
        return "bfgs"

    @property
    def maximize(self) -> bool:
        return False

    def optimize(
        self, fun: Objective, grad: Gradient, x0: np.ndarray, *, tol: float
    ) -> OptimizerResult:
        res = _run(fun, grad, x0, "BFGS", {"xrtol": tol, "maxiter": self.max_iter})
        if res is None:
            return _failed(x0)
        converged = bool(res.success) and bool(np.isfinite(res.fun))
        return OptimizerResult(converged, np.asarray(res.x), float(res.fun))


@dataclass(frozen=True)
class NewtonMinimizer:
    """Newton-CG minimiser of the negated log-likelihood.

    Newton-CG often stops at the optimum with status 2 (precision loss)
    or 3 (Hessian not positive definite): near a flat maximum the
    finite-difference Hessian products stop resolving the curvature.
    Such runs count as converged when the objective is finite and the
    largest absolute score component is at most ``gtol``.
    """

    max_iter: int = 1_000
    gtol: float = 1e-3

    @property
    def name(self) -> str:
        return "newton"

    @property
    def maximize(self) -> bool:
        return False

    def optimize(
        self,
        fun: Objective,
        grad: Gradient,
        x0: np.ndarray,
        *,
        tol: float,  # noqa: ARG002
    ) -> OptimizerResult:
        res = _run(fun, grad, x0, "Newton-CG", {"maxiter": self.max_iter})
        if res is None:
            return _failed(x0)
        converged = bool(res.success) or (
            res.status in (2, 3) and _stationary(res, self.gtol)
        )
        converged = converged and bool(np.isfinite(res.fun))
        return OptimizerResult(converged, np.asarray(res.x), float(res.fun))


__all__ = ["BFGSMinimizer", "LBFGSMaximizer", "NewtonMinimizer"]
