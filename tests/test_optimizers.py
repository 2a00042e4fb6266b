"""Tests for optimizer resolution and the SciPy optimizer strategies."""

from __future__ import annotations

import os

import numpy as np
import pytest

import dmtest._config as _cfg
from dmtest._optimizers import OptimizerProtocol, OptimizerResult, resolve_optimizer
from dmtest._optimizers._scipy import BFGSMinimizer, LBFGSMaximizer, NewtonMinimizer

_TARGET = np.array([3.0, -1.0])


def _concave(x):
    return -float(np.sum((x - _TARGET) ** 2))


def _concave_grad(x):
    return -2.0 * (x - _TARGET)


@pytest.fixture(autouse=True)
def _reset_config():
    _cfg._optimizer_override = None
    os.environ.pop("DMTEST_OPTIMIZER", None)
    yield
    _cfg._optimizer_override = None
    os.environ.pop("DMTEST_OPTIMIZER", None)


class TestResolveOptimizer:
    @pytest.mark.parametrize(
        ("name", "cls"),
        [("lbfgs", LBFGSMaximizer), ("bfgs", BFGSMinimizer), ("newton", NewtonMinimizer)],
    )
    def test_by_name(self, name, cls):
        opt = resolve_optimizer(name)
        assert isinstance(opt, cls)
        assert opt.name == name

    def test_cached_instance(self):
        assert resolve_optimizer("bfgs") is resolve_optimizer("BFGS")

    def test_instance_passthrough(self):
        opt = NewtonMinimizer(max_iter=5)
        assert resolve_optimizer(opt) is opt

    def test_default_follows_config(self):
        assert resolve_optimizer(None).name == "lbfgs"
        _cfg.set_optimizer("newton")
        assert resolve_optimizer(None).name == "newton"

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown optimizer"):
            resolve_optimizer("adam")

    def test_protocol(self):
        for name in ("lbfgs", "bfgs", "newton"):
            assert isinstance(resolve_optimizer(name), OptimizerProtocol)


class TestStrategies:
    @pytest.mark.parametrize("name", ["lbfgs", "bfgs", "newton"])
    def test_finds_maximum(self, name):
        opt = resolve_optimizer(name)
        res = opt.optimize(_concave, _concave_grad, np.zeros(2), tol=1e-10)

        assert isinstance(res, OptimizerResult)
        assert res.converged
        np.testing.assert_allclose(res.parameters, _TARGET, atol=1e-4)
        loglik = res.objective_value if opt.maximize else -res.objective_value
        assert loglik == pytest.approx(0.0, abs=1e-6)

    def test_objective_sense(self):
        x0 = np.zeros(2)
        up = resolve_optimizer("lbfgs").optimize(_concave, _concave_grad, x0, tol=1e-10)
        down = resolve_optimizer("bfgs").optimize(_concave, _concave_grad, x0, tol=1e-10)
        assert up.objective_value == pytest.approx(-down.objective_value, abs=1e-6)

    @pytest.mark.parametrize("name", ["lbfgs", "bfgs", "newton"])
    def test_undefined_objective_is_not_converged(self, name):
        res = resolve_optimizer(name).optimize(
            lambda x: float("nan"),
            lambda x: np.full_like(x, np.nan),
            np.zeros(2),
            tol=1e-8,
        )
        assert not res.converged


class TestNewtonStatus:
    """Newton-CG stops with status 2 or 3 at flat optima."""

    @staticmethod
    def _stub(monkeypatch, *, status, jac, fun=1.5):
        import dmtest._optimizers._scipy as scipy_opt

        def fake_minimize(f, x0, **kwargs):
            return scipy_opt.OptimizeResult(
                x=np.asarray(x0), fun=fun, jac=np.asarray(jac, dtype=float),
                status=status, success=False, message="stub",
            )

        monkeypatch.setattr(scipy_opt, "minimize", fake_minimize)

    @pytest.mark.parametrize("status", [2, 3])
    def test_stationary_point_is_converged(self, monkeypatch, status):
        self._stub(monkeypatch, status=status, jac=[1e-7, -2e-6])
        res = NewtonMinimizer().optimize(_concave, _concave_grad, np.zeros(2), tol=1e-8)
        assert res.converged
        assert res.objective_value == 1.5

    def test_large_gradient_is_not_converged(self, monkeypatch):
        self._stub(monkeypatch, status=3, jac=[0.5, 0.0])
        res = NewtonMinimizer().optimize(_concave, _concave_grad, np.zeros(2), tol=1e-8)
        assert not res.converged

    def test_iteration_limit_is_not_converged(self, monkeypatch):
        self._stub(monkeypatch, status=1, jac=[0.0, 0.0])
        res = NewtonMinimizer().optimize(_concave, _concave_grad, np.zeros(2), tol=1e-8)
        assert not res.converged

    def test_non_finite_objective_is_not_converged(self, monkeypatch):
        self._stub(monkeypatch, status=2, jac=[0.0, 0.0], fun=np.inf)
        res = NewtonMinimizer().optimize(_concave, _concave_grad, np.zeros(2), tol=1e-8)
        assert not res.converged
