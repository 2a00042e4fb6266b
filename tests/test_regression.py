"""Tests for dm_fit_regression and bb_fit_regression."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
import pytest

from dmtest._optimizers import OptimizerResult
from dmtest.regression import (
    bb_fit_regression,
    dm_fit_regression,
    fitted_proportions,
    is_undefined,
)


@pytest.fixture()
def grouped(rng, simulate, two_groups):
    y = simulate(rng, [[0.6, 0.3, 0.1], [0.2, 0.3, 0.5]], two_groups)
    design = np.column_stack([np.ones(8), (two_groups == 1).astype(float)])
    return y, design


@dataclass(frozen=True)
class _NeverConverges:
    """Optimizer double that always reports failure."""

    name: str = "never"
    maximize: bool = True

    def optimize(self, fun, grad, x0, *, tol):
        return OptimizerResult(False, np.asarray(x0), float(fun(x0)))


# ------------------------------------------------------------------ #
# DM fit
# ------------------------------------------------------------------ #


class TestDMFitConcrete:
    """Two features, three identical samples, intercept only."""

    def test_proportions(self):
        y = np.array([[10.0, 10.0, 10.0], [5.0, 5.0, 5.0]])
        res = dm_fit_regression(y, np.ones((3, 1)), 50.0)

        assert res.converged
        np.testing.assert_allclose(res.fit[0], 2 / 3, atol=1e-2)
        np.testing.assert_allclose(res.fit[1], 1 / 3, atol=1e-2)
        np.testing.assert_allclose(res.fit.sum(axis=0), 1.0, atol=1e-9)

    def test_reference_row_is_zero(self):
        y = np.array([[10.0, 10.0, 10.0], [5.0, 5.0, 5.0]])
        res = dm_fit_regression(y, np.ones((3, 1)), 50.0)
        assert res.b.shape == (2, 1)
        assert np.all(res.b[-1] == 0.0)


class TestDMFitShapes:
    def test_shapes_and_invariants(self, grouped):
        y, design = grouped
        res = dm_fit_regression(y, design, 20.0)

        assert res.b.shape == (3, 2)
        assert res.fit.shape == (3, 8)
        assert np.isfinite(res.lik)
        assert np.all(res.b[-1] == 0.0)
        assert np.all((res.fit >= 0) & (res.fit <= 1))
        np.testing.assert_allclose(res.fit.sum(axis=0), 1.0, atol=1e-9)

    def test_proportions_follow_groups(self, grouped):
        y, design = grouped
        res = dm_fit_regression(y, design, 20.0)
        # Samples in the same group share one fitted proportion vector.
        np.testing.assert_allclose(res.fit[:, :4], res.fit[:, [0]] * np.ones((1, 4)))
        np.testing.assert_allclose(res.fit[:, 4:], res.fit[:, [4]] * np.ones((1, 4)))

    def test_arrays_are_read_only(self, grouped):
        y, design = grouped
        res = dm_fit_regression(y, design, 20.0)
        with pytest.raises(ValueError):
            res.b[0, 0] = 1.0
        with pytest.raises(ValueError):
            res.fit[0, 0] = 1.0

    def test_feature_ids_label_outputs(self, grouped):
        y, design = grouped
        res = dm_fit_regression(y, design, 20.0, feature_ids=["a", "b", "c"])
        coefs = res.coefficients(["Intercept", "group"])
        assert isinstance(coefs, pd.DataFrame)
        assert list(coefs.index) == ["a", "b", "c"]
        assert list(res.proportions().index) == ["a", "b", "c"]

    def test_fitted_proportions_reference_is_complement(self):
        b = np.array([[0.3, -0.2], [1.0, 0.5], [0.0, 0.0]])
        design = np.array([[1.0, 0.0], [1.0, 1.0]])
        prop = fitted_proportions(b, design)
        np.testing.assert_allclose(prop[-1], 1.0 - prop[:-1].sum(axis=0))


class TestDMFitDegenerate:
    def test_single_feature(self):
        res = dm_fit_regression(np.array([[3.0, 4.0, 5.0]]), np.ones((3, 1)), 10.0)
        assert res.b.shape == (1, 1)
        assert res.fit.shape == (1, 3)
        assert np.isnan(res.lik)
        assert np.all(np.isnan(res.b))
        assert not res.converged

    @pytest.mark.parametrize("prec", [None, float("nan"), 0.0, -1.0, pd.NA])
    def test_undefined_precision(self, grouped, prec):
        y, design = grouped
        res = dm_fit_regression(y, design, prec)
        assert res.b.shape == (3, 2)
        assert res.fit.shape == (3, 8)
        assert np.isnan(res.lik)
        assert np.all(np.isnan(res.fit))

    def test_non_convergence_propagates_nan(self, grouped):
        y, design = grouped
        res = dm_fit_regression(y, design, 20.0, optimizer=_NeverConverges())
        assert np.isnan(res.lik)
        assert np.all(np.isnan(res.b))
        assert np.all(np.isnan(res.fit))

    def test_is_undefined(self):
        assert is_undefined(None)
        assert is_undefined(float("nan"))
        assert is_undefined(0)
        assert is_undefined("abc")
        assert not is_undefined(12.5)


class TestDMFitOptions:
    @pytest.mark.parametrize("optimizer", ["lbfgs", "bfgs", "newton"])
    def test_optimizers_agree(self, grouped, optimizer):
        y, design = grouped
        ref = dm_fit_regression(y, design, 20.0, optimizer="lbfgs")
        res = dm_fit_regression(y, design, 20.0, optimizer=optimizer)
        assert res.converged
        assert res.lik == pytest.approx(ref.lik, rel=1e-5)
        np.testing.assert_allclose(res.fit, ref.fit, atol=1e-3)

    @pytest.mark.parametrize("optimizer", ["lbfgs", "bfgs", "newton"])
    def test_batch_of_null_genes_converges(self, rng, simulate, two_groups, optimizer):
        design = np.column_stack([np.ones(8), (two_groups == 1).astype(float)])
        for _ in range(30):
            props = rng.dirichlet(np.full(3, 5.0))
            y = simulate(rng, [props, props], two_groups)
            ref = dm_fit_regression(y, design, 20.0, optimizer="lbfgs")
            res = dm_fit_regression(y, design, 20.0, optimizer=optimizer)
            assert res.converged
            assert res.lik == pytest.approx(ref.lik, rel=1e-6, abs=1e-4)

    def test_zeros_initializer(self, grouped):
        y, design = grouped
        ref = dm_fit_regression(y, design, 20.0)
        res = dm_fit_regression(y, design, 20.0, initializer="zeros")
        assert res.lik == pytest.approx(ref.lik, rel=1e-5)

    def test_rank_deficient_design(self, grouped):
        y, design = grouped
        ref = dm_fit_regression(y, design, 20.0)
        doubled = np.column_stack([design, design[:, 1]])
        res = dm_fit_regression(y, doubled, 20.0)
        assert res.converged
        assert res.b.shape == (3, 3)
        assert res.lik == pytest.approx(ref.lik, rel=1e-5)
        np.testing.assert_allclose(res.fit, ref.fit, atol=1e-3)

    def test_unknown_initializer(self, grouped):
        y, design = grouped
        with pytest.raises(ValueError, match="Unknown initializer"):
            dm_fit_regression(y, design, 20.0, initializer="random")

    def test_unknown_optimizer(self, grouped):
        y, design = grouped
        with pytest.raises(ValueError, match="Unknown optimizer"):
            dm_fit_regression(y, design, 20.0, optimizer="nelder-mead")

    @pytest.mark.parametrize("tol", [0.0, -1e-8])
    def test_non_positive_tolerance(self, grouped, tol):
        y, design = grouped
        with pytest.raises(ValueError, match="tol must be positive"):
            dm_fit_regression(y, design, 20.0, tol=tol)


# ------------------------------------------------------------------ #
# BB fit
# ------------------------------------------------------------------ #


class TestBBFit:
    def test_passes_fit_through(self, grouped):
        y, design = grouped
        dm = dm_fit_regression(y, design, 20.0)
        bb = bb_fit_regression(y, design, 20.0, dm.fit)
        np.testing.assert_array_equal(bb.fit, dm.fit)
        assert bb.lik.shape == (3,)
        assert bb.b.shape == (3, 2)
        assert np.all(np.isfinite(bb.lik))

    def test_coefficients_reproduce_logits(self, grouped):
        y, design = grouped
        dm = dm_fit_regression(y, design, 20.0)
        bb = bb_fit_regression(y, design, 20.0, dm.fit)
        eta = design @ bb.b.T  # (n, q)
        logit = np.log(dm.fit.T / (1 - dm.fit.T))
        np.testing.assert_allclose(eta, logit, atol=1e-8)

    def test_degenerate_gives_nan_vector(self, grouped):
        y, design = grouped
        bb = bb_fit_regression(y, design, None, np.full((3, 8), 0.3))
        assert bb.lik.shape == (3,)
        assert np.all(np.isnan(bb.lik))
        assert bb.b.shape == (3, 2)

    def test_failed_dm_fit_gives_nan(self, grouped):
        y, design = grouped
        bb = bb_fit_regression(y, design, 20.0, np.full((3, 8), np.nan))
        assert np.all(np.isnan(bb.lik))
