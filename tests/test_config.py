"""Tests for the optimizer configuration system."""

import os

import pytest

from dmtest._config import get_optimizer, set_optimizer


class TestGetOptimizer:
    """Tests for get_optimizer() resolution order."""

    def setup_method(self):
        """Reset state before each test."""
        import dmtest._config as _cfg
        _cfg._optimizer_override = None
        os.environ.pop("DMTEST_OPTIMIZER", None)

    def teardown_method(self):
        """Reset state after each test."""
        import dmtest._config as _cfg
        _cfg._optimizer_override = None
        os.environ.pop("DMTEST_OPTIMIZER", None)

    def test_default_is_lbfgs(self):
        assert get_optimizer() == "lbfgs"

    def test_env_var_overrides_default(self):
        os.environ["DMTEST_OPTIMIZER"] = "bfgs"
        assert get_optimizer() == "bfgs"

    def test_env_var_case_insensitive(self):
        os.environ["DMTEST_OPTIMIZER"] = "Newton"
        assert get_optimizer() == "newton"

    def test_unknown_env_var_ignored(self):
        os.environ["DMTEST_OPTIMIZER"] = "simplex"
        assert get_optimizer() == "lbfgs"

    def test_programmatic_override_wins_over_env(self):
        os.environ["DMTEST_OPTIMIZER"] = "bfgs"
        set_optimizer("newton")
        assert get_optimizer() == "newton"

    def test_auto_restores_default(self):
        set_optimizer("bfgs")
        assert get_optimizer() == "bfgs"
        set_optimizer("auto")
        assert get_optimizer() == "lbfgs"


class TestSetOptimizer:
    """Tests for set_optimizer() validation."""

    def setup_method(self):
        import dmtest._config as _cfg
        _cfg._optimizer_override = None

    def teardown_method(self):
        import dmtest._config as _cfg
        _cfg._optimizer_override = None

    def test_accepts_valid_names(self):
        for name in ("lbfgs", "bfgs", "newton", "auto"):
            set_optimizer(name)  # should not raise

    def test_case_insensitive(self):
        set_optimizer("BFGS")
        assert get_optimizer() == "bfgs"

    def test_rejects_invalid_name(self):
        with pytest.raises(ValueError, match="Unknown optimizer"):
            set_optimizer("nelder-mead")


class TestOptimizerIntegration:
    """Verify that set_optimizer() reaches the fits."""

    def setup_method(self):
        import dmtest._config as _cfg
        _cfg._optimizer_override = None

    def teardown_method(self):
        import dmtest._config as _cfg
        _cfg._optimizer_override = None

    def test_configured_optimizer_recorded_on_result(self, gene_counts, designs):
        from dmtest import dm_test

        set_optimizer("bfgs")
        full, null = designs
        result = dm_test(gene_counts, full, null, 20.0)
        assert result.optimizer == "bfgs"

    def test_explicit_argument_wins(self, gene_counts, designs):
        from dmtest import dm_test

        set_optimizer("bfgs")
        full, null = designs
        result = dm_test(gene_counts, full, null, 20.0, optimizer="newton")
        assert result.optimizer == "newton"

    def test_public_api_exports(self):
        """get_optimizer and set_optimizer should be importable from the package."""
        import dmtest
        assert hasattr(dmtest, "get_optimizer")
        assert hasattr(dmtest, "set_optimizer")
