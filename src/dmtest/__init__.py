"""dmtest — Dirichlet-multinomial likelihood-ratio tests for feature proportions.

Fits per-gene Dirichlet-multinomial (DM) regressions of feature counts
(e.g. transcript or exon counts) on a design, compares full and null
models with a likelihood-ratio test, optionally recalibrates the χ²
p-values by sample permutation (pooled across genes or per gene) and
controls the false discovery rate with Benjamini–Hochberg.  A
beta-binomial (BB) feature-level test reuses the DM-fitted proportions.

Public API:
    .. autosummary::
        dm_fit
        dm_test
        dm_sqtl_test
        dm_fit_regression
        bb_fit_regression
        likelihood_ratio_test
        design_from_groups
        bh_adjust
        pooled_empirical_pvalues
        get_optimizer
        set_optimizer
        resolve_optimizer
        DMData
        FitResult
        TestResult
        PermutationEngine
"""

from ._config import get_optimizer, set_optimizer
from ._optimizers import OptimizerProtocol, OptimizerResult, resolve_optimizer
from ._results import FitResult, TestResult
from .core import dm_fit, dm_sqtl_test, dm_test
from .design import DMData, design_from_groups
from .engine import PermutationEngine
from .lrt import likelihood_ratio_test
from .pvalues import bh_adjust, pooled_empirical_pvalues
from .regression import bb_fit_regression, dm_fit_regression

__all__ = [
    "DMData",
    "FitResult",
    "TestResult",
    "dm_fit",
    "dm_test",
    "dm_sqtl_test",
    "dm_fit_regression",
    "bb_fit_regression",
    "likelihood_ratio_test",
    "design_from_groups",
    "bh_adjust",
    "pooled_empirical_pvalues",
    "get_optimizer",
    "set_optimizer",
    "resolve_optimizer",
    "OptimizerProtocol",
    "OptimizerResult",
    "PermutationEngine",
]

__version__ = "0.1.0"
