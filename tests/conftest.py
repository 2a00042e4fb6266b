"""Shared fixtures: seeded Dirichlet-multinomial count simulators."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

_SEED = 42


def _simulate(
    rng: np.random.Generator,
    props: list[list[float]],
    groups: np.ndarray,
    prec: float = 20.0,
    total: int = 200,
) -> np.ndarray:
    """Counts ``(q, n)``: sample i draws from group ``groups[i]``'s proportions."""
    props_arr = np.asarray(props, dtype=float)
    y = np.empty((props_arr.shape[1], len(groups)))
    for i, g in enumerate(groups):
        p = rng.dirichlet(prec * props_arr[g])
        y[:, i] = rng.multinomial(total, p)
    # Every feature must be observed at least once.
    y[:, 0] += (y.sum(axis=1) == 0).astype(float)
    return y


@pytest.fixture()
def rng():
    return np.random.default_rng(_SEED)


@pytest.fixture()
def two_groups():
    """Group labels of eight samples, four per group."""
    return np.array([0, 0, 0, 0, 1, 1, 1, 1])


@pytest.fixture()
def gene_counts(rng, two_groups):
    """Four genes over eight samples: two with a group effect, two without."""
    samples = [f"s{i}" for i in range(len(two_groups))]
    effect = [[0.7, 0.2, 0.1], [0.2, 0.2, 0.6]]
    flat = [[0.5, 0.3, 0.2], [0.5, 0.3, 0.2]]
    genes = {
        "geneA": _simulate(rng, effect, two_groups),
        "geneB": _simulate(rng, flat, two_groups),
        "geneC": _simulate(rng, [[0.8, 0.2], [0.3, 0.7]], two_groups),
        "geneD": _simulate(rng, [[0.4, 0.6], [0.4, 0.6]], two_groups),
    }
    return {
        gene: pd.DataFrame(
            y, index=[f"{gene}.f{j}" for j in range(y.shape[0])], columns=samples
        )
        for gene, y in genes.items()
    }


@pytest.fixture()
def designs(two_groups):
    """One-way full design and intercept-only null design."""
    full = pd.DataFrame(
        {"Intercept": 1.0, "group[T.1]": (two_groups == 1).astype(float)}
    )
    null = pd.DataFrame({"Intercept": np.ones(len(two_groups))})
    return full, null


@pytest.fixture()
def simulate():
    """Factory exposing the simulator to tests that need custom genes."""
    return _simulate
