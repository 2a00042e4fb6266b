"""Sample-label permutations and seeded random streams.

Every permutation in this package relabels *samples*: the count columns
of a gene are reordered against fixed designs (or genotypes), so each
sample keeps its own count vector and library total.

Random streams
--------------
Reproducibility must not depend on the worker-pool size or on the
order in which workers finish.  Two rules guarantee it:

1. **Pooled mode** draws all cycle permutations up front, in the main
   process, from one generator seeded with ``random_state``.  Every
   gene sees the same sample permutation in a given cycle.
2. **Per-gene mode** cannot pre-draw (its cycle count is adaptive and
   may reach 10⁶), so :func:`spawn_generators` partitions the seed with
   :meth:`numpy.random.SeedSequence.spawn` into one child stream per
   gene, in gene order.  Gene *g* always gets child *g*.

Unique permutations
-------------------
Drawing the same relabelling twice adds no information, and the
identity relabelling is the observed data itself.  For small sample
sizes (n <= ``max_exhaustive``) permutations are drawn by lexicographic
rank without replacement and decoded with the Lehmer code:

    k = d₁·(n−1)! + d₂·(n−2)! + ··· + dₙ·0!

where each digit dᵢ picks the dᵢ-th remaining element.  The identity
has rank 0, so excluding it means drawing ranks from ``[1, n!)``.
For larger n, rows are shuffled in one vectorised call and
duplicates / identities are removed with a hash set.
"""

from __future__ import annotations

import math
import warnings

import numpy as np


def spawn_generators(
    random_state: int | np.random.SeedSequence | None, n: int
) -> list[np.random.Generator]:
    """Return *n* independent generators partitioned from one seed."""
    seq = (
        random_state
        if isinstance(random_state, np.random.SeedSequence)
        else np.random.SeedSequence(random_state)
    )
    return [np.random.default_rng(child) for child in seq.spawn(n)]


def _unrank_permutation(k: int, n: int) -> list[int]:
    """Convert rank *k* to the *k*-th lexicographic permutation of ``[0..n-1]``."""
    available = list(range(n))
    result: list[int] = []
    for i in range(n, 0, -1):
        f = math.factorial(i - 1)
        idx, k = divmod(k, f)
        result.append(available.pop(idx))
    return result


def draw_permutation(rng: np.random.Generator, n_samples: int) -> np.ndarray:
    """Draw one non-identity permutation of ``range(n_samples)``.

    With fewer than two samples the identity is the only permutation
    and is returned as-is.
    """
    if n_samples < 2:
        return np.arange(n_samples, dtype=np.intp)
    while True:
        perm = rng.permutation(n_samples)
        if np.any(perm != np.arange(n_samples)):
            return perm.astype(np.intp)


def generate_unique_permutations(
    rng: np.random.Generator,
    n_samples: int,
    n_permutations: int,
    max_exhaustive: int = 10,
) -> np.ndarray:
    """Pre-generate distinct, non-identity permutation index arrays.

    Args:
        rng: Seeded generator; consumed deterministically.
        n_samples: Length of the array to permute.
        n_permutations: Number of permutations requested.
        max_exhaustive: Use Lehmer-code sampling up to this sample size.

    Returns:
        Array ``(B, n_samples)``.  ``B < n_permutations`` only when
        fewer distinct non-identity permutations exist (a warning is
        issued).
    """
    if n_samples < 2 or n_permutations < 1:
        return np.empty((0, n_samples), dtype=np.intp)

    if n_samples <= max_exhaustive:
        available = math.factorial(n_samples) - 1
        if n_permutations > available:
            warnings.warn(
                f"Only {available} distinct non-identity permutations exist "
                f"for {n_samples} samples; {n_permutations} were requested.",
                UserWarning,
                stacklevel=2,
            )
            n_permutations = available
        ranks = rng.choice(available, size=n_permutations, replace=False) + 1
        return np.array(
            [_unrank_permutation(int(k), n_samples) for k in ranks], dtype=np.intp
        )

    batch = np.tile(np.arange(n_samples), (n_permutations, 1))
    rng.permuted(batch, axis=1, out=batch)

    seen: set[tuple[int, ...]] = {tuple(range(n_samples))}
    result = np.empty((n_permutations, n_samples), dtype=np.intp)
    count = 0
    for row in batch:
        key = tuple(row.tolist())
        if key not in seen:
            seen.add(key)
            result[count] = row
            count += 1
    # Refill the (astronomically rare) collisions.
    while count < n_permutations:
        perm = rng.permutation(n_samples)
        key = tuple(perm.tolist())
        if key not in seen:
            seen.add(key)
            result[count] = perm
            count += 1
    return result


__all__ = [
    "draw_permutation",
    "generate_unique_permutations",
    "spawn_generators",
]
