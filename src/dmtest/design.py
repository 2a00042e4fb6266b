"""Input containers and design construction.

:class:`DMData` holds the per-gene inputs supplied by upstream
collaborators (filtered counts, designs or genotypes).  It is frozen
and shared by reference: fits, tests and the final
:class:`~dmtest._results.TestResult` all point at the same instance.

Two layouts are supported:

* **Group comparison** — one full and one null design (samples ×
  covariates) shared by every gene.
* **Genotype (QTL)** — per gene a genotype table (blocks × samples, 0/1/2
  with ``nan`` for missing calls).  Each block is tested separately: the
  full design is the one-way design of the block's genotype groups, the
  null design is intercept only, and samples with a missing call are
  dropped for that block.

:class:`TestUnit` is the internal, fully resolved form of one test
(gene, or gene × block) that the engine and the strategies consume.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df
from .lrt import degrees_of_freedom


def design_from_groups(groups: Any) -> pd.DataFrame:
    """Treatment-coded one-way design: intercept plus one indicator per non-base level.

    Levels are sorted; the first is the baseline.  Column names follow
    the ``Intercept`` / ``group[T.level]`` convention.
    """
    groups = pd.Categorical(np.asarray(groups))
    levels = list(groups.categories)
    columns = {"Intercept": np.ones(len(groups))}
    codes = np.asarray(groups.codes)
    for i, level in enumerate(levels[1:], start=1):
        columns[f"group[T.{level}]"] = (codes == i).astype(float)
    return pd.DataFrame(columns)


def design_rank_difference(design_full: np.ndarray, design_null: np.ndarray) -> int:
    """Number of parameters the full design adds over the null design."""
    return int(np.linalg.matrix_rank(design_full) - np.linalg.matrix_rank(design_null))


@dataclass(frozen=True)
class DMData:
    """Per-gene counts plus either shared designs or per-gene genotypes."""

    counts: Mapping[str, pd.DataFrame]
    """Gene id → counts ``DataFrame`` (features × samples)."""

    design_full: pd.DataFrame | None = None
    """Full design (samples × covariates), group-comparison layout."""

    design_null: pd.DataFrame | None = None
    """Null design (samples × covariates), group-comparison layout."""

    genotypes: Mapping[str, pd.DataFrame] | None = None
    """Gene id → genotypes ``DataFrame`` (blocks × samples), QTL layout."""

    samples: pd.Index = field(default_factory=lambda: pd.Index([]))
    """Sample ids shared by every gene (count columns)."""

    @classmethod
    def from_inputs(
        cls,
        counts: Mapping[str, DataFrameLike],
        *,
        design_full: DataFrameLike | None = None,
        design_null: DataFrameLike | None = None,
        genotypes: Mapping[str, DataFrameLike] | None = None,
    ) -> DMData:
        """Validate and normalise user inputs.

        Raises:
            ValueError: If there are no genes, if genes disagree on
                their samples, or if a design / genotype table does not
                match the samples.
        """
        if not counts:
            raise ValueError("counts must contain at least one gene.")

        frames = {
            str(g): _ensure_pandas_df(c, name=f"counts[{g!r}]") for g, c in counts.items()
        }
        samples = next(iter(frames.values())).columns
        for gene, frame in frames.items():
            if not frame.columns.equals(samples):
                raise ValueError(
                    f"Gene {gene!r} has different samples from the first gene; "
                    "all count tables must share the same sample columns."
                )
            if (frame.to_numpy() < 0).any():
                raise ValueError(f"Gene {gene!r} has negative counts.")

        full = None if design_full is None else _align_design(design_full, samples, "design_full")
        null = None if design_null is None else _align_design(design_null, samples, "design_null")

        geno = None
        if genotypes is not None:
            geno = {}
            for gene, table in genotypes.items():
                frame = _ensure_pandas_df(table, name=f"genotypes[{gene!r}]")
                if frame.shape[1] != len(samples):
                    raise ValueError(
                        f"genotypes[{gene!r}] has {frame.shape[1]} columns, "
                        f"expected {len(samples)} samples."
                    )
                geno[str(gene)] = frame
            missing = set(frames) - set(geno)
            if missing:
                raise ValueError(f"No genotypes for genes: {sorted(missing)}.")

        return cls(
            counts=frames,
            design_full=full,
            design_null=null,
            genotypes=geno,
            samples=samples,
        )

    @property
    def gene_ids(self) -> list[str]:
        return list(self.counts)

    @property
    def n_samples(self) -> int:
        return len(self.samples)


def _align_design(design: DataFrameLike, samples: pd.Index, name: str) -> pd.DataFrame:
    frame = _ensure_pandas_df(design, name=name)
    if frame.shape[0] != len(samples):
        raise ValueError(
            f"'{name}' has {frame.shape[0]} rows, expected {len(samples)} samples."
        )
    # Reorder by sample id when the design is labelled with them.
    if set(frame.index) == set(samples) and not frame.index.equals(samples):
        frame = frame.loc[samples]
    return frame.astype(float)


# ------------------------------------------------------------------ #
# Test units
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class TestUnit:
    """One resolved test: a gene, or one genotype block of a gene."""

    __test__ = False  # not a pytest test class

    gene_id: str
    y: np.ndarray
    """Counts ``(q, n)`` over *all* samples."""

    design_full: np.ndarray
    design_null: np.ndarray
    prec: float | None
    df: int
    block_id: Any = None
    keep: np.ndarray | None = None
    """Boolean mask ``(n,)`` of samples used, ``None`` for all."""

    feature_ids: list[Any] | None = None

    def counts(self, perm: np.ndarray | None = None) -> np.ndarray:
        """Counts after relabelling samples by *perm*, then masking."""
        y = self.y if perm is None else self.y[:, perm]
        return y if self.keep is None else y[:, self.keep]

    @property
    def null_is_permutation_invariant(self) -> bool:
        """``True`` if relabelling samples cannot change the null fit."""
        if self.keep is not None and not self.keep.all():
            return False
        return bool(np.all(self.design_null == self.design_null[0]))


def group_units(data: DMData, precision: Mapping[str, float | None]) -> list[TestUnit]:
    """Build one unit per gene for the group-comparison layout."""
    if data.design_full is None or data.design_null is None:
        raise ValueError("Both design_full and design_null are required.")
    full = data.design_full.to_numpy(dtype=float)
    null = data.design_null.to_numpy(dtype=float)
    n_levels = design_rank_difference(full, null) + 1

    units = []
    for gene, frame in data.counts.items():
        y = frame.to_numpy(dtype=float)
        units.append(
            TestUnit(
                gene_id=gene,
                y=y,
                design_full=full,
                design_null=null,
                prec=precision.get(gene),
                df=int(degrees_of_freedom(y.shape[0], n_levels)),
                feature_ids=list(frame.index),
            )
        )
    return units


def genotype_units(data: DMData, precision: Mapping[str, float | None]) -> list[TestUnit]:
    """Build one unit per gene × genotype block for the QTL layout."""
    if data.genotypes is None:
        raise ValueError("genotypes are required for the genotype layout.")

    units = []
    for gene, frame in data.counts.items():
        y = frame.to_numpy(dtype=float)
        table = data.genotypes[gene]
        for block_id, row in table.iterrows():
            values = row.to_numpy(dtype=float)
            keep = np.isfinite(values)
            observed = values[keep]
            n_levels = len(np.unique(observed))
            units.append(
                TestUnit(
                    gene_id=gene,
                    block_id=block_id,
                    y=y,
                    design_full=design_from_groups(observed).to_numpy(dtype=float),
                    design_null=np.ones((int(keep.sum()), 1)),
                    prec=precision.get(gene),
                    df=int(degrees_of_freedom(y.shape[0], n_levels)),
                    keep=None if keep.all() else keep,
                    feature_ids=list(frame.index),
                )
            )
    return units


__all__ = [
    "DMData",
    "TestUnit",
    "design_from_groups",
    "design_rank_difference",
    "genotype_units",
    "group_units",
]
