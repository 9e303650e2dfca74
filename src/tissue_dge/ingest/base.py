"""
In-memory expression dataset.

Holds the samples x genes expression matrices and per-sample metadata that
every downstream stage reads from.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class ExpressionDataset:
    """
    Expression matrices with aligned sample metadata.

    Operations return new datasets; the matrices of an existing dataset are
    never modified in place.
    """

    logcounts: pd.DataFrame
    """Log-normalized expression (samples x genes)."""

    counts: pd.DataFrame
    """Raw counts (samples x genes), same labels as ``logcounts``."""

    obs: pd.DataFrame
    """Sample metadata indexed by sample."""

    tumor_col: str = "TumorType"
    """Metadata column with the tumor type."""

    subtype_col: str = "TissueSub"
    """Metadata column with the tissue subtype."""

    def __post_init__(self):
        if not self.logcounts.index.equals(self.obs.index):
            raise ValueError("logcounts and obs sample index differ")
        if not self.counts.index.equals(self.obs.index):
            raise ValueError("counts and obs sample index differ")
        if not self.counts.columns.equals(self.logcounts.columns):
            raise ValueError("counts and logcounts gene columns differ")
        for col in (self.tumor_col, self.subtype_col):
            if col not in self.obs.columns:
                raise ValueError(f"Metadata column '{col}' not in obs")

    @property
    def n_samples(self) -> int:
        return self.obs.shape[0]

    @property
    def n_genes(self) -> int:
        return self.counts.shape[1]

    @property
    def genes(self) -> pd.Index:
        return self.counts.columns

    @property
    def tumor_type(self) -> pd.Series:
        return self.obs[self.tumor_col]

    @property
    def subtype(self) -> pd.Series:
        return self.obs[self.subtype_col]

    def subset(self, mask: Union[np.ndarray, pd.Series]) -> "ExpressionDataset":
        """
        Select samples by boolean mask.

        Unused categories are removed from categorical metadata columns.
        """
        mask = np.asarray(mask, dtype=bool)
        obs = self.obs.loc[mask].copy()
        for col in obs.columns:
            if isinstance(obs[col].dtype, pd.CategoricalDtype):
                obs[col] = obs[col].cat.remove_unused_categories()

        return ExpressionDataset(
            logcounts=self.logcounts.loc[mask].copy(),
            counts=self.counts.loc[mask].copy(),
            obs=obs,
            tumor_col=self.tumor_col,
            subtype_col=self.subtype_col,
        )

    def __repr__(self) -> str:
        return (
            f"ExpressionDataset(n_samples={self.n_samples}, n_genes={self.n_genes}, "
            f"tumor_col='{self.tumor_col}', subtype_col='{self.subtype_col}')"
        )
