"""
Design matrices and per-tumor-type strata.

Each tumor type is modelled independently. Its design matrix is a
no-intercept one-hot encoding of the tissue subtypes present in that tumor
type, with the reference subtype as the first column.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from tissue_dge.ingest.base import ExpressionDataset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DesignMatrix:
    """One-hot design with named columns."""

    matrix: pd.DataFrame
    """Samples x levels indicator matrix (float)."""

    reference: str
    """Baseline level (first column)."""

    @property
    def levels(self) -> list[str]:
        return list(self.matrix.columns)

    @property
    def columns(self) -> pd.Index:
        return self.matrix.columns

    @property
    def values(self) -> np.ndarray:
        return self.matrix.values

    @property
    def n_coef(self) -> int:
        return self.matrix.shape[1]

    @property
    def df_residual(self) -> int:
        return self.matrix.shape[0] - int(np.linalg.matrix_rank(self.matrix.values))


def ordered_levels(labels: pd.Series, reference: str) -> list[str]:
    """
    Levels observed in ``labels`` with ``reference`` moved to the front.

    Categorical order is kept for the remaining levels; levels without any
    sample are dropped.
    """
    if isinstance(labels.dtype, pd.CategoricalDtype):
        present = set(labels.dropna().astype(str))
        levels = [str(c) for c in labels.cat.categories if str(c) in present]
    else:
        levels = sorted(set(labels.dropna().astype(str)))

    if reference not in levels:
        raise ValueError(
            f"Reference level '{reference}' absent after filtering. Available: {levels}"
        )
    return [reference] + [lv for lv in levels if lv != reference]


def one_hot(labels: Sequence[str], levels: Sequence[str], index=None) -> pd.DataFrame:
    """No-intercept indicator matrix with one column per level."""
    labels = np.asarray(labels, dtype=str)
    unknown = sorted(set(labels) - set(levels))
    if unknown:
        raise ValueError(f"Labels not among design levels: {unknown}")

    matrix = (labels[:, None] == np.asarray(levels, dtype=str)[None, :]).astype(np.float64)
    return pd.DataFrame(matrix, index=index, columns=pd.Index(list(levels)))


def build_design(labels: pd.Series, reference: str) -> DesignMatrix:
    """
    Build the releveled no-intercept design for one stratum.

    Example:
        >>> design = build_design(obs["TissueSub"], reference="Tumor")
        >>> design.levels[0]
        'Tumor'
    """
    levels = ordered_levels(labels, reference)
    matrix = one_hot(labels.astype(str).values, levels, index=labels.index)
    return DesignMatrix(matrix=matrix, reference=reference)


@dataclass(frozen=True)
class Stratum:
    """Samples and design for one tumor type."""

    tumor_type: str
    dataset: ExpressionDataset
    design: DesignMatrix

    @property
    def samples(self) -> pd.Index:
        return self.dataset.obs.index


def build_strata(
    dataset: ExpressionDataset,
    tumor_types: Iterable[str],
    reference_by_type: Mapping[str, str],
) -> dict[str, Stratum]:
    """
    Split a dataset into per-tumor-type strata.

    Args:
        dataset: Filtered dataset.
        tumor_types: Tumor types to model, in output order.
        reference_by_type: Reference subtype per tumor type.

    Returns:
        Ordered mapping from tumor type to Stratum.
    """
    strata: dict[str, Stratum] = {}
    tumor_labels = dataset.tumor_type.astype(str)

    for tumor_type in tumor_types:
        if tumor_type not in reference_by_type:
            raise KeyError(f"No reference subtype for tumor type '{tumor_type}'")

        mask = (tumor_labels == tumor_type).values
        if not mask.any():
            raise ValueError(f"No samples with {dataset.tumor_col} == '{tumor_type}'")

        sub = dataset.subset(mask)
        design = build_design(sub.subtype, reference_by_type[tumor_type])
        strata[tumor_type] = Stratum(tumor_type=tumor_type, dataset=sub, design=design)

        logger.info(
            "Stratum %s: %d samples, levels %s (reference %s)",
            tumor_type, sub.n_samples, design.levels, design.reference,
        )

    return strata
