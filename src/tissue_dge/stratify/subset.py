"""
Sample exclusion and long-format reshaping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import pandas as pd

from tissue_dge.ingest.base import ExpressionDataset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReshapedData:
    """Wide and long views of the retained samples."""

    wide: ExpressionDataset
    """Filtered dataset (samples x genes) used for modelling."""

    long: pd.DataFrame
    """One row per (sample, gene) with metadata, used for plotting."""


def to_long(dataset: ExpressionDataset) -> pd.DataFrame:
    """
    Melt log-normalized expression to one row per sample and gene.

    Columns are ``sample``, every metadata column, ``gene`` and
    ``expression``. Rows are ordered gene-major.
    """
    expr = dataset.logcounts.copy()
    expr.index = expr.index.rename("sample")

    long = expr.reset_index().melt(
        id_vars=["sample"],
        var_name="gene",
        value_name="expression",
    )

    obs = dataset.obs.copy()
    obs.index = obs.index.rename("sample")
    long = long.merge(obs.reset_index(), on="sample", how="left")

    meta_cols = [c for c in obs.columns if c not in ("gene", "expression")]
    return long[["sample", *meta_cols, "gene", "expression"]]


def filter_and_reshape(
    dataset: ExpressionDataset,
    excluded_subtypes: Iterable[str],
) -> ReshapedData:
    """
    Remove excluded tissue subtypes and build the long view.

    Args:
        dataset: Loaded dataset (not modified).
        excluded_subtypes: Subtype labels whose samples are dropped.

    Returns:
        ReshapedData with the filtered dataset and its long table.
    """
    excluded = set(excluded_subtypes)
    keep = ~dataset.subtype.astype(str).isin(excluded)
    wide = dataset.subset(keep.values)

    logger.info(
        "Excluded %d samples in subtypes %s; %d samples retained",
        dataset.n_samples - wide.n_samples,
        sorted(excluded),
        wide.n_samples,
    )
    return ReshapedData(wide=wide, long=to_long(wide))
