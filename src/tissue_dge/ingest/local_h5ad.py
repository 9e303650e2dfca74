"""
Local H5AD dataset loader.

Reads the prepared single-cell/bulk experiment written by the upstream
stage: log-normalized values in ``X`` (or a named layer) and raw counts in
a counts layer.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import anndata as ad
import numpy as np
import pandas as pd
from scipy import sparse as sp

from tissue_dge.ingest.base import ExpressionDataset

logger = logging.getLogger(__name__)


def _dense(X) -> np.ndarray:
    if sp.issparse(X):
        return X.toarray()
    return np.asarray(X)


def from_anndata(
    adata: ad.AnnData,
    tumor_col: str = "TumorType",
    subtype_col: str = "TissueSub",
    counts_layer: str = "counts",
    logcounts_layer: Optional[str] = None,
) -> ExpressionDataset:
    """
    Build an ExpressionDataset from an AnnData object.

    Args:
        adata: Samples x genes AnnData.
        tumor_col: obs column with the tumor type.
        subtype_col: obs column with the tissue subtype.
        counts_layer: Layer holding raw counts.
        logcounts_layer: Layer holding log-normalized values (None for X).

    Returns:
        Dense ExpressionDataset with categorical label columns.
    """
    if counts_layer not in adata.layers:
        raise ValueError(
            f"Counts layer '{counts_layer}' not found. Available: {list(adata.layers.keys())}"
        )
    if logcounts_layer is not None and logcounts_layer not in adata.layers:
        raise ValueError(
            f"Logcounts layer '{logcounts_layer}' not found. Available: {list(adata.layers.keys())}"
        )

    for col in (tumor_col, subtype_col):
        if col not in adata.obs.columns:
            raise ValueError(f"Metadata column '{col}' not in obs")
        n_missing = int(adata.obs[col].isna().sum())
        if n_missing:
            raise ValueError(f"Metadata column '{col}' has {n_missing} missing labels")

    samples = pd.Index(adata.obs_names.astype(str), name="sample")
    genes = pd.Index(adata.var_names.astype(str), name="gene")
    if genes.has_duplicates:
        raise ValueError("Gene identifiers must be unique")

    X_log = adata.X if logcounts_layer is None else adata.layers[logcounts_layer]
    logcounts = pd.DataFrame(_dense(X_log).astype(np.float64), index=samples, columns=genes)
    counts = pd.DataFrame(
        _dense(adata.layers[counts_layer]).astype(np.float64), index=samples, columns=genes
    )

    values = counts.values
    if not np.all(np.isfinite(values)) or np.any(values < 0):
        raise ValueError("Counts must be finite and non-negative")

    obs = adata.obs.copy()
    obs.index = samples
    for col in (tumor_col, subtype_col):
        obs[col] = obs[col].astype(str).astype("category")

    return ExpressionDataset(
        logcounts=logcounts,
        counts=counts,
        obs=obs,
        tumor_col=tumor_col,
        subtype_col=subtype_col,
    )


def load_dataset(
    path: Union[str, Path],
    tumor_col: str = "TumorType",
    subtype_col: str = "TissueSub",
    counts_layer: str = "counts",
    logcounts_layer: Optional[str] = None,
) -> ExpressionDataset:
    """
    Load the prepared dataset from an H5AD file.

    Example:
        >>> dataset = load_dataset("../outputs/01-sce.h5ad")
        >>> print(dataset)
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"H5AD file not found: {path}")

    adata = ad.read_h5ad(path)
    dataset = from_anndata(
        adata,
        tumor_col=tumor_col,
        subtype_col=subtype_col,
        counts_layer=counts_layer,
        logcounts_layer=logcounts_layer,
    )
    logger.info(
        "Loaded %s: %d samples x %d genes", path, dataset.n_samples, dataset.n_genes
    )
    return dataset


def to_anndata(dataset: ExpressionDataset, counts_layer: str = "counts") -> ad.AnnData:
    """Convert back to AnnData (logcounts in X, counts in a layer)."""
    adata = ad.AnnData(
        X=dataset.logcounts.values.copy(),
        obs=dataset.obs.copy(),
        var=pd.DataFrame(index=dataset.genes.copy()),
    )
    adata.layers[counts_layer] = dataset.counts.values.copy()
    return adata
