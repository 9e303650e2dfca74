"""
Data ingestion.

Loads the prepared expression dataset produced by the upstream stage.
"""

from tissue_dge.ingest.base import ExpressionDataset
from tissue_dge.ingest.local_h5ad import from_anndata, load_dataset, to_anndata

__all__ = [
    "ExpressionDataset",
    "from_anndata",
    "load_dataset",
    "to_anndata",
]
