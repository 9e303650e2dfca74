"""
Gene selection and figure saving shared by all views.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Union

import matplotlib.pyplot as plt
import pandas as pd
from matplotlib.figure import Figure

from tissue_dge.core.config import PlotPolicy

logger = logging.getLogger(__name__)

# Up, down and non-significant colours
COLORS = {
    "up": "#E41A1C",
    "down": "#377EB8",
    "ns": "lightgray",
}


def contrast_rows(
    results: pd.DataFrame,
    tumor_type: str,
    contrast: str,
    tumor_label: str = "TumorType",
) -> pd.DataFrame:
    """Rows of one (tumor type, contrast) test."""
    mask = (results[tumor_label] == tumor_type) & (results["contrast"] == contrast)
    return results.loc[mask]


def significant_mask(rows: pd.DataFrame, policy: PlotPolicy) -> pd.Series:
    return (rows["FDR"] < policy.fdr_threshold) & (rows["logFC"].abs() >= policy.lfc_threshold)


def select_top_genes(
    results: pd.DataFrame,
    tumor_type: str,
    policy: PlotPolicy,
    tumor_label: str = "TumorType",
) -> list[str]:
    """
    Genes passing a view's thresholds, ranked by absolute logFC.

    At most ``policy.top_n`` genes are returned; fewer genes pass, fewer are
    returned.
    """
    rows = contrast_rows(results, tumor_type, policy.contrast, tumor_label)
    passing = rows.loc[significant_mask(rows, policy)]
    ranked = passing.assign(_abs_lfc=passing["logFC"].abs()).sort_values(
        "_abs_lfc", ascending=False, kind="mergesort"
    )
    if policy.top_n is not None:
        ranked = ranked.head(policy.top_n)
    return ranked["gene"].tolist()


def save_figure(
    fig: Union[Figure, object],
    stem: Union[str, Path],
    formats: Iterable[str] = ("png", "pdf"),
    dpi: int = 150,
) -> list[Path]:
    """
    Save a figure (or seaborn grid) in several formats and close it.

    Returns:
        Written paths.
    """
    stem = Path(stem)
    stem.parent.mkdir(parents=True, exist_ok=True)
    figure = fig if isinstance(fig, Figure) else fig.figure

    paths = []
    for fmt in formats:
        path = stem.parent / f"{stem.name}.{fmt}"
        figure.savefig(path, dpi=dpi, bbox_inches="tight")
        paths.append(path)
        logger.info("  Saved: %s", path)

    plt.close(figure)
    return paths
