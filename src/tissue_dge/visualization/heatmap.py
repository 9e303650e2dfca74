"""
Clustered heatmaps of top genes per tumor type.
"""

from __future__ import annotations

import logging
from typing import Optional

import pandas as pd
import seaborn as sns
from matplotlib.patches import Patch

from tissue_dge.core.config import PlotPolicy
from tissue_dge.stratify.design import Stratum
from tissue_dge.visualization.base import select_top_genes

logger = logging.getLogger(__name__)


def subtype_palette(levels: list[str]) -> dict[str, tuple]:
    """Stable colour per tissue subtype level."""
    return dict(zip(levels, sns.color_palette("Set2", len(levels))))


def plot_heatmap(
    results: pd.DataFrame,
    stratum: Stratum,
    policy: PlotPolicy,
    tumor_label: str = "TumorType",
    cmap: str = "RdBu_r",
) -> Optional[sns.matrix.ClusterGrid]:
    """
    Row-scaled clustered heatmap of log expression for selected genes.

    Columns are the stratum's samples, annotated by tissue subtype. Genes
    without variance across those samples are dropped.

    Returns:
        seaborn ClusterGrid, or None when no gene can be shown.
    """
    genes = select_top_genes(results, stratum.tumor_type, policy, tumor_label)
    if not genes:
        logger.warning("%s: no genes pass the heatmap policy, skipping", stratum.tumor_type)
        return None

    expr = stratum.dataset.logcounts[genes].T
    expr = expr.loc[expr.std(axis=1) > 0]
    if expr.empty:
        logger.warning("%s: selected genes have no variance, skipping", stratum.tumor_type)
        return None

    palette = subtype_palette(stratum.design.levels)
    subtypes = stratum.dataset.subtype.astype(str)
    col_colors = subtypes.map(palette).rename(stratum.dataset.subtype_col)

    height = min(max(4.0, 0.18 * expr.shape[0] + 2.5), 20.0)
    grid = sns.clustermap(
        expr,
        z_score=0,
        cmap=cmap,
        center=0,
        col_colors=col_colors,
        row_cluster=expr.shape[0] > 1,
        col_cluster=expr.shape[1] > 1,
        xticklabels=False,
        yticklabels=True,
        figsize=(10, height),
        cbar_kws={"label": "z-score"},
    )

    handles = [Patch(facecolor=color, label=level) for level, color in palette.items()]
    grid.ax_col_dendrogram.legend(
        handles=handles, loc="center", ncol=min(len(handles), 5), frameon=False,
    )
    grid.figure.suptitle(f"{stratum.tumor_type}: {policy.contrast}", y=1.02)
    return grid
