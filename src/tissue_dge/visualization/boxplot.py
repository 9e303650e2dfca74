"""
Per-gene expression panels grouped by tissue subtype.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
from matplotlib.figure import Figure

from tissue_dge.core.config import PlotPolicy
from tissue_dge.stratify.design import Stratum
from tissue_dge.visualization.base import select_top_genes
from tissue_dge.visualization.heatmap import subtype_palette

logger = logging.getLogger(__name__)


def plot_gene_boxplots(
    long_table: pd.DataFrame,
    results: pd.DataFrame,
    stratum: Stratum,
    policy: PlotPolicy,
    ncols: int = 5,
    tumor_label: str = "TumorType",
) -> Optional[Figure]:
    """
    Box and strip plot grid for the selected genes of one tumor type.

    Only samples of the stratum are drawn; subtypes are ordered as the
    design levels (reference first).

    Returns:
        Figure, or None when no gene passes the policy.
    """
    genes = select_top_genes(results, stratum.tumor_type, policy, tumor_label)
    if not genes:
        logger.warning("%s: no genes pass the boxplot policy, skipping", stratum.tumor_type)
        return None

    subtype_col = stratum.dataset.subtype_col
    data = long_table.loc[
        long_table["gene"].isin(genes) & long_table["sample"].isin(stratum.samples)
    ].copy()
    data[subtype_col] = data[subtype_col].astype(str)

    order = stratum.design.levels
    palette = subtype_palette(order)

    ncols = max(1, min(ncols, len(genes)))
    nrows = math.ceil(len(genes) / ncols)
    fig, axes = plt.subplots(nrows, ncols, figsize=(3.0 * ncols, 3.0 * nrows), squeeze=False)

    for ax, gene in zip(axes.flat, genes):
        d = data.loc[data["gene"] == gene]
        sns.boxplot(
            data=d, x=subtype_col, y="expression", order=order, ax=ax,
            color="white", showfliers=False,
        )
        sns.stripplot(
            data=d, x=subtype_col, y="expression", order=order, ax=ax,
            hue=subtype_col, hue_order=order, palette=palette,
            size=3, alpha=0.8, jitter=0.2, legend=False,
        )
        ax.set_title(gene, fontsize=10)
        ax.set_xlabel("")
        ax.set_ylabel("log expression", fontsize=8)
        ax.tick_params(axis="x", labelrotation=45, labelsize=7)

    for ax in list(axes.flat)[len(genes):]:
        ax.set_visible(False)

    fig.suptitle(f"{stratum.tumor_type}: {policy.contrast}", fontsize=12)
    fig.tight_layout()
    return fig
