"""
Volcano plots, one panel per tumor type.
"""

from __future__ import annotations

from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from tissue_dge.core.config import PlotPolicy
from tissue_dge.visualization.base import COLORS, contrast_rows, significant_mask


def plot_volcano(
    results: pd.DataFrame,
    tumor_types: Sequence[str],
    policy: PlotPolicy,
    tumor_label: str = "TumorType",
    panel_size: tuple[float, float] = (5.0, 4.5),
) -> Figure:
    """
    Effect size vs significance for one contrast, side by side per tumor type.

    Genes with FDR below the policy threshold and |logFC| at least the
    policy threshold are coloured by direction; the ``label_n`` most
    significant of them are annotated.
    """
    n = len(tumor_types)
    fig, axes = plt.subplots(
        1, max(n, 1), figsize=(panel_size[0] * max(n, 1), panel_size[1]), squeeze=False
    )

    for ax, tumor_type in zip(axes[0], tumor_types):
        data = contrast_rows(results, tumor_type, policy.contrast, tumor_label)
        ax.set_title(f"{tumor_type}: {policy.contrast}", fontsize=12, fontweight="bold")

        if data.empty:
            ax.text(0.5, 0.5, "No results", ha="center", va="center", transform=ax.transAxes)
            ax.set_axis_off()
            continue

        neg_log_p = -np.log10(data["PValue"].clip(lower=1e-300))
        sig = significant_mask(data, policy)
        up = sig & (data["logFC"] > 0)
        down = sig & (data["logFC"] < 0)
        colors = np.select([up.values, down.values], [COLORS["up"], COLORS["down"]], COLORS["ns"])

        ax.scatter(data["logFC"], neg_log_p, c=colors, s=8, alpha=0.7, linewidths=0)

        if policy.lfc_threshold > 0:
            ax.axvline(x=policy.lfc_threshold, color="gray", linestyle="--", alpha=0.5)
            ax.axvline(x=-policy.lfc_threshold, color="gray", linestyle="--", alpha=0.5)

        # FDR threshold drawn at the largest p-value still passing it
        passing_p = data.loc[data["FDR"] < policy.fdr_threshold, "PValue"]
        if not passing_p.empty:
            ax.axhline(y=-np.log10(max(passing_p.max(), 1e-300)), color="gray",
                       linestyle="--", alpha=0.5)

        top_hits = data.loc[sig].nsmallest(policy.label_n, "PValue")
        for _, row in top_hits.iterrows():
            ax.annotate(
                row["gene"],
                (row["logFC"], -np.log10(max(row["PValue"], 1e-300))),
                fontsize=7, ha="center", va="bottom",
            )

        ax.set_xlabel("log2 Fold Change", fontsize=10)
        ax.set_ylabel("-log10(p-value)", fontsize=10)
        ax.text(
            0.02, 0.98, f"up {int(up.sum())}\ndown {int(down.sum())}",
            transform=ax.transAxes, va="top", fontsize=8,
        )

    fig.tight_layout()
    return fig
