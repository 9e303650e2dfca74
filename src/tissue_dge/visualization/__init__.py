"""
Figures for differential expression results.

Each view applies its own gene selection policy and never modifies the
result table.
"""

from tissue_dge.visualization.base import save_figure, select_top_genes
from tissue_dge.visualization.volcano import plot_volcano
from tissue_dge.visualization.heatmap import plot_heatmap
from tissue_dge.visualization.boxplot import plot_gene_boxplots

__all__ = [
    "save_figure",
    "select_top_genes",
    "plot_volcano",
    "plot_heatmap",
    "plot_gene_boxplots",
]
