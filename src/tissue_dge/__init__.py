"""
tissue-dge - Stratified differential gene expression between tissue subtypes.

This package provides:
- Loading of prepared sample-level counts and metadata (H5AD)
- Per-tumor-type negative binomial quasi-likelihood models (TMM, dispersion
  estimation, empirical Bayes squeezing)
- Pairwise and composite contrasts with F-tests and per-test FDR
- Volcano, heatmap and boxplot figures
- Parquet export of the stacked result table

Example:
    >>> from tissue_dge import Config, DGEPipeline
    >>>
    >>> config = Config.from_yaml("config/default.yaml")
    >>> result = DGEPipeline(config).run()
    >>> result.summary
"""

__version__ = "0.1.0"

# Core infrastructure
from tissue_dge.core.config import Config, ContrastSpec, ModelConfig, PlotConfig, PlotPolicy
from tissue_dge.core.paths import OutputPaths

# Subpackages are imported as needed:
#   from tissue_dge.model import fit_models
#   from tissue_dge.differential import test_all
#   from tissue_dge.visualization import plot_volcano

# Main Pipeline class
from tissue_dge.pipeline import DGEPipeline, PipelineResult, create_pipeline

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "DGEPipeline",
    "PipelineResult",
    "create_pipeline",
    # Core
    "Config",
    "ContrastSpec",
    "ModelConfig",
    "PlotConfig",
    "PlotPolicy",
    "OutputPaths",
]
