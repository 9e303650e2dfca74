"""
Core infrastructure for tissue-dge.

Provides:
- Configuration management
- Stage artifact path resolution
"""

from tissue_dge.core.config import (
    Config,
    ContrastSpec,
    ModelConfig,
    PlotConfig,
    PlotPolicy,
)
from tissue_dge.core.paths import OutputPaths

__all__ = [
    "Config",
    "ContrastSpec",
    "ModelConfig",
    "PlotConfig",
    "PlotPolicy",
    "OutputPaths",
]
