"""
Analysis configuration management.

Provides dataclass-based configuration with validation and serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Optional, Union

import yaml


@dataclass
class ModelConfig:
    """Quasi-likelihood GLM configuration."""

    norm_method: str = "TMM"
    """Normalization method ("TMM" or "none")."""

    prior_count: float = 0.125
    """Prior count added before computing reported log-fold-changes."""

    prior_df: float = 10.0
    """Prior degrees of freedom for tagwise dispersion shrinkage."""

    grid_length: int = 21
    """Number of log2-spaced dispersion grid points."""

    grid_range: tuple[float, float] = (-10.0, 10.0)
    """Grid range in log2 units around 0.1."""

    span: Optional[float] = None
    """Lowess span for the abundance trend (None picks from gene count)."""

    robust: bool = False
    """Use robust lowess iterations when fitting abundance trends."""

    filter_genes: bool = False
    """Drop lowly expressed genes per stratum before fitting."""

    min_count: float = 10.0
    """Minimum count for gene filtering."""

    min_total_count: float = 15.0
    """Minimum total count for gene filtering."""

    max_iter: int = 50
    """Maximum Fisher scoring iterations per GLM fit."""

    tol: float = 1e-8
    """Relative deviance tolerance for GLM convergence."""


@dataclass
class ContrastSpec:
    """
    A named comparison between groups of design columns.

    Example:
        >>> ContrastSpec("LUAD", "TLS_vs_Tumor", ["Tumor"], ["E-TLS", "SFL-TLS"])
    """

    tumor_type: str
    """Stratum the contrast is evaluated in."""

    name: str
    """Contrast label carried into the result table."""

    reference: tuple[str, ...]
    """Design columns weighted negatively."""

    target: tuple[str, ...]
    """Design columns weighted positively."""

    def __post_init__(self):
        if isinstance(self.reference, str):
            self.reference = (self.reference,)
        if isinstance(self.target, str):
            self.target = (self.target,)
        self.reference = tuple(self.reference)
        self.target = tuple(self.target)

    @property
    def kind(self) -> str:
        """Either "pairwise" or "composite"."""
        if len(self.reference) == 1 and len(self.target) == 1:
            return "pairwise"
        return "composite"


@dataclass
class PlotPolicy:
    """Gene selection policy for one figure type."""

    contrast: str
    """Contrast the view is drawn from."""

    fdr_threshold: float = 0.05
    """Genes must have FDR strictly below this."""

    lfc_threshold: float = 0.0
    """Genes must have |logFC| at least this."""

    top_n: Optional[int] = None
    """Maximum number of genes (None keeps all passing genes)."""

    label_n: int = 10
    """Number of genes annotated (volcano only)."""


@dataclass
class PlotConfig:
    """Figure rendering configuration."""

    enabled: bool = True
    """Render figures during a run."""

    volcano: PlotPolicy = field(default_factory=lambda: PlotPolicy(
        contrast="", fdr_threshold=0.01, lfc_threshold=1.0, label_n=10,
    ))
    heatmap: PlotPolicy = field(default_factory=lambda: PlotPolicy(
        contrast="", fdr_threshold=0.05, lfc_threshold=0.0, top_n=50,
    ))
    boxplot: PlotPolicy = field(default_factory=lambda: PlotPolicy(
        contrast="", fdr_threshold=0.05, lfc_threshold=1.0, top_n=25,
    ))

    formats: list[str] = field(default_factory=lambda: ["png", "pdf"])
    """File formats written for each figure."""

    dpi: int = 150
    """Raster resolution."""

    ncols: int = 5
    """Panels per row in the boxplot grid."""


def _policy(value: Union[PlotPolicy, dict[str, Any]]) -> PlotPolicy:
    if isinstance(value, PlotPolicy):
        return value
    return PlotPolicy(**value)


@dataclass
class Config:
    """
    Main analysis configuration.

    Example:
        >>> config = Config.from_yaml("config/default.yaml")
        >>> pipeline = DGEPipeline(config)
    """

    tumor_types: list[str] = field(default_factory=list)
    """Tumor types modelled as independent strata (in output order)."""

    reference_by_type: dict[str, str] = field(default_factory=dict)
    """Baseline tissue subtype for each tumor type."""

    excluded_subtypes: list[str] = field(default_factory=list)
    """Tissue subtypes removed before modelling."""

    contrasts: list[ContrastSpec] = field(default_factory=list)
    """Contrast definitions (evaluated in list order per tumor type)."""

    tumor_col: str = "TumorType"
    """Metadata column with the tumor type."""

    subtype_col: str = "TissueSub"
    """Metadata column with the tissue subtype."""

    counts_layer: str = "counts"
    """AnnData layer holding raw counts."""

    logcounts_layer: Optional[str] = None
    """AnnData layer holding log-normalized values (None for .X)."""

    fdr_method: str = "fdr_bh"
    """Multiple-testing correction applied within each test."""

    model: ModelConfig = field(default_factory=ModelConfig)
    plots: PlotConfig = field(default_factory=PlotConfig)

    # Paths
    outputs_dir: Path = Path("../outputs")
    """Directory holding stage artifacts."""

    input_name: str = "01-sce.h5ad"
    """Upstream artifact file name."""

    output_name: str = "02-dge.parquet"
    """Result artifact file name."""

    figures_dir: Optional[Path] = None
    """Figure directory (defaults to outputs_dir/figures/<stage>)."""

    def __post_init__(self):
        """Normalize nested values and paths."""
        self.outputs_dir = Path(self.outputs_dir)
        if self.figures_dir is not None:
            self.figures_dir = Path(self.figures_dir)

        self.contrasts = [
            c if isinstance(c, ContrastSpec) else ContrastSpec(**c)
            for c in self.contrasts
        ]
        self.model.grid_range = tuple(self.model.grid_range)

        missing = [t for t in self.tumor_types if t not in self.reference_by_type]
        if missing:
            raise ValueError(f"No reference subtype configured for: {missing}")

    def contrasts_for(self, tumor_type: str) -> list[ContrastSpec]:
        """Contrasts defined for one tumor type, in definition order."""
        return [c for c in self.contrasts if c.tumor_type == tumor_type]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, Path):
                d[key] = str(value)
        d["model"]["grid_range"] = list(d["model"]["grid_range"])
        for c in d["contrasts"]:
            c["reference"] = list(c["reference"])
            c["target"] = list(c["target"])
        return d

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Config":
        """Create from dictionary."""
        d = dict(d)
        if "model" in d and isinstance(d["model"], dict):
            d["model"] = ModelConfig(**d["model"])
        if "plots" in d and isinstance(d["plots"], dict):
            plots = dict(d["plots"])
            for view in ("volcano", "heatmap", "boxplot"):
                if view in plots:
                    plots[view] = _policy(plots[view])
            d["plots"] = PlotConfig(**plots)
        return cls(**d)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(path) as f:
            d = yaml.safe_load(f) or {}
        return cls.from_dict(d)
