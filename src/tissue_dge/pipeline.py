"""
Main pipeline class that runs the differential expression stage.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

import pandas as pd

from tissue_dge.core.config import Config, PlotPolicy
from tissue_dge.core.paths import OutputPaths
from tissue_dge.differential import build_contrasts, summarize_results, test_all
from tissue_dge.export import ResultWriter
from tissue_dge.ingest import ExpressionDataset, load_dataset
from tissue_dge.model import ModelFit, fit_models
from tissue_dge.stratify import ReshapedData, Stratum, build_strata, filter_and_reshape
from tissue_dge.visualization import (
    plot_gene_boxplots,
    plot_heatmap,
    plot_volcano,
    save_figure,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Result of one pipeline run."""

    results: pd.DataFrame
    """Stacked per-test result table."""

    summary: pd.DataFrame
    """Up/down/not-significant counts per test."""

    reshaped: ReshapedData
    strata: dict[str, Stratum] = field(default_factory=dict)
    fits: dict[str, ModelFit] = field(default_factory=dict)
    figure_paths: list[Path] = field(default_factory=list)
    output_path: Optional[Path] = None


def _slug(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", text).strip("_")


def _expand_policy(policy: PlotPolicy, contrast_names: list[str]) -> list[PlotPolicy]:
    """One policy per contrast when the policy does not name one."""
    if policy.contrast:
        return [policy]
    return [replace(policy, contrast=name) for name in contrast_names]


class DGEPipeline:
    """Stratified quasi-likelihood differential expression.

    Example:
        >>> from tissue_dge import Config, DGEPipeline
        >>>
        >>> config = Config.from_yaml("config/default.yaml")
        >>> pipeline = DGEPipeline(config)
        >>> result = pipeline.run()
        >>> result.results.head()
    """

    def __init__(self, config: Config, paths: Optional[OutputPaths] = None):
        self.config = config
        self.paths = paths or OutputPaths.from_config(config)

    def load(self) -> ExpressionDataset:
        """Load the upstream dataset artifact."""
        config = self.config
        return load_dataset(
            self.paths.input_artifact,
            tumor_col=config.tumor_col,
            subtype_col=config.subtype_col,
            counts_layer=config.counts_layer,
            logcounts_layer=config.logcounts_layer,
        )

    def prepare(self, dataset: ExpressionDataset) -> tuple[ReshapedData, dict[str, Stratum]]:
        """Exclude subtypes and split the retained samples by tumor type."""
        reshaped = filter_and_reshape(dataset, self.config.excluded_subtypes)
        strata = build_strata(
            reshaped.wide, self.config.tumor_types, self.config.reference_by_type
        )
        return reshaped, strata

    def analyze(self, dataset: ExpressionDataset) -> PipelineResult:
        """Fit every stratum and test every contrast, without writing anything."""
        config = self.config
        reshaped, strata = self.prepare(dataset)

        fits = fit_models(
            reshaped.wide,
            config.tumor_types,
            config.reference_by_type,
            config=config.model,
            strata=strata,
        )
        contrasts = build_contrasts(fits, config.contrasts)
        results = test_all(
            fits,
            contrasts,
            fdr_method=config.fdr_method,
            tumor_label=config.tumor_col,
            max_iter=config.model.max_iter,
            tol=config.model.tol,
        )

        summary = summarize_results(results, tumor_label=config.tumor_col)
        for (tumor_type, contrast), row in summary.iterrows():
            logger.info(
                "%s / %s: %d up, %d down, %d not significant",
                tumor_type, contrast, row["Up"], row["Down"], row["NotSig"],
            )

        return PipelineResult(
            results=results,
            summary=summary,
            reshaped=reshaped,
            strata=strata,
            fits=fits,
        )

    def render_figures(
        self,
        results: pd.DataFrame,
        reshaped: ReshapedData,
        strata: Mapping[str, Stratum],
    ) -> list[Path]:
        """Draw and save volcano, heatmap and boxplot figures."""
        config = self.config
        plots = config.plots
        self.paths.ensure_output_dirs(figures=True)

        def _save(fig, name: str) -> list[Path]:
            return save_figure(
                fig, self.paths.figures_dir / _slug(name), formats=plots.formats, dpi=plots.dpi,
            )

        written: list[Path] = []
        all_names = list(dict.fromkeys(c.name for c in config.contrasts))

        for policy in _expand_policy(plots.volcano, all_names):
            fig = plot_volcano(results, list(strata), policy, tumor_label=config.tumor_col)
            written += _save(fig, f"volcano_{policy.contrast}")

        for tumor_type, stratum in strata.items():
            names = [c.name for c in config.contrasts_for(tumor_type)]

            for policy in _expand_policy(plots.heatmap, names):
                grid = plot_heatmap(results, stratum, policy, tumor_label=config.tumor_col)
                if grid is not None:
                    written += _save(grid, f"heatmap_{tumor_type}_{policy.contrast}")

            for policy in _expand_policy(plots.boxplot, names):
                fig = plot_gene_boxplots(
                    reshaped.long, results, stratum, policy,
                    ncols=plots.ncols, tumor_label=config.tumor_col,
                )
                if fig is not None:
                    written += _save(fig, f"boxplot_{tumor_type}_{policy.contrast}")

        logger.info("Rendered %d figure files to %s", len(written), self.paths.figures_dir)
        return written

    def run(
        self,
        dataset: Optional[ExpressionDataset] = None,
        figures: Optional[bool] = None,
    ) -> PipelineResult:
        """Run the full stage: load, fit, test, draw and persist.

        Parameters
        ----------
        dataset : ExpressionDataset, optional
            Pre-loaded dataset (read from the input artifact if omitted)
        figures : bool, optional
            Override ``config.plots.enabled``

        Returns
        -------
        PipelineResult
            Results, fitted models and written paths
        """
        if figures is None:
            figures = self.config.plots.enabled

        try:
            if dataset is None:
                dataset = self.load()
            result = self.analyze(dataset)

            # Figures first so a drawing failure leaves no result artifact
            if figures:
                result.figure_paths = self.render_figures(
                    result.results, result.reshaped, result.strata
                )

            self.paths.ensure_output_dirs(figures=False)
            writer = ResultWriter(self.paths.outputs_dir)
            result.output_path = writer.write_results(result.results, self.paths.output_name)
        except Exception as e:
            logger.error("Pipeline failed: %s", e)
            raise

        return result


def create_pipeline(
    config_path: Optional[str | Path] = None,
    outputs_dir: Optional[str | Path] = None,
    **kwargs,
) -> DGEPipeline:
    """Factory function to create a pipeline from a YAML file or options.

    Parameters
    ----------
    config_path : str or Path, optional
        YAML configuration file
    outputs_dir : str or Path, optional
        Override for the outputs directory
    **kwargs
        Config fields used when no file is given

    Returns
    -------
    DGEPipeline
        Configured pipeline instance
    """
    config = Config.from_yaml(config_path) if config_path else Config.from_dict(kwargs)
    if outputs_dir is not None:
        config.outputs_dir = Path(outputs_dir)
    return DGEPipeline(config)
