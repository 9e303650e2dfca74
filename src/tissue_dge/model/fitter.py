"""
Per-tumor-type model fitting.

For every stratum: optional expression filtering, TMM normalization,
dispersion estimation and the quasi-likelihood GLM fit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from tissue_dge.core.config import ModelConfig
from tissue_dge.ingest.base import ExpressionDataset
from tissue_dge.model.dispersion import DispersionEstimate, estimate_disp
from tissue_dge.model.normalization import ave_log_cpm, calc_norm_factors, filter_by_expr
from tissue_dge.model.quasi import QLFit, glm_ql_fit
from tissue_dge.stratify.design import DesignMatrix, Stratum, build_strata

logger = logging.getLogger(__name__)


@dataclass
class ModelFit:
    """Fitted quasi-likelihood model for one tumor type."""

    tumor_type: str
    design: DesignMatrix
    genes: pd.Index
    counts: np.ndarray
    """Counts used for fitting (genes x samples)."""

    lib_size: np.ndarray
    norm_factors: np.ndarray
    ave_log_cpm: np.ndarray
    dispersion: DispersionEstimate
    ql: QLFit

    @property
    def samples(self) -> pd.Index:
        return self.design.matrix.index

    @property
    def effective_lib_size(self) -> np.ndarray:
        return self.lib_size * self.norm_factors

    @property
    def offset(self) -> np.ndarray:
        return np.log(self.effective_lib_size)

    @property
    def coefficients(self) -> pd.DataFrame:
        """Prior-count coefficients (natural log), genes x design columns."""
        return pd.DataFrame(self.ql.coefficients, index=self.genes, columns=self.design.columns)

    def summary(self) -> dict:
        return {
            "tumor_type": self.tumor_type,
            "n_samples": int(self.counts.shape[1]),
            "n_genes": int(self.counts.shape[0]),
            "levels": self.design.levels,
            "common_dispersion": self.dispersion.common,
            "df_prior": self.ql.df_prior,
        }


def fit_stratum(stratum: Stratum, config: Optional[ModelConfig] = None) -> ModelFit:
    """Fit the quasi-likelihood model for one stratum."""
    config = config or ModelConfig()
    design = stratum.design
    counts_df = stratum.dataset.counts

    y = counts_df.values.T.astype(np.float64)
    genes = counts_df.columns
    lib_size = y.sum(axis=0)

    if config.filter_genes:
        keep = filter_by_expr(
            y,
            group=stratum.dataset.subtype.astype(str).values,
            lib_size=lib_size,
            min_count=config.min_count,
            min_total_count=config.min_total_count,
        )
        logger.info(
            "%s: keeping %d of %d genes after expression filter",
            stratum.tumor_type, int(keep.sum()), keep.size,
        )
        y = y[keep]
        genes = genes[keep]

    norm_factors = calc_norm_factors(y, lib_size=lib_size, method=config.norm_method)
    eff_lib = lib_size * norm_factors
    abundance = ave_log_cpm(y, eff_lib)

    dispersion = estimate_disp(
        y,
        design.values,
        np.log(eff_lib),
        abundance,
        prior_df=config.prior_df,
        grid_length=config.grid_length,
        grid_range=config.grid_range,
        span=config.span,
        robust=config.robust,
        max_iter=config.max_iter,
        tol=config.tol,
    )

    ql = glm_ql_fit(
        y,
        design.values,
        eff_lib,
        dispersion.trended,
        ave_log_cpm=abundance,
        prior_count=config.prior_count,
        span=dispersion.span,
        max_iter=config.max_iter,
        tol=config.tol,
    )

    fit = ModelFit(
        tumor_type=stratum.tumor_type,
        design=design,
        genes=genes,
        counts=y,
        lib_size=lib_size,
        norm_factors=norm_factors,
        ave_log_cpm=abundance,
        dispersion=dispersion,
        ql=ql,
    )
    logger.info(
        "Fitted %s: %d genes x %d samples, common dispersion %.4g, QL prior df %.3g",
        stratum.tumor_type, y.shape[0], y.shape[1], dispersion.common, ql.df_prior,
    )
    return fit


def fit_models(
    dataset: ExpressionDataset,
    tumor_types: Iterable[str],
    reference_by_type: Mapping[str, str],
    config: Optional[ModelConfig] = None,
    strata: Optional[Mapping[str, Stratum]] = None,
) -> dict[str, ModelFit]:
    """
    Fit one quasi-likelihood model per tumor type.

    Args:
        dataset: Filtered dataset.
        tumor_types: Tumor types to model, in output order.
        reference_by_type: Reference subtype per tumor type.
        config: Model configuration.
        strata: Pre-built strata (built from the dataset if omitted).

    Returns:
        Ordered mapping from tumor type to ModelFit.
    """
    tumor_types = list(tumor_types)
    if strata is None:
        strata = build_strata(dataset, tumor_types, reference_by_type)

    return {t: fit_stratum(strata[t], config) for t in tumor_types}
