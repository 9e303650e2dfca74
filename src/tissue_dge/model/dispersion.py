"""
Negative binomial dispersion estimation with empirical Bayes shrinkage.

Adjusted profile likelihoods are evaluated on a log2 grid of dispersions.
The common dispersion maximizes their sum; the trended dispersion maximizes
curves smoothed against gene abundance; tagwise dispersions maximize each
gene's curve plus a prior-weighted share of the trend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from statsmodels.nonparametric.smoothers_lowess import lowess

from tissue_dge.model.glm import adjusted_profile_loglik

logger = logging.getLogger(__name__)


@dataclass
class DispersionEstimate:
    """Dispersion estimates for one design."""

    common: float
    """Single dispersion shared by all genes."""

    trended: np.ndarray
    """Abundance-dependent dispersion per gene."""

    tagwise: np.ndarray
    """Shrunken gene-specific dispersion."""

    prior_n: float
    """Prior weight of the trend (prior_df / residual df)."""

    span: float
    """Lowess span used for the trend."""


def default_span(n_genes: int) -> float:
    """Trend span shrinking with the number of genes."""
    if n_genes <= 50:
        return 1.0
    return 0.25 + 0.75 * (50 / n_genes) ** 0.5


def maximize_interpolant(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Location of the maximum of each row of ``y`` sampled on grid ``x``.

    The grid maximum is refined by the vertex of the parabola through it and
    its two neighbours; maxima on the grid boundary are returned as is.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.atleast_2d(np.asarray(y, dtype=np.float64))
    k = np.argmax(y, axis=1)
    result = x[k].copy()

    inner = (k > 0) & (k < x.size - 1)
    if inner.any():
        rows = np.nonzero(inner)[0]
        ki = k[inner]
        y0, y1, y2 = y[rows, ki - 1], y[rows, ki], y[rows, ki + 1]
        h = x[ki + 1] - x[ki]
        curvature = y0 - 2 * y1 + y2
        with np.errstate(divide="ignore", invalid="ignore"):
            shift = np.where(curvature < 0, 0.5 * (y0 - y2) / curvature * h, 0.0)
        result[rows] += np.clip(shift, -h, h)

    return result


def smooth_by_covariate(
    values: np.ndarray,
    covariate: np.ndarray,
    span: float,
    robust: bool = False,
) -> np.ndarray:
    """Lowess-smooth every column of ``values`` against ``covariate``."""
    values = np.asarray(values, dtype=np.float64)
    covariate = np.asarray(covariate, dtype=np.float64)
    spread = float(np.ptp(covariate)) if covariate.size else 0.0
    if values.shape[0] < 3 or spread == 0.0:
        return np.repeat(values.mean(axis=0, keepdims=True), values.shape[0], axis=0)

    delta = 0.01 * spread
    it = 3 if robust else 0
    smoothed = np.empty_like(values)
    for j in range(values.shape[1]):
        smoothed[:, j] = lowess(
            values[:, j], covariate, frac=span, it=it, delta=delta, return_sorted=False,
        )
    return smoothed


def estimate_disp(
    y: np.ndarray,
    design: np.ndarray,
    offset: np.ndarray,
    ave_log_cpm: np.ndarray,
    prior_df: float = 10.0,
    grid_length: int = 21,
    grid_range: tuple[float, float] = (-10.0, 10.0),
    span: Optional[float] = None,
    robust: bool = False,
    max_iter: int = 50,
    tol: float = 1e-8,
) -> DispersionEstimate:
    """
    Estimate common, trended and tagwise NB dispersions.

    Args:
        y: Counts (genes x samples).
        design: Design matrix (samples x coefficients).
        offset: Log effective library sizes.
        ave_log_cpm: Abundance covariate per gene.
        prior_df: Prior degrees of freedom toward the trend.
        grid_length: Number of grid points.
        grid_range: log2 range of the grid around 0.1.
        span: Lowess span (default depends on the number of genes).
        robust: Use robustifying lowess iterations.

    Returns:
        DispersionEstimate.
    """
    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(design, dtype=np.float64)
    ave_log_cpm = np.asarray(ave_log_cpm, dtype=np.float64)
    n_genes, n_samples = y.shape

    df_residual = n_samples - int(np.linalg.matrix_rank(X))
    if df_residual <= 0:
        raise ValueError(
            f"No residual degrees of freedom: {n_samples} samples, "
            f"{X.shape[1]} coefficients"
        )

    sel = y.sum(axis=1) > 1e-8
    if not sel.any():
        raise ValueError("All genes have zero counts")

    grid = np.linspace(grid_range[0], grid_range[1], grid_length)
    disp_grid = 0.1 * 2 ** grid

    ys = y[sel]
    offset_s = offset if np.ndim(offset) == 1 else np.asarray(offset)[sel]
    loglik = np.empty((ys.shape[0], grid_length))
    start = None
    for i, dispersion in enumerate(disp_grid):
        loglik[:, i], start = adjusted_profile_loglik(
            ys, X, offset_s, dispersion, start=start, max_iter=max_iter, tol=tol,
        )

    overall = maximize_interpolant(grid, loglik.sum(axis=0))[0]
    common = float(0.1 * 2 ** overall)

    if span is None:
        span = default_span(ys.shape[0])
    prior_n = prior_df / df_residual

    cov_s = ave_log_cpm[sel]
    smoothed = smooth_by_covariate(loglik, cov_s, span, robust=robust)
    trended_s = 0.1 * 2 ** maximize_interpolant(grid, smoothed)
    tagwise_s = 0.1 * 2 ** maximize_interpolant(grid, loglik + prior_n * smoothed)

    trended = np.empty(n_genes)
    tagwise = np.empty(n_genes)
    trended[sel] = trended_s
    tagwise[sel] = tagwise_s
    if (~sel).any():
        order = np.argsort(cov_s)
        trended[~sel] = np.interp(ave_log_cpm[~sel], cov_s[order], trended_s[order])
        tagwise[~sel] = trended[~sel]

    logger.debug(
        "Dispersion: common=%.4g, trended range [%.4g, %.4g], prior_n=%.3g",
        common, trended.min(), trended.max(), prior_n,
    )
    return DispersionEstimate(
        common=common,
        trended=trended,
        tagwise=tagwise,
        prior_n=prior_n,
        span=span,
    )
