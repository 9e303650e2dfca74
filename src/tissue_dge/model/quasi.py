"""
Quasi-likelihood layer on top of the NB GLM.

The quasi-dispersion of each gene (residual deviance / residual df) is
squeezed toward an abundance-dependent prior by empirical Bayes moderation
of a scaled F distribution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.special import digamma, polygamma
from statsmodels.nonparametric.smoothers_lowess import lowess

from tissue_dge.model.glm import GLMFit, add_prior_count, fit_nb_glm

logger = logging.getLogger(__name__)


def trigamma_inverse(x: np.ndarray) -> np.ndarray:
    """Solve trigamma(y) = x for y by Newton iteration."""
    x = np.atleast_1d(np.asarray(x, dtype=np.float64))
    if np.any(x <= 0):
        raise ValueError("trigamma_inverse requires positive input")

    y = np.empty_like(x)
    large = x > 1e7
    small = x < 1e-6
    mid = ~(large | small)
    y[large] = 1 / np.sqrt(x[large])
    y[small] = 1 / x[small]

    if mid.any():
        xm = x[mid]
        ym = 0.5 + 1 / xm
        for _ in range(50):
            tri = polygamma(1, ym)
            dif = tri * (1 - tri / xm) / polygamma(2, ym)
            ym = ym + dif
            if np.max(-dif / ym) < 1e-8:
                break
        y[mid] = ym

    return y


@dataclass
class FDistPrior:
    """Scaled F prior for gene-wise variances."""

    scale: np.ndarray
    """Prior variance per gene (constant without a covariate)."""

    df2: float
    """Prior degrees of freedom (may be inf)."""


def fit_f_dist(
    x: np.ndarray,
    df1: np.ndarray,
    covariate: Optional[np.ndarray] = None,
    span: float = 0.5,
) -> FDistPrior:
    """
    Moment estimation of a scaled F distribution for variances ``x``.

    With a covariate the prior location follows a lowess trend in it.
    """
    x = np.asarray(x, dtype=np.float64)
    df1 = np.broadcast_to(np.asarray(df1, dtype=np.float64), x.shape)
    n = x.size

    ok = np.isfinite(x) & np.isfinite(df1) & (df1 > 1e-15) & (x > -1e-15)
    n_ok = int(ok.sum())
    if n_ok < 2:
        raise ValueError("Need at least two genes with positive residual df")

    xo = np.maximum(x[ok], 0)
    m = np.median(xo)
    if m == 0:
        m = 1.0
    xo = np.maximum(xo, 1e-5 * m)

    d1 = df1[ok] / 2
    e = np.log(xo) - digamma(d1) + np.log(d1)

    if covariate is None:
        emean_ok = np.full(n_ok, e.mean())
        n_par = 1
    else:
        cov = np.asarray(covariate, dtype=np.float64)
        if np.ptp(cov[ok]) == 0 or n_ok < 3:
            emean_ok = np.full(n_ok, e.mean())
            n_par = 1
        else:
            emean_ok = lowess(e, cov[ok], frac=span, it=0, return_sorted=False)
            n_par = min(4, n_ok - 1)

    evar = np.sum((e - emean_ok) ** 2) / (n_ok - n_par)
    evar = evar - np.mean(polygamma(1, d1))

    if evar > 0:
        df2 = float(2 * trigamma_inverse(evar)[0])
        log_scale_ok = emean_ok + digamma(df2 / 2) - np.log(df2 / 2)
    else:
        df2 = np.inf
        log_scale_ok = emean_ok

    log_scale = np.empty(n)
    log_scale[ok] = log_scale_ok
    if (~ok).any():
        if covariate is None or n_par == 1:
            log_scale[~ok] = log_scale_ok.mean()
        else:
            cov = np.asarray(covariate, dtype=np.float64)
            order = np.argsort(cov[ok])
            log_scale[~ok] = np.interp(cov[~ok], cov[ok][order], log_scale_ok[order])

    return FDistPrior(scale=np.exp(log_scale), df2=df2)


@dataclass
class SqueezedVar:
    """Moderated variances."""

    var_post: np.ndarray
    var_prior: np.ndarray
    df_prior: float


def squeeze_var(
    var: np.ndarray,
    df: np.ndarray,
    covariate: Optional[np.ndarray] = None,
    span: float = 0.5,
) -> SqueezedVar:
    """
    Empirical Bayes moderation of gene-wise variances.

    Posterior variances are df-weighted averages of the observed and prior
    variances.
    """
    var = np.asarray(var, dtype=np.float64)
    df = np.broadcast_to(np.asarray(df, dtype=np.float64), var.shape)
    if var.size == 0:
        raise ValueError("var is empty")

    prior = fit_f_dist(var, df, covariate=covariate, span=span)

    if np.isinf(prior.df2):
        var_post = prior.scale.copy()
    else:
        var_post = (df * var + prior.df2 * prior.scale) / (df + prior.df2)

    return SqueezedVar(var_post=var_post, var_prior=prior.scale, df_prior=prior.df2)


def residual_df(zero: np.ndarray, design: np.ndarray) -> np.ndarray:
    """
    Residual df per gene, discounting observations fitted exactly at zero.

    Args:
        zero: Genes x samples mask of zero counts with zero fitted values.
        design: Design matrix (samples x coefficients).
    """
    zero = np.asarray(zero, dtype=bool)
    X = np.asarray(design, dtype=np.float64)
    n_samples = X.shape[0]
    full_df = n_samples - int(np.linalg.matrix_rank(X))

    df = np.full(zero.shape[0], float(full_df))
    n_zero = zero.sum(axis=1)
    some = (n_zero > 0) & (n_zero < n_samples)
    df[n_zero == n_samples] = 0.0

    if some.any():
        patterns, inverse = np.unique(zero[some], axis=0, return_inverse=True)
        inverse = np.asarray(inverse).ravel()
        pattern_df = np.array([
            (~p).sum() - np.linalg.matrix_rank(X[~p]) for p in patterns
        ], dtype=np.float64)
        df[some] = pattern_df[inverse]

    return df


@dataclass
class QLFit:
    """Quasi-likelihood NB GLM fit for one design."""

    glm: GLMFit
    """Unshrunk fit at the working dispersion."""

    coefficients: np.ndarray
    """Coefficients fitted with a prior count (used for logFC)."""

    dispersion: np.ndarray
    """NB dispersion used for fitting."""

    df_residual: np.ndarray
    """Residual df per gene (zero-adjusted)."""

    s2: np.ndarray
    """Raw quasi-dispersion per gene."""

    s2_prior: np.ndarray
    """Prior quasi-dispersion per gene."""

    s2_post: np.ndarray
    """Moderated quasi-dispersion per gene."""

    df_prior: float
    """Prior df of the quasi-dispersion."""

    @property
    def deviance(self) -> np.ndarray:
        return self.glm.deviance

    @property
    def df_total(self) -> np.ndarray:
        pooled = float(self.df_residual.sum())
        return np.minimum(self.df_residual + self.df_prior, pooled)


def glm_ql_fit(
    y: np.ndarray,
    design: np.ndarray,
    lib_size: np.ndarray,
    dispersion: np.ndarray,
    ave_log_cpm: Optional[np.ndarray] = None,
    prior_count: float = 0.125,
    span: Optional[float] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
) -> QLFit:
    """
    Fit the NB GLM and estimate moderated quasi-dispersions.

    Args:
        y: Counts (genes x samples).
        design: Design matrix (samples x coefficients).
        lib_size: Effective library sizes.
        dispersion: NB dispersion (scalar or per gene), usually trended.
        ave_log_cpm: Abundance covariate for the prior trend.
        prior_count: Prior count for the reported coefficients.
        span: Lowess span for the prior trend.

    Returns:
        QLFit.
    """
    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(design, dtype=np.float64)
    lib_size = np.asarray(lib_size, dtype=np.float64)
    dispersion = np.broadcast_to(np.asarray(dispersion, dtype=np.float64), (y.shape[0],)).copy()

    offset = np.log(lib_size)
    fit = fit_nb_glm(y, X, offset, dispersion, max_iter=max_iter, tol=tol)

    y_aug, offset_aug = add_prior_count(y, lib_size, prior_count)
    # Fitted from scratch: unshrunk coefficients of genes with all-zero groups diverge
    shrunk = fit_nb_glm(y_aug, X, offset_aug, dispersion, max_iter=max_iter, tol=tol)
    if not shrunk.converged.all():
        logger.warning(
            "Prior-count fit: %d of %d genes not converged; their logFC is unreliable",
            int((~shrunk.converged).sum()), y.shape[0],
        )

    zero = (y < 1e-4) & (fit.fitted < 1e-4)
    df = residual_df(zero, X)

    with np.errstate(divide="ignore", invalid="ignore"):
        s2 = np.where(df > 0, fit.deviance / df, 0.0)
    s2 = np.maximum(s2, 0.0)

    if span is None:
        span = 0.5
    squeezed = squeeze_var(s2, df, covariate=ave_log_cpm, span=span)

    return QLFit(
        glm=fit,
        coefficients=shrunk.coefficients,
        dispersion=dispersion,
        df_residual=df,
        s2=s2,
        s2_prior=squeezed.var_prior,
        s2_post=squeezed.var_post,
        df_prior=squeezed.df_prior,
    )
