"""
Negative binomial GLM fitting, vectorized over genes.

Counts are genes x samples, the design is samples x coefficients and the
link is log with a per-sample (or per-observation) offset:

    log(mu[g, s]) = design[s] @ beta[g] + offset[g, s]
    var(y) = mu + dispersion[g] * mu^2

Coefficients are on the natural-log scale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
from scipy.special import gammaln, xlogy

logger = logging.getLogger(__name__)

ArrayLike = Union[float, np.ndarray]

# Pivots of X'WX below this are floored in the Cox-Reid adjustment
_LOW_VALUE = 1e-10

# Largest change of any coefficient in one scoring step (natural log units)
_MAX_STEP = 5.0


@dataclass
class GLMFit:
    """Result of a vectorized NB GLM fit."""

    coefficients: np.ndarray
    """Genes x coefficients (natural log scale)."""

    fitted: np.ndarray
    """Fitted means (genes x samples)."""

    deviance: np.ndarray
    """Residual deviance per gene."""

    converged: np.ndarray
    """Per-gene convergence flags."""

    iterations: int = 0
    """Scoring iterations used."""


def _as_dispersion(dispersion: ArrayLike, n_genes: int) -> np.ndarray:
    phi = np.asarray(dispersion, dtype=np.float64)
    if phi.ndim == 0:
        phi = np.full(n_genes, float(phi))
    if phi.shape != (n_genes,):
        raise ValueError(f"Dispersion must be scalar or length {n_genes}, got {phi.shape}")
    if np.any(phi < 0) or not np.all(np.isfinite(phi)):
        raise ValueError("Dispersion must be finite and non-negative")
    return phi[:, None]


def _as_offset(offset: ArrayLike, shape: tuple[int, int]) -> np.ndarray:
    return np.broadcast_to(np.asarray(offset, dtype=np.float64), shape)


def nb_unit_deviance(y: np.ndarray, mu: np.ndarray, dispersion: np.ndarray) -> np.ndarray:
    """Unit deviances; Poisson where dispersion is zero."""
    mu = np.maximum(mu, 1e-300)
    phi = np.broadcast_to(dispersion, y.shape)
    r = np.where(phi > 0, 1.0 / np.where(phi > 0, phi, 1.0), 1.0)

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        resid = xlogy(y, y / mu)
        poisson = 2 * (resid - (y - mu))
        negbin = 2 * (resid + (y + r) * np.log1p((mu - y) / (y + r)))

    dev = np.where(phi > 0, negbin, poisson)
    return np.maximum(dev, 0.0)


def nb_deviance(y: np.ndarray, mu: np.ndarray, dispersion: np.ndarray) -> np.ndarray:
    """Residual deviance per gene."""
    return nb_unit_deviance(y, mu, dispersion).sum(axis=1)


def nb_loglik(y: np.ndarray, mu: np.ndarray, dispersion: np.ndarray) -> np.ndarray:
    """NB log-likelihood per gene."""
    mu = np.maximum(mu, 1e-300)
    phi = np.broadcast_to(dispersion, y.shape)
    safe_phi = np.where(phi > 0, phi, 1.0)
    r = 1.0 / safe_phi

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        negbin = (
            gammaln(y + r) - gammaln(r) - gammaln(y + 1)
            + xlogy(y, mu * safe_phi) - (y + r) * np.log1p(mu * safe_phi)
        )
        poisson = xlogy(y, mu) - mu - gammaln(y + 1)

    return np.where(phi > 0, negbin, poisson).sum(axis=1)


def _information(w: np.ndarray, X: np.ndarray) -> np.ndarray:
    return np.einsum("gn,ni,nj->gij", w, X, X)


def fit_nb_glm(
    y: np.ndarray,
    design: np.ndarray,
    offset: ArrayLike,
    dispersion: ArrayLike,
    start: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
) -> GLMFit:
    """
    Fit one NB GLM per gene by damped Fisher scoring.

    Args:
        y: Counts (genes x samples).
        design: Design matrix (samples x coefficients).
        offset: Log effective library sizes (samples or genes x samples).
        dispersion: Scalar or per-gene NB dispersion.
        start: Starting coefficients (genes x coefficients).
        max_iter: Maximum scoring iterations.
        tol: Relative deviance tolerance.

    Returns:
        GLMFit with coefficients, fitted values and deviance.
    """
    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(design, dtype=np.float64)
    n_genes, n_samples = y.shape
    if X.shape[0] != n_samples:
        raise ValueError(
            f"Design has {X.shape[0]} rows but counts have {n_samples} samples"
        )
    n_coef = X.shape[1]

    offset = _as_offset(offset, y.shape)
    phi = _as_dispersion(dispersion, n_genes)

    if start is None:
        z = np.log(y + 0.1) - offset
        beta = np.linalg.lstsq(X, z.T, rcond=None)[0].T
    else:
        beta = np.array(start, dtype=np.float64, copy=True)

    eta = beta @ X.T + offset
    mu = np.exp(np.clip(eta, -700, 700))
    dev = nb_deviance(y, mu, phi)
    converged = np.zeros(n_genes, dtype=bool)
    eye = np.eye(n_coef)

    iteration = 0
    for iteration in range(1, max_iter + 1):
        denom = 1 + phi * mu
        w = mu / denom
        score = ((y - mu) / denom) @ X
        info = _information(w, X)

        diag_max = info.diagonal(axis1=1, axis2=2).max(axis=1)
        lam = 1e-8 * np.maximum(diag_max, 1e-12)
        step = np.linalg.solve(info + lam[:, None, None] * eye, score[..., None])[..., 0]
        step[converged] = 0.0
        step /= np.maximum(np.abs(step).max(axis=1, keepdims=True) / _MAX_STEP, 1.0)

        step_size = np.abs(step).max(axis=1)
        stuck = np.zeros(n_genes, dtype=bool)
        # Halve steps that increase the deviance
        for _ in range(12):
            beta_new = beta + step
            eta_new = beta_new @ X.T + offset
            mu_new = np.exp(np.clip(eta_new, -700, 700))
            dev_new = nb_deviance(y, mu_new, phi)
            worse = dev_new > dev * (1 + 1e-12) + 1e-12
            if not worse.any():
                break
            step[worse] *= 0.5
        else:
            # Keep the previous estimate where no step improved the fit
            keep = dev_new > dev
            beta_new[keep] = beta[keep]
            mu_new[keep] = mu[keep]
            dev_new[keep] = dev[keep]
            stuck = keep & (step_size > 1e-6)

        change = np.abs(dev - dev_new)
        converged |= (change < tol * (np.abs(dev_new) + 0.1)) & ~stuck
        beta, mu, dev = beta_new, mu_new, dev_new

        if converged.all():
            break

    if not converged.all():
        logger.debug(
            "GLM fit: %d of %d genes not converged after %d iterations",
            int((~converged).sum()), n_genes, iteration,
        )

    return GLMFit(
        coefficients=beta,
        fitted=mu,
        deviance=dev,
        converged=converged,
        iterations=iteration,
    )


def cox_reid_logdet(mu: np.ndarray, design: np.ndarray, dispersion: ArrayLike) -> np.ndarray:
    """log det(X'WX) per gene with NB working weights."""
    n_genes = mu.shape[0]
    phi = _as_dispersion(dispersion, n_genes)
    w = mu / (1 + phi * mu)
    info = _information(w, np.asarray(design, dtype=np.float64))
    eig = np.linalg.eigvalsh(info)
    return np.log(np.maximum(eig, _LOW_VALUE)).sum(axis=1)


def adjusted_profile_loglik(
    y: np.ndarray,
    design: np.ndarray,
    offset: ArrayLike,
    dispersion: ArrayLike,
    start: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Cox-Reid adjusted profile log-likelihood at a given dispersion.

    Returns:
        (apl per gene, fitted coefficients for warm starts)
    """
    fit = fit_nb_glm(y, design, offset, dispersion, start=start, max_iter=max_iter, tol=tol)
    loglik = nb_loglik(np.asarray(y, dtype=np.float64), fit.fitted,
                       _as_dispersion(dispersion, fit.fitted.shape[0]))
    apl = loglik - 0.5 * cox_reid_logdet(fit.fitted, design, dispersion)
    return apl, fit.coefficients


def add_prior_count(
    y: np.ndarray,
    lib_size: np.ndarray,
    prior_count: float = 0.125,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Add a library-size scaled prior count.

    Returns:
        (augmented counts, adjusted log library sizes as offsets)
    """
    lib_size = np.asarray(lib_size, dtype=np.float64)
    prior_scaled = prior_count * lib_size / lib_size.mean()
    y_aug = np.asarray(y, dtype=np.float64) + prior_scaled
    offset = np.log(lib_size + 2 * prior_scaled)
    return y_aug, offset
