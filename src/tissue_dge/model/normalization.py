"""
Library-size normalization for count matrices.

All functions take counts as a genes x samples array, matching the layout
used by the GLM code.

IMPORTANT: normalization factors scale library sizes; counts themselves are
never rescaled. Effective library size = lib_size * norm_factor.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from scipy import stats


def _tmm_factor(
    obs: np.ndarray,
    ref: np.ndarray,
    lib_obs: float,
    lib_ref: float,
    logratio_trim: float,
    sum_trim: float,
    do_weighting: bool,
    a_cutoff: float,
) -> float:
    """Trimmed mean of M-values of one sample against the reference sample."""
    obs = obs.astype(np.float64)
    ref = ref.astype(np.float64)

    with np.errstate(divide="ignore", invalid="ignore"):
        log_r = np.log2((obs / lib_obs) / (ref / lib_ref))
        abs_e = (np.log2(obs / lib_obs) + np.log2(ref / lib_ref)) / 2
        v = (lib_obs - obs) / lib_obs / obs + (lib_ref - ref) / lib_ref / ref

    fin = np.isfinite(log_r) & np.isfinite(abs_e) & (abs_e > a_cutoff)
    log_r, abs_e, v = log_r[fin], abs_e[fin], v[fin]

    if log_r.size == 0 or np.max(np.abs(log_r)) < 1e-6:
        return 1.0

    n = log_r.size
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s

    rank_r = stats.rankdata(log_r)
    rank_e = stats.rankdata(abs_e)
    keep = (rank_r >= lo_l) & (rank_r <= hi_l) & (rank_e >= lo_s) & (rank_e <= hi_s)

    if do_weighting:
        f = np.nansum(log_r[keep] / v[keep]) / np.nansum(1 / v[keep])
    else:
        f = np.nanmean(log_r[keep]) if keep.any() else np.nan

    if not np.isfinite(f):
        f = 0.0
    return float(2 ** f)


def calc_norm_factors(
    counts: np.ndarray,
    lib_size: Optional[np.ndarray] = None,
    method: str = "TMM",
    ref_column: Optional[int] = None,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    do_weighting: bool = True,
    a_cutoff: float = -1e10,
) -> np.ndarray:
    """
    Compute TMM normalization factors.

    Factors are scaled to have geometric mean 1.

    Args:
        counts: Raw counts (genes x samples).
        lib_size: Library sizes (defaults to column sums).
        method: "TMM" or "none".
        ref_column: Reference sample index (default: sample whose upper
            quartile is closest to the mean upper quartile).
        logratio_trim: Fraction of M-values trimmed from each tail.
        sum_trim: Fraction of A-values trimmed from each tail.
        do_weighting: Use inverse asymptotic variance weights.
        a_cutoff: Minimum A-value for a gene to contribute.

    Returns:
        Normalization factor per sample.
    """
    x = np.asarray(counts, dtype=np.float64)
    n_samples = x.shape[1]

    if lib_size is None:
        lib_size = x.sum(axis=0)
    lib_size = np.asarray(lib_size, dtype=np.float64)

    if method.lower() == "none":
        return np.ones(n_samples)
    if method.upper() != "TMM":
        raise ValueError(f"Unknown normalization method: {method}. Available: ['TMM', 'none']")

    if np.any(lib_size <= 0):
        raise ValueError("Library sizes must be positive")

    x = x[(x > 0).any(axis=1)]
    if x.shape[0] == 0 or n_samples == 1:
        return np.ones(n_samples)

    if ref_column is None:
        f75 = np.quantile(x / lib_size, 0.75, axis=0)
        if np.median(f75) < 1e-20:
            ref_column = int(np.argmax(np.sqrt(x).sum(axis=0)))
        else:
            ref_column = int(np.argmin(np.abs(f75 - f75.mean())))

    factors = np.array([
        _tmm_factor(
            x[:, i], x[:, ref_column], lib_size[i], lib_size[ref_column],
            logratio_trim, sum_trim, do_weighting, a_cutoff,
        )
        for i in range(n_samples)
    ])

    return factors / np.exp(np.mean(np.log(factors)))


def cpm(
    counts: np.ndarray,
    lib_size: Optional[np.ndarray] = None,
    log: bool = False,
    prior_count: float = 2.0,
) -> np.ndarray:
    """
    Counts per million.

    With ``log=True`` a prior count scaled to each library size is added
    before taking log2.
    """
    x = np.asarray(counts, dtype=np.float64)
    if lib_size is None:
        lib_size = x.sum(axis=0)
    lib_size = np.asarray(lib_size, dtype=np.float64)

    if not log:
        return x / lib_size * 1e6

    prior_scaled = prior_count * lib_size / lib_size.mean()
    lib_adj = lib_size + 2 * prior_scaled
    return np.log2((x + prior_scaled) / lib_adj * 1e6)


def ave_log_cpm(
    counts: np.ndarray,
    lib_size: Optional[np.ndarray] = None,
    prior_count: float = 2.0,
) -> np.ndarray:
    """Average log2 counts per million per gene (abundance covariate)."""
    x = np.asarray(counts, dtype=np.float64)
    if lib_size is None:
        lib_size = x.sum(axis=0)
    lib_size = np.asarray(lib_size, dtype=np.float64)

    prior_scaled = prior_count * lib_size / lib_size.mean()
    lib_adj = lib_size + 2 * prior_scaled
    total = (x + prior_scaled).sum(axis=1)
    return np.log2(total / lib_adj.sum() * 1e6)


def filter_by_expr(
    counts: np.ndarray,
    group: Optional[Sequence] = None,
    lib_size: Optional[np.ndarray] = None,
    min_count: float = 10.0,
    min_total_count: float = 15.0,
    large_n: int = 10,
    min_prop: float = 0.7,
) -> np.ndarray:
    """
    Keep genes with enough counts in enough samples.

    A gene is kept when its CPM reaches the CPM equivalent of ``min_count``
    (at the median library size) in at least as many samples as the
    smallest group, and its total count reaches ``min_total_count``.

    Returns:
        Boolean mask over genes.
    """
    x = np.asarray(counts, dtype=np.float64)
    if lib_size is None:
        lib_size = x.sum(axis=0)
    lib_size = np.asarray(lib_size, dtype=np.float64)

    if group is None:
        min_sample_size = float(x.shape[1])
    else:
        _, group_sizes = np.unique(np.asarray(group, dtype=str), return_counts=True)
        min_sample_size = float(group_sizes.min())

    if min_sample_size > large_n:
        min_sample_size = large_n + (min_sample_size - large_n) * min_prop

    cpm_cutoff = min_count / np.median(lib_size) * 1e6
    tol = 1e-14
    keep_cpm = (cpm(x, lib_size) >= cpm_cutoff).sum(axis=1) >= (min_sample_size - tol)
    keep_total = x.sum(axis=1) >= (min_total_count - tol)
    return keep_cpm & keep_total
