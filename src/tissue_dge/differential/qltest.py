"""
Quasi-likelihood F-tests of contrasts.

Each contrast is tested by rotating the design so that the contrast becomes
a single coefficient, refitting without it and comparing deviances against
the moderated quasi-dispersion.
"""

from __future__ import annotations

import logging
from typing import Mapping, Union

import numpy as np
import pandas as pd
from scipy import stats

from tissue_dge.differential.fdr import apply_fdr
from tissue_dge.model.fitter import ModelFit
from tissue_dge.model.glm import fit_nb_glm

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ["gene", "logFC", "logCPM", "F", "PValue", "FDR", "contrast", "TumorType"]


def _contrast_array(fit: ModelFit, contrast: Union[pd.Series, np.ndarray]) -> np.ndarray:
    columns = fit.design.columns
    if isinstance(contrast, pd.Series):
        unknown = [c for c in contrast.index if c not in columns]
        if unknown:
            raise KeyError(f"Contrast columns {unknown} not in design columns {list(columns)}")
        contrast = contrast.reindex(columns, fill_value=0.0)

    c = np.asarray(contrast, dtype=np.float64).ravel()
    if c.shape != (len(columns),):
        raise ValueError(f"Contrast length {c.size} does not match {len(columns)} design columns")
    if np.allclose(c, 0):
        raise ValueError("Contrast is all zero")
    return c


def glm_ql_ftest(
    fit: ModelFit,
    contrast: Union[pd.Series, np.ndarray],
    max_iter: int = 50,
    tol: float = 1e-8,
) -> pd.DataFrame:
    """
    Quasi-likelihood F-test of one contrast.

    Args:
        fit: Fitted model for one tumor type.
        contrast: Weight vector aligned to the design columns.

    Returns:
        DataFrame with gene, logFC, logCPM, F, PValue (unsorted, no FDR).
    """
    c = _contrast_array(fit, contrast)
    X = fit.design.values
    ql = fit.ql

    Q, _ = np.linalg.qr(c[:, None], mode="complete")
    X_null = (X @ Q)[:, 1:]
    null = fit_nb_glm(
        fit.counts, X_null, fit.offset, ql.dispersion, max_iter=max_iter, tol=tol,
    )
    lr = np.maximum(null.deviance - ql.deviance, 0.0)

    with np.errstate(divide="ignore", invalid="ignore"):
        f_stat = np.where(ql.s2_post > 0, lr / ql.s2_post, 0.0)
    pvalue = stats.f.sf(f_stat, 1, ql.df_total)

    logfc = ql.coefficients @ c / np.log(2)

    return pd.DataFrame({
        "gene": np.asarray(fit.genes, dtype=object),
        "logFC": logfc,
        "logCPM": fit.ave_log_cpm,
        "F": f_stat,
        "PValue": pvalue,
    })


def top_tags(table: pd.DataFrame, fdr_method: str = "fdr_bh") -> pd.DataFrame:
    """
    Adjust p-values within one test and rank genes by p-value.

    All genes are returned; ties keep their original gene order.
    """
    out = table.copy()
    out["FDR"] = apply_fdr(out["PValue"].values, method=fdr_method)
    out = out.sort_values("PValue", kind="mergesort", na_position="last")
    return out.reset_index(drop=True)


def test_all(
    fits: Mapping[str, ModelFit],
    contrasts: Mapping[str, Mapping[str, pd.Series]],
    fdr_method: str = "fdr_bh",
    tumor_label: str = "TumorType",
    max_iter: int = 50,
    tol: float = 1e-8,
) -> pd.DataFrame:
    """
    Test every contrast of every tumor type and stack the tables.

    Rows are grouped by tumor type (outer, in ``fits`` order) and contrast
    (inner, in definition order); within a group genes are ranked by p-value.

    Returns:
        Result table with columns gene, logFC, logCPM, F, PValue, FDR,
        contrast and the tumor label column.
    """
    tables = []
    for tumor_type, fit in fits.items():
        for name, weights in contrasts.get(tumor_type, {}).items():
            table = top_tags(
                glm_ql_ftest(fit, weights, max_iter=max_iter, tol=tol), fdr_method=fdr_method
            )
            table["contrast"] = name
            table[tumor_label] = tumor_type
            tables.append(table)

            logger.info(
                "%s / %s: %d genes tested, %d with FDR < 0.05",
                tumor_type, name, len(table), int((table["FDR"] < 0.05).sum()),
            )

    columns = [c if c != "TumorType" else tumor_label for c in RESULT_COLUMNS]
    if not tables:
        return pd.DataFrame(columns=columns)
    return pd.concat(tables, ignore_index=True)[columns]


def summarize_results(
    results: pd.DataFrame,
    fdr_threshold: float = 0.05,
    lfc_threshold: float = 0.0,
    tumor_label: str = "TumorType",
) -> pd.DataFrame:
    """
    Count up, down and non-significant genes per test.

    Returns:
        DataFrame indexed by (tumor type, contrast) with Down, NotSig, Up.
    """
    significant = (results["FDR"] < fdr_threshold) & (results["logFC"].abs() >= lfc_threshold)
    direction = np.where(
        significant, np.where(results["logFC"] > 0, "Up", "Down"), "NotSig"
    )
    summary = (
        results.assign(direction=direction)
        .groupby([tumor_label, "contrast"], sort=False)["direction"]
        .value_counts()
        .unstack(fill_value=0)
    )
    for col in ("Down", "NotSig", "Up"):
        if col not in summary.columns:
            summary[col] = 0
    return summary[["Down", "NotSig", "Up"]]


# Not a pytest test function
test_all.__test__ = False
