"""
Multiple-testing correction.

Correction is applied within one test (one tumor type, one contrast),
never across the combined result table.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests


class FDRCorrector:
    """
    FDR correction for per-gene p-values.

    Supports multiple correction methods from statsmodels. Missing p-values
    stay missing and do not count toward the number of tests.

    Example:
        >>> corrector = FDRCorrector(method="fdr_bh")
        >>> fdr = corrector.correct(table["PValue"])
    """

    METHODS = [
        "bonferroni",
        "holm",
        "hommel",
        "fdr_bh",  # Benjamini-Hochberg
        "fdr_by",  # Benjamini-Yekutieli
    ]

    def __init__(self, method: str = "fdr_bh", alpha: float = 0.05):
        if method not in self.METHODS:
            raise ValueError(
                f"Unknown method: {method}. Available: {self.METHODS}"
            )
        self.method = method
        self.alpha = alpha

    def _correct_flat(self, pvalues: np.ndarray) -> np.ndarray:
        pvalues = np.asarray(pvalues, dtype=np.float64)
        adjusted = np.full(pvalues.shape, np.nan)
        ok = np.isfinite(pvalues)
        if ok.any():
            _, adjusted[ok], _, _ = multipletests(
                pvalues[ok], alpha=self.alpha, method=self.method
            )
        return adjusted

    def correct(
        self,
        pvalues: Union[np.ndarray, pd.Series],
    ) -> Union[np.ndarray, pd.Series]:
        """
        Apply the correction to one family of tests.

        Args:
            pvalues: Raw p-values (1-D).

        Returns:
            Adjusted p-values (same type and index as input).
        """
        if isinstance(pvalues, pd.Series):
            return pd.Series(
                self._correct_flat(pvalues.values), index=pvalues.index, name="FDR"
            )
        return self._correct_flat(np.ravel(pvalues))

    def correct_within(
        self,
        table: pd.DataFrame,
        by: Sequence[str],
        pvalue_col: str = "PValue",
    ) -> pd.Series:
        """Adjust separately inside each group of ``by`` columns."""
        adjusted = pd.Series(np.nan, index=table.index, name="FDR")
        for _, idx in table.groupby(list(by), sort=False, observed=True).groups.items():
            adjusted.loc[idx] = self._correct_flat(table.loc[idx, pvalue_col].values)
        return adjusted


def apply_fdr(
    pvalues: Union[np.ndarray, pd.Series],
    method: str = "fdr_bh",
) -> Union[np.ndarray, pd.Series]:
    """Convenience function for FDRCorrector."""
    return FDRCorrector(method=method).correct(pvalues)
