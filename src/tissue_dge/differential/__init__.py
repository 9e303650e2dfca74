"""
Differential expression testing.

Contrast construction, quasi-likelihood F-tests and per-test FDR control.
"""

from tissue_dge.differential.fdr import (
    apply_fdr,
    FDRCorrector,
)
from tissue_dge.differential.contrasts import (
    build_contrasts,
    contrast_vector,
)
from tissue_dge.differential.qltest import (
    RESULT_COLUMNS,
    glm_ql_ftest,
    summarize_results,
    test_all,
    top_tags,
)

__all__ = [
    # FDR
    "apply_fdr",
    "FDRCorrector",
    # Contrasts
    "build_contrasts",
    "contrast_vector",
    # Testing
    "RESULT_COLUMNS",
    "glm_ql_ftest",
    "summarize_results",
    "test_all",
    "top_tags",
]
