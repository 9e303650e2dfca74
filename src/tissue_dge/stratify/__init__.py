"""
Sample filtering and stratification.
"""

from tissue_dge.stratify.subset import ReshapedData, filter_and_reshape, to_long
from tissue_dge.stratify.design import (
    DesignMatrix,
    Stratum,
    build_design,
    build_strata,
    one_hot,
    ordered_levels,
)

__all__ = [
    "ReshapedData",
    "filter_and_reshape",
    "to_long",
    "DesignMatrix",
    "Stratum",
    "build_design",
    "build_strata",
    "one_hot",
    "ordered_levels",
]
