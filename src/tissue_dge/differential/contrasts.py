"""
Contrast vectors over design columns.

A contrast compares a reference group of one or more design columns with a
target group of one or more columns. Weights are split equally inside each
group: reference weights sum to -1 and target weights sum to +1.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Union

import numpy as np
import pandas as pd

from tissue_dge.core.config import ContrastSpec
from tissue_dge.model.fitter import ModelFit
from tissue_dge.stratify.design import DesignMatrix, Stratum

logger = logging.getLogger(__name__)

HasDesign = Union[ModelFit, Stratum, DesignMatrix]


def _design_columns(obj: HasDesign) -> pd.Index:
    if isinstance(obj, DesignMatrix):
        return obj.columns
    return obj.design.columns


def contrast_vector(columns: pd.Index, reference: Iterable[str], target: Iterable[str]) -> pd.Series:
    """
    Weight vector for one reference-vs-target comparison.

    Raises:
        KeyError: A named column is not a design column.
        ValueError: A group is empty or the groups overlap.
    """
    reference = list(reference)
    target = list(target)

    if not reference or not target:
        raise ValueError("Reference and target groups must both be non-empty")
    overlap = sorted(set(reference) & set(target))
    if overlap:
        raise ValueError(f"Columns in both reference and target: {overlap}")

    missing = [c for c in reference + target if c not in columns]
    if missing:
        raise KeyError(f"Contrast columns {missing} not in design columns {list(columns)}")

    weights = pd.Series(np.zeros(len(columns)), index=columns, name="weight")
    for col in reference:
        weights[col] = -1.0 / len(reference)
    for col in target:
        weights[col] = 1.0 / len(target)
    return weights


def build_contrasts(
    fits: Mapping[str, HasDesign],
    specs: Iterable[ContrastSpec],
) -> dict[str, dict[str, pd.Series]]:
    """
    Build contrast vectors for every definition.

    Args:
        fits: Mapping from tumor type to anything carrying its design
            (ModelFit, Stratum or DesignMatrix).
        specs: Contrast definitions.

    Returns:
        Mapping tumor type -> contrast name -> weight Series, preserving the
        order of ``fits`` and of ``specs`` within a tumor type.
    """
    contrasts: dict[str, dict[str, pd.Series]] = {t: {} for t in fits}

    for spec in specs:
        if spec.tumor_type not in fits:
            raise KeyError(
                f"Contrast '{spec.name}' refers to unknown tumor type '{spec.tumor_type}'"
            )
        if spec.name in contrasts[spec.tumor_type]:
            raise ValueError(f"Duplicate contrast '{spec.name}' for {spec.tumor_type}")

        columns = _design_columns(fits[spec.tumor_type])
        contrasts[spec.tumor_type][spec.name] = contrast_vector(
            columns, spec.reference, spec.target
        )
        logger.debug(
            "Contrast %s/%s (%s): %s", spec.tumor_type, spec.name, spec.kind,
            contrasts[spec.tumor_type][spec.name].to_dict(),
        )

    return contrasts
