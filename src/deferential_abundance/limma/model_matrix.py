"""
Build group-membership design matrices.

This module turns one group label per sample into the design matrix used by
lm_fit, and turns a pair of group labels into the matching contrast vector.
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence
import numpy as np
import pandas as pd

from ..errors import DesignError

INTERCEPT = "Intercept"


def _is_missing(label: Any) -> bool:
    if isinstance(label, str):
        return label.strip() == ""
    return bool(pd.api.types.is_scalar(label) and pd.isna(label))


def model_matrix(
    groups: Sequence[Any],
    levels: Optional[Sequence[Any]] = None,
    intercept: bool = False,
    sample_names: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Build a design matrix from sample group labels.

    Without intercept the matrix has one indicator column per level and each
    row sums to 1 (the coefficients are group means). With intercept the
    first level is the reference: an ``"Intercept"`` column is followed by
    one indicator column for each remaining level.

    Args:
        groups: One label per sample, in sample order.
        levels: Ordered group levels. Default: sorted distinct labels.
        intercept: Include an intercept column. Default: False.
        sample_names: Index for the returned DataFrame.

    Returns:
        pd.DataFrame: samples x coefficients, float entries.

    Raises:
        DesignError: A label is missing or not among ``levels``, or fewer
            than two levels are present.

    Example:
        >>> model_matrix(["A", "A", "B", "B"])
             A    B
        0  1.0  0.0
        1  1.0  0.0
        2  0.0  1.0
        3  0.0  1.0
    """
    labels = [str(g) if not _is_missing(g) else None for g in groups]
    missing = [i for i, g in enumerate(labels) if g is None]
    if missing:
        raise DesignError(
            f"{len(missing)} sample(s) have no group label (positions {missing[:10]})"
        )

    if levels is None:
        level_list: List[str] = sorted(set(labels))
    else:
        level_list = [str(lv) for lv in levels]
        if len(set(level_list)) != len(level_list):
            raise DesignError(f"Duplicated group levels: {level_list}")
        unknown = sorted(set(labels) - set(level_list))
        if unknown:
            raise DesignError(
                f"Samples with labels {unknown} cannot be assigned to any of the levels {level_list}"
            )

    if len(level_list) < 2:
        raise DesignError(
            f"At least two groups are required, got {level_list}"
        )

    index = list(sample_names) if sample_names is not None else None
    if index is not None and len(index) != len(labels):
        raise DesignError(
            f"Got {len(labels)} group labels for {len(index)} samples"
        )

    onehot = np.zeros((len(labels), len(level_list)), dtype=float)
    position = {lv: j for j, lv in enumerate(level_list)}
    for i, g in enumerate(labels):
        onehot[i, position[g]] = 1.0

    if not intercept:
        return pd.DataFrame(onehot, index=index, columns=level_list)

    values = np.column_stack([np.ones(len(labels)), onehot[:, 1:]])
    design = pd.DataFrame(values, index=index, columns=[INTERCEPT] + level_list[1:])
    design.attrs["reference"] = level_list[0]
    return design


def make_contrast(
    design: pd.DataFrame,
    numerator: str,
    denominator: str,
    reference: Optional[str] = None,
) -> pd.Series:
    """
    Contrast vector for ``numerator - denominator``.

    The group mean of level ``g`` is ``e_g . beta`` where ``e_g`` is the
    design row of a sample in ``g``; the contrast is ``e_num - e_den``. For
    intercept designs the reference level (all indicators zero) is the name
    given by ``reference``.

    Args:
        design: Design matrix from model_matrix.
        numerator: Level on the positive side.
        denominator: Level on the negative side.
        reference: Name of the reference level of an intercept design.

    Returns:
        pd.Series indexed by design columns.

    Raises:
        DesignError: Unknown level or identical levels.
    """
    columns = [str(c) for c in design.columns]
    has_intercept = bool(columns) and columns[0] == INTERCEPT
    if reference is None:
        reference = design.attrs.get("reference")

    def mean_vector(level: str) -> np.ndarray:
        vec = np.zeros(len(columns))
        if has_intercept:
            vec[0] = 1.0
            if level == reference:
                return vec
        if level not in columns or level == INTERCEPT:
            raise DesignError(
                f"Group '{level}' is not part of the design (columns: {columns})"
            )
        vec[columns.index(level)] = 1.0
        return vec

    numerator, denominator = str(numerator), str(denominator)
    if numerator == denominator:
        raise DesignError(f"Contrast compares group '{numerator}' with itself")
    weights = mean_vector(numerator) - mean_vector(denominator)
    return pd.Series(weights, index=columns, name=f"{numerator}-{denominator}")
