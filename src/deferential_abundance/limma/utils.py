"""
Utility functions for the limma module.

Provides helpers to pull expression matrices, observation weights and group
labels out of SummarizedExperiment variants or plain DataFrames.
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence, Tuple, Union
import numpy as np
import pandas as pd


def _names(names: Any, n: int, prefix: str) -> List[str]:
    if names is None or len(names) == 0:
        return [f"{prefix}{i + 1}" for i in range(n)]
    return [str(x) for x in names]


def get_expression(
    se: Any,
    assay: str = "log_expr",
) -> Tuple[np.ndarray, List[str], List[str]]:
    """Return (values, feature_names, sample_names) for an assay.

    Args:
        se: SummarizedExperiment variant or features x samples DataFrame.
        assay: Assay name (ignored for DataFrames).

    Returns:
        Float matrix (features x samples) with NaN for missing cells,
        plus row and column names. Unnamed axes get generated names.
    """
    if isinstance(se, pd.DataFrame):
        values = se.to_numpy(dtype=float)
        return values, _names(list(se.index), values.shape[0], "feature"), \
            _names(list(se.columns), values.shape[1], "sample")

    values = np.asarray(se.assays[assay], dtype=float)
    if values.ndim != 2:
        raise ValueError(f"Assay '{assay}' must be two-dimensional, got {values.ndim} dimensions")
    return (
        values,
        _names(se.row_names, values.shape[0], "feature"),
        _names(se.column_names, values.shape[1], "sample"),
    )


def get_weights(se: Any, weights: Union[str, np.ndarray, None]) -> Optional[np.ndarray]:
    """Resolve observation weights.

    ``weights`` may be an assay name, an array (features x samples, or one
    weight per sample) or None. The "weights" assay is picked up
    automatically when present and ``weights`` is None.
    """
    if weights is None:
        if not isinstance(se, pd.DataFrame) and "weights" in se.assay_names:
            return np.asarray(se.assays["weights"], dtype=float)
        return None
    if isinstance(weights, str):
        if isinstance(se, pd.DataFrame) or weights not in se.assay_names:
            raise KeyError(f"Weights assay '{weights}' not found.")
        return np.asarray(se.assays[weights], dtype=float)
    return np.asarray(weights, dtype=float)


def resolve_groups(
    se: Any,
    group: Union[str, Sequence, np.ndarray, pd.Series],
) -> List[Any]:
    """Resolve a group specification to one label per sample.

    Works with any SummarizedExperiment variant (SE, RSE, SCE).

    Args:
        se: SummarizedExperiment for column_data lookup.
        group: Either column name in column_data (str) or array-like of labels.

    Returns:
        List of labels in sample order. Missing labels are kept as-is so
        that ``model_matrix`` can reject them.

    Raises:
        KeyError: If group is a string but column not found in column_data.
    """
    if isinstance(group, str):
        if isinstance(se, pd.DataFrame):
            raise KeyError(
                f"Group column '{group}' cannot be looked up on a DataFrame; pass labels instead."
            )
        cd = se.get_column_data()
        if cd is None or group not in cd.column_names:
            raise KeyError(f"Group column '{group}' not found in column_data.")
        arr = cd[group]
    else:
        arr = group
    if isinstance(arr, pd.Series):
        return arr.tolist()
    return list(np.asarray(arr, dtype=object).tolist())


def log2_transform(values: np.ndarray) -> np.ndarray:
    """log2 of raw abundances; non-positive and missing values become NaN."""
    values = np.asarray(values, dtype=float)
    out = np.full_like(values, np.nan)
    positive = np.isfinite(values) & (values > 0)
    out[positive] = np.log2(values[positive])
    return out
