"""
Input validation utilities for limma functions.

Provides centralized checks for SummarizedExperiment variants, design
matrices and LimmaModel inputs. Supports SE, RSE and SCE by duck typing;
plain pandas DataFrames are accepted as expression input as well.
"""

from __future__ import annotations
from typing import Any, Optional
import numpy as np
import pandas as pd


def check_se(se: Any, name: str = "se") -> None:
    """Check that input is a SummarizedExperiment-like object or a DataFrame.

    Accepts any object with assays and assay_names attributes
    (duck typing for SE, RSE, SCE), or a features x samples DataFrame.
    """
    if isinstance(se, pd.DataFrame):
        return
    required_attrs = ["assays", "assay_names"]
    for attr in required_attrs:
        if not hasattr(se, attr):
            raise TypeError(
                f"Expected `{name}` to be a SummarizedExperiment-like object "
                f"(SE, RSE, SCE) or a pandas DataFrame, "
                f"got {type(se).__name__} which lacks '{attr}'"
            )


def check_assay_exists(se: Any, assay: str) -> None:
    """Check that the specified assay exists in the SummarizedExperiment."""
    if isinstance(se, pd.DataFrame):
        return
    if assay not in se.assay_names:
        available = list(se.assay_names)
        raise KeyError(
            f"Assay '{assay}' not found. Available assays: {available}"
        )


def check_design(design: Any, n_samples: Optional[int] = None) -> None:
    """Check that design is a valid, finite pandas DataFrame."""
    if not isinstance(design, pd.DataFrame):
        raise TypeError(
            f"Expected `design` to be a pandas DataFrame, "
            f"got {type(design).__name__}"
        )
    if n_samples is not None and len(design) != n_samples:
        raise ValueError(
            f"Design matrix has {len(design)} rows but expected {n_samples} samples"
        )
    if design.shape[1] == 0:
        raise ValueError("Design matrix has no columns")
    values = design.to_numpy(dtype=float)
    if not np.all(np.isfinite(values)):
        raise ValueError("Design matrix contains missing or infinite values")


def check_weights(weights: np.ndarray, shape: tuple) -> None:
    """Check that observation weights match the expression matrix."""
    if weights.shape != tuple(shape):
        raise ValueError(
            f"Weights have shape {weights.shape} but expression matrix has shape {tuple(shape)}"
        )


def check_limma_model(model: Any) -> None:
    """Check that input is a valid LimmaModel."""
    from .lm_fit import LimmaModel
    if not isinstance(model, LimmaModel):
        raise TypeError(
            f"Expected a LimmaModel, got {type(model).__name__}"
        )


def check_limma_model_fitted(model: Any) -> None:
    """Check that LimmaModel has lm_fit set."""
    check_limma_model(model)
    if model.lm_fit is None:
        raise ValueError("LimmaModel.lm_fit is None - model has not been fitted")
