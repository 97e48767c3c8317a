"""
Apply contrasts to a fitted model (limma's contrasts.fit).

This module provides a functional interface to project the fitted
coefficients onto one linear contrast.
"""

from __future__ import annotations
from typing import Sequence, Tuple, Union
from dataclasses import dataclass, replace
import numpy as np
import pandas as pd

from ..errors import DesignError
from .checks import check_limma_model_fitted
from .lm_fit import LimmaModel
from .model_matrix import make_contrast


@dataclass(frozen=True)
class ContrastFit:
    """Per-feature contrast estimates.

    Attributes:
        contrast: Contrast weights indexed by design column.
        coefficient: Contrast estimate per feature (log fold change).
        stdev_unscaled: sqrt(c' V c) per feature.
        sigma: Residual standard deviation per feature.
        df_residual: Residual degrees of freedom per feature.
        amean: Average log expression per feature.
    """
    contrast: pd.Series
    coefficient: np.ndarray
    stdev_unscaled: np.ndarray
    sigma: np.ndarray
    df_residual: np.ndarray
    amean: np.ndarray

    @property
    def testable(self) -> np.ndarray:
        """Features with a defined estimate, standard error and df > 0."""
        return (
            np.isfinite(self.coefficient)
            & np.isfinite(self.stdev_unscaled)
            & np.isfinite(self.sigma)
            & (self.df_residual > 0)
        )

    @property
    def t(self) -> np.ndarray:
        """Ordinary (unmoderated) t-statistics, NaN for untestable features."""
        t = t_statistic(self.coefficient, self.stdev_unscaled * self.sigma)
        t[~self.testable] = np.nan
        return t


def t_statistic(estimate: np.ndarray, se: np.ndarray) -> np.ndarray:
    """estimate / se, with 0 for a zero estimate and +-inf for a zero se."""
    estimate = np.asarray(estimate, dtype=float)
    se = np.asarray(se, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        t = estimate / se
    t = np.where(estimate == 0, 0.0, t)
    return np.where(np.isnan(estimate) | np.isnan(se), np.nan, t)


def _resolve_contrast(
    model: LimmaModel,
    contrast: Union[Sequence[float], pd.Series, Tuple[str, str]],
) -> pd.Series:
    columns = list(model.lm_fit.coefficients.columns)

    if isinstance(contrast, pd.Series):
        unknown = [str(k) for k in contrast.index if str(k) not in columns]
        if unknown:
            raise DesignError(f"Contrast refers to unknown coefficients {unknown}")
        contrast = pd.Series(
            [float(contrast.get(c, 0.0)) for c in columns], index=columns, name=contrast.name
        )
    elif len(contrast) == 2 and all(isinstance(x, str) for x in contrast):
        contrast = make_contrast(model.design, contrast[0], contrast[1])
    else:
        weights = np.asarray(contrast, dtype=float)
        if weights.ndim != 1 or len(weights) != len(columns):
            raise ValueError(
                f"Contrast has {weights.size} entries but the model has {len(columns)} coefficients"
            )
        contrast = pd.Series(weights, index=columns)

    if not np.any(contrast.to_numpy() != 0):
        raise ValueError("Contrast vector is all zero")
    return contrast


def contrasts_fit(
    model: LimmaModel,
    contrast: Union[Sequence[float], pd.Series, Tuple[str, str]],
) -> LimmaModel:
    """
    Apply contrast to fitted linear model.

    Computes, for every feature, the contrast estimate c.beta and its
    unscaled standard deviation sqrt(c' V c), where V is that feature's
    unscaled coefficient covariance. Features whose contrast touches a
    non-estimable coefficient get NaN and are treated as untestable.

    Args:
        model: LimmaModel from lm_fit().
        contrast: 1D contrast vector (length = number of coefficients), a
            Series indexed by coefficient name, or a (numerator, denominator)
            pair of group levels.

    Returns:
        LimmaModel: With contrast_fit slot set.

    Raises:
        TypeError: If model is not a LimmaModel.
        ValueError: If model is not fitted or the contrast is malformed.
        DesignError: If the contrast names an unknown group.

    Example:
        >>> import deferential_abundance.limma as limma
        >>> model = limma.lm_fit(se, design)
        >>> model_c = limma.contrasts_fit(model, ("Treatment", "Control"))
        >>> results = model_c.e_bayes().top_table()
    """
    check_limma_model_fitted(model)
    fit = model.lm_fit
    contrast = _resolve_contrast(model, contrast)

    weights = contrast.to_numpy(dtype=float)
    used = weights != 0
    c = weights[used]
    beta = fit.coefficients.to_numpy()[:, used]
    V = fit.cov_unscaled[:, used][:, :, used]

    estimate = beta @ c
    # Cancellation noise between equal coefficients is an exact zero.
    scale = np.abs(beta) @ np.abs(c)
    estimate = np.where(np.abs(estimate) <= 64 * np.finfo(float).eps * scale, 0.0, estimate)
    variance = np.einsum("i,nij,j->n", c, V, c)
    with np.errstate(invalid="ignore"):
        stdev_unscaled = np.sqrt(np.clip(variance, 0.0, None))

    result = ContrastFit(
        contrast=contrast,
        coefficient=estimate,
        stdev_unscaled=stdev_unscaled,
        sigma=fit.sigma,
        df_residual=fit.df_residual,
        amean=fit.amean,
    )
    return replace(model, contrast_fit=result, ebayes=None)
