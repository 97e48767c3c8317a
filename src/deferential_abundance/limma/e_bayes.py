"""
Compute empirical Bayes moderated statistics (limma's eBayes).

This module provides a functional interface to moderate the contrast
statistics of a fitted model.
"""

from __future__ import annotations
from typing import Optional, Tuple, Union
from dataclasses import dataclass, replace
import numpy as np
from scipy import stats

from .checks import check_limma_model_fitted
from .contrasts_fit import contrasts_fit, t_statistic
from .lm_fit import LimmaModel
from .squeeze_var import squeeze_var


@dataclass(frozen=True)
class EBayesFit:
    """Moderated statistics for one contrast.

    Attributes:
        df_prior: Prior degrees of freedom d0 (0 when shrinkage is disabled).
        s2_prior: Prior variance s0^2 (NaN when shrinkage is disabled).
        s2_post: Posterior (moderated) variance per feature.
        df_total: Moderated degrees of freedom per feature.
        t: Moderated t-statistic per feature.
        p_value: Two-sided p-value per feature, NaN when untestable.
        lods: Log-odds of differential abundance (B-statistic).
        proportion: Assumed proportion of changed features used for lods.
        treat_lfc: Fold-change threshold when produced by treat().
    """
    df_prior: float
    s2_prior: float
    s2_post: np.ndarray
    df_total: np.ndarray
    t: np.ndarray
    p_value: np.ndarray
    lods: np.ndarray
    proportion: float
    treat_lfc: Optional[float] = None


def _coef_contrast(model: LimmaModel, coef: Optional[Union[int, str]]) -> LimmaModel:
    """Select one coefficient (name or 1-based index) as the contrast."""
    columns = list(model.lm_fit.coefficients.columns)
    if coef is None:
        raise ValueError(
            "Model has no contrast_fit; call contrasts_fit() first or pass `coef`"
        )
    if isinstance(coef, str):
        if coef not in columns:
            raise KeyError(f"Coefficient '{coef}' not found. Available: {columns}")
        j = columns.index(coef)
    else:
        j = int(coef) - 1
        if not 0 <= j < len(columns):
            raise IndexError(f"Coefficient index {coef} out of range 1..{len(columns)}")
    unit = np.zeros(len(columns))
    unit[j] = 1.0
    return contrasts_fit(model, unit)


def moderate(model: LimmaModel, coef: Optional[Union[int, str]] = None):
    """Shared squeezeVar step of e_bayes and treat.

    Returns (model, testable, squeezed, s2_post, df_total).
    """
    check_limma_model_fitted(model)
    if model.contrast_fit is None:
        model = _coef_contrast(model, coef)
    cf = model.contrast_fit

    testable = cf.testable
    s2 = cf.sigma ** 2
    df = cf.df_residual.astype(float)
    # The prior pools every residual variance, whatever the contrast touches.
    pooled = np.isfinite(s2) & (df > 0)
    s2_post = np.full(len(s2), np.nan)
    df_total = np.full(len(s2), np.nan)
    if not pooled.any():
        return model, testable, (0.0, np.nan), s2_post, df_total

    squeezed = squeeze_var(s2[pooled], df[pooled])
    s2_post[pooled] = squeezed.var_post
    df_pooled = float(df[pooled].sum())
    df_total[pooled] = np.minimum(squeezed.df_prior + df[pooled], df_pooled)
    return model, testable, (squeezed.df_prior, squeezed.var_prior), s2_post, df_total


def _tmixture(
    t: np.ndarray,
    stdev_unscaled: np.ndarray,
    df: np.ndarray,
    proportion: float,
    v0_lim: Optional[np.ndarray] = None,
) -> float:
    """Estimate the prior variance of the non-zero log fold changes."""
    ok = np.isfinite(t)
    t = np.abs(t[ok])
    stdev_unscaled = stdev_unscaled[ok]
    df = df[ok].copy()
    ngenes = len(t)
    ntarget = int(np.ceil(proportion / 2 * ngenes))
    if ntarget < 1:
        return np.nan
    p = max(ntarget / ngenes, proportion)

    max_df = float(np.max(df))
    lower = df < max_df
    if lower.any():
        # Put every t on the same df scale before ranking
        t[lower] = stats.t.isf(stats.t.sf(t[lower], df[lower]), max_df)
        df[lower] = max_df

    o = np.argsort(-t, kind="stable")[:ntarget]
    t = t[o]
    v1 = stdev_unscaled[o] ** 2
    r = np.arange(ntarget, 0, -1)
    p0 = 2 * stats.t.sf(t, max_df)
    ptarget = ((r - 0.5) / ngenes - (1 - p) * p0) / p
    v0 = np.zeros(ntarget)
    pos = ptarget > p0
    if pos.any():
        qtarget = stats.t.isf(ptarget[pos] / 2, max_df)
        v0[pos] = v1[pos] * ((t[pos] / qtarget) ** 2 - 1)
    if v0_lim is not None:
        v0 = np.clip(v0, v0_lim[0], v0_lim[1])
    return float(np.mean(v0))


def _lods(
    t: np.ndarray,
    stdev_unscaled: np.ndarray,
    df_total: np.ndarray,
    df_prior: float,
    s2_prior: float,
    proportion: float,
    stdev_coef_lim: Tuple[float, float],
) -> np.ndarray:
    lods = np.full(len(t), np.nan)
    if not np.isfinite(s2_prior) or s2_prior <= 0:
        return lods
    ok = np.isfinite(t) & np.isfinite(df_total)
    if not ok.any():
        return lods

    var_prior_lim = np.asarray(stdev_coef_lim, dtype=float) ** 2 / s2_prior
    var_prior = _tmixture(t[ok], stdev_unscaled[ok], df_total[ok], proportion, var_prior_lim)
    if not np.isfinite(var_prior):
        var_prior = 1.0 / s2_prior

    su2 = stdev_unscaled[ok] ** 2
    r = (su2 + var_prior) / su2
    t2 = t[ok] ** 2
    dft = df_total[ok]
    with np.errstate(divide="ignore", invalid="ignore"):
        if df_prior > 1e6:
            kernel = t2 * (1 - 1 / r) / 2
        else:
            kernel = (1 + dft) / 2 * np.log((t2 + dft) / (t2 / r + dft))
    lods[ok] = np.log(proportion / (1 - proportion)) - np.log(r) / 2 + kernel
    return lods


def e_bayes(
    model: LimmaModel,
    proportion: float = 0.01,
    stdev_coef_lim: Tuple[float, float] = (0.1, 4.0),
    coef: Optional[Union[int, str]] = None,
) -> LimmaModel:
    """
    Compute empirical Bayes moderated statistics.

    Residual variances of all features with df > 0 are squeezed towards a
    common prior (see squeeze_var), then each contrast estimate is tested
    with the moderated standard error against a t-distribution with
    df_total = min(d0 + df, sum of df) degrees of freedom.

    Args:
        model: LimmaModel from contrasts_fit() (or lm_fit() with ``coef``).
        proportion: Assumed proportion of changed features. Default: 0.01.
        stdev_coef_lim: Limits for the prior standard deviation of
            log fold changes, used for the B-statistic. Default: (0.1, 4).
        coef: Coefficient (name or 1-based index) to test when the model
            has no contrast_fit.

    Returns:
        LimmaModel: With ebayes slot set.

    Raises:
        TypeError: If model is not a LimmaModel.
        ValueError: If model is not fitted.

    Example:
        >>> import deferential_abundance.limma as limma
        >>> model = limma.lm_fit(se, design).contrasts_fit(("B", "A"))
        >>> model_eb = limma.e_bayes(model)
        >>> results = limma.top_table(model_eb)
    """
    if not 0 < proportion < 1:
        raise ValueError(f"proportion must lie in (0, 1), got {proportion}")

    model, testable, (df_prior, s2_prior), s2_post, df_total = moderate(model, coef)
    cf = model.contrast_fit

    with np.errstate(invalid="ignore"):
        se_post = cf.stdev_unscaled * np.sqrt(s2_post)
    t = t_statistic(cf.coefficient, se_post)
    t[~testable] = np.nan
    p_value = 2 * stats.t.sf(np.abs(t), df_total)

    lods = _lods(t, cf.stdev_unscaled, df_total, df_prior, s2_prior, proportion, stdev_coef_lim)

    eb = EBayesFit(
        df_prior=df_prior,
        s2_prior=s2_prior,
        s2_post=s2_post,
        df_total=df_total,
        t=t,
        p_value=p_value,
        lods=lods,
        proportion=proportion,
    )
    return replace(model, ebayes=eb)
