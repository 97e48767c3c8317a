"""
Test against a fold-change threshold (limma's treat).

This module provides a functional interface for fold-change threshold testing.
"""

from __future__ import annotations
from typing import Optional, Union
from dataclasses import replace
import numpy as np
from scipy import stats

from .contrasts_fit import t_statistic
from .e_bayes import EBayesFit, moderate
from .lm_fit import LimmaModel


def treat(
    model: LimmaModel,
    lfc: float = 1.0,
    coef: Optional[Union[int, str]] = None,
) -> LimmaModel:
    """
    Test for differential abundance relative to a fold-change threshold.

    Uses the same variance moderation as e_bayes but tests the null
    hypothesis |logFC| <= lfc. The reported t-statistic is
    sign(logFC) * max((|logFC| - lfc) / se, 0).

    Args:
        model: LimmaModel from contrasts_fit() (or lm_fit() with ``coef``).
        lfc: Log2 fold-change threshold. Default: 1.0.
        coef: Coefficient (name or 1-based index) when the model has no
            contrast_fit.

    Returns:
        LimmaModel: With TREAT statistics in the ebayes slot.

    Example:
        >>> import deferential_abundance.limma as limma
        >>> model = limma.lm_fit(se, design).contrasts_fit(("B", "A"))
        >>> model_treat = limma.treat(model, lfc=1.0)
        >>> results = model_treat.top_table()
    """
    lfc = abs(float(lfc))
    model, testable, (df_prior, s2_prior), s2_post, df_total = moderate(model, coef)
    cf = model.contrast_fit

    with np.errstate(invalid="ignore"):
        se_post = cf.stdev_unscaled * np.sqrt(s2_post)
    acoef = np.abs(cf.coefficient)
    t_right = t_statistic(acoef - lfc, se_post)
    t_left = t_statistic(acoef + lfc, se_post)
    p_value = stats.t.sf(t_right, df_total) + stats.t.sf(t_left, df_total)
    t = np.sign(cf.coefficient) * np.maximum(t_right, 0.0)
    t[~testable] = np.nan
    p_value[~testable] = np.nan

    eb = EBayesFit(
        df_prior=df_prior,
        s2_prior=s2_prior,
        s2_post=s2_post,
        df_total=df_total,
        t=t,
        p_value=p_value,
        lods=np.full(len(t), np.nan),
        proportion=np.nan,
        treat_lfc=lfc,
    )
    return replace(model, ebayes=eb)
