"""
Build the differential abundance results table (limma's topTable).

This module provides a functional interface to extract per-feature results.
"""

from __future__ import annotations
from typing import Optional, Union
import numpy as np
import pandas as pd

from .checks import check_limma_model
from .decide_tests import DEFAULT_ALPHA, DEFAULT_FC_THRESHOLD, classify
from .lm_fit import LimmaModel
from .p_adjust import p_adjust

RESULT_COLUMNS = [
    "feature_id",
    "log_fc",
    "ave_expr",
    "raw_t_statistic",
    "t_statistic",
    "p_value",
    "adj_p_value",
    "df_total",
    "b_statistic",
    "status",
    "tested",
]

SORT_KEYS = {
    "none": None,
    "p": ("p_value", True),
    "logFC": ("abs_log_fc", False),
    "AveExpr": ("ave_expr", False),
    "B": ("b_statistic", False),
}


def top_table(
    model: LimmaModel,
    n: Optional[int] = None,
    sort_by: str = "none",
    adjust_method: str = "BH",
    fc_threshold: float = DEFAULT_FC_THRESHOLD,
    alpha: float = DEFAULT_ALPHA,
    coef: Optional[Union[int, str]] = None,
) -> pd.DataFrame:
    """
    Extract per-feature results from a moderated fit.

    Will run e_bayes if not already done. Every input feature is reported;
    features that could not be tested have ``tested == False``, NaN
    statistics and status "Not significant", and sort last.

    Args:
        model: LimmaModel (will run e_bayes if ebayes slot not set).
        n: Number of rows to return (None = all).
        sort_by: "none" (input order), "p", "logFC" (absolute value),
            "AveExpr" or "B". Default: "none".
        adjust_method: Multiple testing method. Default: "BH".
        fc_threshold: Log2 fold-change threshold for status. Default: log2(1.5).
        alpha: Adjusted p-value threshold for status. Default: 0.05.
        coef: Coefficient to test when the model has no contrast_fit.

    Returns:
        pd.DataFrame: Results table with columns:
            - feature_id: feature identifier
            - log_fc: log2 fold change (contrast estimate)
            - ave_expr: average log2 abundance across samples
            - raw_t_statistic: ordinary t-statistic
            - t_statistic: moderated t-statistic
            - p_value: raw p-value of the moderated t
            - adj_p_value: adjusted p-value
            - df_total: moderated degrees of freedom
            - b_statistic: log-odds of differential abundance
            - status: "Increased", "Decreased" or "Not significant"
            - tested: False for untestable features

    Raises:
        CorrectionError: No feature could be tested.

    Example:
        >>> import deferential_abundance.limma as limma
        >>> model = limma.lm_fit(se, design).contrasts_fit(("B", "A")).e_bayes()
        >>> results = limma.top_table(model, sort_by="p", n=100)
    """
    from .e_bayes import e_bayes

    check_limma_model(model)
    if sort_by not in SORT_KEYS:
        raise ValueError(f"Unknown sort_by '{sort_by}', expected one of {list(SORT_KEYS)}")
    if model.ebayes is None:
        model = e_bayes(model, coef=coef)

    cf, eb = model.contrast_fit, model.ebayes
    tested = np.isfinite(eb.p_value)
    adj = p_adjust(eb.p_value, method=adjust_method)

    df = pd.DataFrame({
        "feature_id": list(model.feature_names),
        "log_fc": cf.coefficient,
        "ave_expr": cf.amean,
        "raw_t_statistic": cf.t,
        "t_statistic": eb.t,
        "p_value": eb.p_value,
        "adj_p_value": adj,
        "df_total": eb.df_total,
        "b_statistic": eb.lods,
        "status": classify(cf.coefficient, adj, fc_threshold, alpha),
        "tested": tested,
    })

    key = SORT_KEYS[sort_by]
    if key is not None:
        column, ascending = key
        df["abs_log_fc"] = df["log_fc"].abs()
        df["untested"] = ~df["tested"]
        df = df.sort_values(
            ["untested", column],
            ascending=[True, ascending],
            kind="mergesort",
            na_position="last",
        )
        df = df.drop(columns=["abs_log_fc", "untested"])

    if n is not None:
        df = df.head(n)
    return df.reset_index(drop=True)[RESULT_COLUMNS]
