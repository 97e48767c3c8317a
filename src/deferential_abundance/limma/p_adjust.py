"""
Multiple testing correction of p-values.
"""

from __future__ import annotations
from typing import Sequence, Union
import numpy as np

from ..errors import CorrectionError

ADJUST_METHODS = ("BH", "fdr", "bonferroni", "none")


def p_adjust(
    p: Union[Sequence[float], np.ndarray],
    method: str = "BH",
) -> np.ndarray:
    """
    Adjust p-values for multiple testing.

    ``"BH"`` (alias ``"fdr"``) is the Benjamini-Hochberg step-up procedure:
    with the n finite p-values ranked ascending, the adjusted value at rank
    i is min over j >= i of p(j) * n / j, capped at 1. NaN entries (untested
    features) are skipped, stay NaN and keep their position.

    Args:
        p: Raw p-values.
        method: "BH", "fdr", "bonferroni" or "none". Default: "BH".

    Returns:
        np.ndarray: Adjusted p-values in the input order.

    Raises:
        CorrectionError: No finite p-value to adjust.
        ValueError: Unknown method or p-values outside [0, 1].
    """
    if method not in ADJUST_METHODS:
        raise ValueError(f"Unknown adjust method '{method}', expected one of {ADJUST_METHODS}")

    p = np.asarray(p, dtype=float).reshape(-1)
    ok = np.isfinite(p)
    n = int(ok.sum())
    if n == 0:
        raise CorrectionError("No testable p-values to adjust")

    pv = p[ok]
    if np.any(pv < 0) or np.any(pv > 1):
        raise ValueError("p-values must lie in [0, 1]")

    if method == "none":
        adjusted = pv.copy()
    elif method == "bonferroni":
        adjusted = np.minimum(pv * n, 1.0)
    else:
        # Descending order, running minimum from the largest p-value down
        o = np.argsort(pv, kind="stable")[::-1]
        rank = np.arange(n, 0, -1)
        stepped = np.minimum.accumulate(pv[o] * n / rank)
        adjusted = np.empty(n)
        adjusted[o] = np.minimum(stepped, 1.0)

    out = np.full(p.shape, np.nan)
    out[ok] = adjusted
    return out
