"""
Empirical Bayes variance moderation (limma's squeezeVar and fitFDist).

The residual variances s2 of all features are modelled as scaled
chi-squared draws around a common prior: s2 | sigma2 ~ sigma2 chi2(df) / df
with 1 / sigma2 ~ chi2(d0) / (d0 s0^2). The hyperparameters d0 and s0^2 are
estimated by matching the mean and variance of log(s2), and each variance is
shrunk towards s0^2:

    s2_post = (d0 s0^2 + df s2) / (d0 + df)

References:
    Smyth (2004) Statistical Applications in Genetics and Molecular Biology
    3, Article 3.
"""

from __future__ import annotations
from typing import NamedTuple, Tuple, Union
import warnings
import numpy as np
from scipy.special import digamma, polygamma

from ..errors import ModerationFitError, ModerationWarning


class SqueezedVariances(NamedTuple):
    df_prior: float
    var_prior: float
    var_post: np.ndarray


def _trigamma(x):
    return polygamma(1, x)


def _logmdigamma(x):
    return np.log(x) - digamma(x)


def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """
    Solve trigamma(y) = x for y > 0.

    Newton iteration on 1 / trigamma(y), which is convex and nearly linear,
    starting from y = 0.5 + 1 / x. Very large and very small arguments use
    the asymptotic solutions directly.

    Raises:
        ModerationFitError: x is not positive and finite, or the iteration
            does not converge within ``max_iter`` steps.
    """
    if not np.isfinite(x) or x <= 0:
        raise ModerationFitError(f"trigamma_inverse needs a positive finite argument, got {x}")
    if x > 1e7:
        return float(1.0 / np.sqrt(x))
    if x < 1e-6:
        return float(1.0 / x)

    y = 0.5 + 1.0 / x
    for _ in range(max_iter):
        tri = _trigamma(y)
        dif = tri * (1.0 - tri / x) / polygamma(2, y)
        y = y + dif
        if not np.isfinite(y) or y <= 0:
            raise ModerationFitError(f"trigamma_inverse diverged for x = {x}")
        if -dif / y < tol:
            return float(y)
    raise ModerationFitError(f"trigamma_inverse did not converge in {max_iter} iterations for x = {x}")


def fit_f_dist(
    var: np.ndarray,
    df: Union[float, np.ndarray],
) -> Tuple[float, float]:
    """
    Estimate the prior df d0 and prior variance s0^2 by the method of moments.

    Only features with finite variance and df > 0 take part. Variances are
    offset away from zero by 1e-5 times their median so that the log moments
    exist.

    Args:
        var: Residual variances (n_features,).
        df: Residual degrees of freedom, scalar or per feature.

    Returns:
        Tuple (d0, s0^2).

    Raises:
        ModerationFitError: Fewer than two usable features, or the moment
            equation has no finite positive solution for d0.
    """
    var = np.asarray(var, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), var.shape)
    ok = np.isfinite(var) & np.isfinite(df) & (var > -1e-15) & (df > 1e-15)
    x = np.maximum(var[ok], 0.0)
    d = df[ok]
    n = len(x)
    if n < 2:
        raise ModerationFitError(f"need at least two features with residual df > 0, got {n}")

    m = np.median(x)
    if m == 0:
        m = 1.0
    x = np.maximum(x, 1e-5 * m)

    e = np.log(x) + _logmdigamma(d / 2.0)
    emean = float(np.mean(e))
    evar = float(np.sum((e - emean) ** 2) / (n - 1)) - float(np.mean(_trigamma(d / 2.0)))
    if not evar > 0:
        raise ModerationFitError(
            "log variances are less dispersed than expected, prior df is infinite"
        )

    d0 = 2.0 * trigamma_inverse(evar)
    if not np.isfinite(d0) or d0 <= 0:
        raise ModerationFitError(f"prior df estimate {d0} is not finite and positive")
    s20 = float(np.exp(emean - _logmdigamma(d0 / 2.0)))
    if not np.isfinite(s20):
        raise ModerationFitError(f"prior variance estimate {s20} is not finite")
    return float(d0), s20


def squeeze_var(
    var: np.ndarray,
    df: Union[float, np.ndarray],
) -> SqueezedVariances:
    """
    Shrink residual variances towards a common prior.

    If the prior cannot be estimated a ModerationWarning is emitted and
    d0 = 0 is used, so the posterior variances equal the raw variances.

    Args:
        var: Residual variances (n_features,).
        df: Residual degrees of freedom, scalar or per feature.

    Returns:
        SqueezedVariances(df_prior, var_prior, var_post).
    """
    var = np.asarray(var, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), var.shape)
    try:
        d0, s20 = fit_f_dist(var, df)
    except ModerationFitError as err:
        warnings.warn(
            f"Variance moderation disabled (prior df set to 0): {err}",
            ModerationWarning,
            stacklevel=2,
        )
        return SqueezedVariances(0.0, np.nan, var.copy())

    var_post = (d0 * s20 + df * var) / (d0 + df)
    return SqueezedVariances(d0, s20, var_post)
