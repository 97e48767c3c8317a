"""
Fit feature-wise linear models (limma's lmFit).

This module provides the LimmaModel dataclass that carries results through
the pipeline, the per-feature fitting function and the lm_fit function that
applies it to every row of an expression matrix.
"""

from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, TypeVar, Union
from dataclasses import dataclass
import numpy as np
import pandas as pd
import statsmodels.api as sm
from joblib import Parallel, delayed

from ..errors import InsufficientDataError
from .checks import check_se, check_assay_exists, check_design, check_weights
from .utils import get_expression, get_weights

# Type variable for SummarizedExperiment variants
SE = TypeVar("SE")

FIT_METHODS = ("ls", "robust")

# Residuals at the rounding level of y count as an exact fit.
_RSS_TOL = (64 * np.finfo(float).eps) ** 2


@dataclass(frozen=True)
class FeatureFit:
    """Linear model fit of a single feature.

    Attributes:
        coefficients: Estimated coefficients, NaN where not estimable.
        cov_unscaled: Unscaled covariance (X'WX)^-1, NaN rows/columns for
            non-estimable coefficients.
        sigma: Residual standard deviation (NaN when df_residual is 0).
        df_residual: Usable observations minus estimated coefficients.
    """
    coefficients: np.ndarray
    cov_unscaled: np.ndarray
    sigma: float
    df_residual: int


@dataclass(frozen=True)
class LinearFit:
    """Stacked per-feature fits for a whole expression matrix.

    Features whose fit raised InsufficientDataError are flagged in
    ``insufficient`` and carry NaN coefficients and zero df.
    """
    coefficients: pd.DataFrame
    stdev_unscaled: pd.DataFrame
    cov_unscaled: np.ndarray
    sigma: np.ndarray
    df_residual: np.ndarray
    amean: np.ndarray
    insufficient: np.ndarray
    method: str


@dataclass
class LimmaModel:
    """Container for limma linear model fit results.

    This dataclass stores the fit and associated metadata from lm_fit.
    Use with contrasts_fit(), e_bayes(), top_table(), etc. for downstream
    analysis. Every stage returns a new LimmaModel.

    Attributes:
        sample_names: Sample names (column names) from the input.
        feature_names: Feature names (row names) from the input.
        lm_fit: LinearFit from lm_fit.
        design: Design matrix used for fitting.
        contrast_fit: ContrastFit from contrasts_fit (optional).
        ebayes: EBayesFit from e_bayes or treat (optional).
        method: Fitting method used.
        metadata: Additional metadata.
    """
    sample_names: Optional[Sequence[str]] = None
    feature_names: Optional[Sequence[str]] = None
    lm_fit: Optional[LinearFit] = None
    design: Optional[pd.DataFrame] = None
    contrast_fit: Optional[Any] = None
    ebayes: Optional[Any] = None
    method: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def contrasts_fit(
        self,
        contrast: Union[Sequence[float], pd.Series, Tuple[str, str]],
    ) -> "LimmaModel":
        """
        Apply contrast to fitted model.

        Convenience method that delegates to the contrasts_fit function.

        Returns:
            LimmaModel with contrast_fit slot set.
        """
        from .contrasts_fit import contrasts_fit as _contrasts_fit
        return _contrasts_fit(self, contrast=contrast)

    def e_bayes(
        self,
        proportion: float = 0.01,
        stdev_coef_lim: Tuple[float, float] = (0.1, 4.0),
        coef: Optional[Union[int, str]] = None,
    ) -> "LimmaModel":
        """
        Apply empirical Bayes moderation.

        Convenience method that delegates to the e_bayes function.

        Returns:
            LimmaModel with ebayes slot set.
        """
        from .e_bayes import e_bayes as _e_bayes
        return _e_bayes(self, proportion=proportion, stdev_coef_lim=stdev_coef_lim, coef=coef)

    def treat(
        self,
        lfc: float = 1.0,
        coef: Optional[Union[int, str]] = None,
    ) -> "LimmaModel":
        """
        Apply TREAT (fold-change threshold testing).

        Convenience method that delegates to the treat function.

        Returns:
            LimmaModel with TREAT statistics in the ebayes slot.
        """
        from .treat import treat as _treat
        return _treat(self, lfc=lfc, coef=coef)

    def top_table(
        self,
        n: Optional[int] = None,
        sort_by: str = "none",
        adjust_method: str = "BH",
        **kwargs: Any
    ) -> pd.DataFrame:
        """
        Build the results table.

        Convenience method that delegates to the top_table function.

        Returns:
            pd.DataFrame with one row per feature.
        """
        from .top_table import top_table as _top_table
        return _top_table(self, n=n, sort_by=sort_by, adjust_method=adjust_method, **kwargs)

    def decide_tests(
        self,
        adjust_method: str = "BH",
        p_value: float = 0.05,
        lfc: Optional[float] = None,
    ) -> pd.DataFrame:
        """
        Classify features as up/down/not significant.

        Convenience method that delegates to the decide_tests function.

        Returns:
            pd.DataFrame with -1 (down), 0 (not sig), 1 (up).
        """
        from .decide_tests import decide_tests as _decide_tests
        return _decide_tests(self, adjust_method=adjust_method, p_value=p_value, lfc=lfc)


def _estimable_columns(X: np.ndarray) -> List[int]:
    """Greedy left-to-right selection of linearly independent columns."""
    keep: List[int] = []
    for j in range(X.shape[1]):
        candidate = keep + [j]
        if np.linalg.matrix_rank(X[:, candidate]) == len(candidate):
            keep = candidate
    return keep


def _expand(beta: np.ndarray, cov: np.ndarray, keep: List[int], p: int) -> Tuple[np.ndarray, np.ndarray]:
    """Scatter estimates for the estimable columns back to all p columns."""
    beta = np.atleast_2d(beta)
    coefficients = np.full((beta.shape[0], p), np.nan)
    cov_unscaled = np.full((p, p), np.nan)
    coefficients[:, keep] = beta
    cov_unscaled[np.ix_(keep, keep)] = cov
    return coefficients, cov_unscaled


def _rss(resid: np.ndarray, y: np.ndarray) -> np.ndarray:
    rss = np.sum(resid ** 2, axis=0)
    return np.where(rss <= _RSS_TOL * np.sum(y ** 2, axis=0), 0.0, rss)


def _fit_ls(y: np.ndarray, X: np.ndarray, w: Optional[np.ndarray], p: int) -> FeatureFit:
    sw = np.sqrt(w) if w is not None else np.ones(len(y))
    Xw = X * sw[:, None]
    yw = y * sw
    keep = _estimable_columns(Xw)
    Xk = Xw[:, keep]
    beta, _, _, _ = np.linalg.lstsq(Xk, yw, rcond=None)
    resid = yw - Xk @ beta
    df = len(y) - len(keep)
    sigma = float(np.sqrt(_rss(resid, yw) / df)) if df > 0 else np.nan
    coefficients, cov_unscaled = _expand(beta, np.linalg.inv(Xk.T @ Xk), keep, p)
    return FeatureFit(coefficients[0], cov_unscaled, sigma, df)


def _fit_robust(y: np.ndarray, X: np.ndarray, w: Optional[np.ndarray], p: int) -> FeatureFit:
    """Huber M-estimation by iteratively re-weighted least squares."""
    sw = np.sqrt(w) if w is not None else np.ones(len(y))
    Xw = X * sw[:, None]
    yw = y * sw
    keep = _estimable_columns(Xw)
    Xk = Xw[:, keep]
    df = len(y) - len(keep)

    beta, _, _, _ = np.linalg.lstsq(Xk, yw, rcond=None)
    resid = yw - Xk @ beta
    # Huber weights are undefined for a zero MAD scale, use least squares.
    if df <= 0 or sm.robust.scale.mad(resid) == 0:
        return _fit_ls(y, X, w, p)

    rlm = sm.RLM(yw, Xk, M=sm.robust.norms.HuberT()).fit()
    rw = np.asarray(rlm.weights, dtype=float)
    cov = np.linalg.inv(Xk.T @ (Xk * rw[:, None]))
    coefficients, cov_unscaled = _expand(np.asarray(rlm.params, dtype=float), cov, keep, p)
    return FeatureFit(coefficients[0], cov_unscaled, float(rlm.scale), df)


def fit_feature(
    y: np.ndarray,
    design: Union[pd.DataFrame, np.ndarray],
    weights: Optional[np.ndarray] = None,
    method: Literal["ls", "robust"] = "ls",
) -> FeatureFit:
    """
    Fit the linear model for one feature.

    Observations that are missing (NaN) or carry a non-positive weight are
    dropped before fitting. Design columns that are not estimable from the
    remaining samples get NaN coefficients.

    Args:
        y: Log-scale values of the feature, one per sample.
        design: Design matrix (samples x coefficients).
        weights: Optional observation weights, one per sample.
        method: "ls" for (weighted) least squares, "robust" for Huber IRLS.

    Returns:
        FeatureFit for this feature.

    Raises:
        InsufficientDataError: Fewer usable samples than design columns.
    """
    y = np.asarray(y, dtype=float)
    X = np.asarray(design, dtype=float)
    p = X.shape[1]
    obs = np.isfinite(y)
    if weights is not None:
        weights = np.asarray(weights, dtype=float)
        obs &= np.isfinite(weights) & (weights > 0)
    n_obs = int(obs.sum())
    if n_obs < p:
        raise InsufficientDataError(
            f"{n_obs} usable observation(s) for {p} design columns"
        )
    w = weights[obs] if weights is not None else None
    if method == "robust":
        return _fit_robust(y[obs], X[obs], w, p)
    return _fit_ls(y[obs], X[obs], w, p)


def _fit_block(
    rows: np.ndarray,
    Y: np.ndarray,
    X: np.ndarray,
    obs: np.ndarray,
) -> Tuple[np.ndarray, Optional[Tuple[np.ndarray, np.ndarray, np.ndarray, int]]]:
    """Unweighted least squares for features sharing one missingness pattern.

    The decomposition of the design is computed once for the whole block.
    Returns None for the fit when the pattern leaves too few samples.
    """
    p = X.shape[1]
    if int(obs.sum()) < p:
        return rows, None
    Xo = X[obs]
    keep = _estimable_columns(Xo)
    Xk = Xo[:, keep]
    Yo = Y[:, obs].T
    beta, _, _, _ = np.linalg.lstsq(Xk, Yo, rcond=None)
    resid = Yo - Xk @ beta
    df = int(obs.sum()) - len(keep)
    if df > 0:
        sigma = np.sqrt(_rss(resid, Yo) / df)
    else:
        sigma = np.full(len(rows), np.nan)
    coefficients, cov_unscaled = _expand(beta.T, np.linalg.inv(Xk.T @ Xk), keep, p)
    return rows, (coefficients, cov_unscaled, sigma, df)


def _fit_rows(
    rows: np.ndarray,
    Y: np.ndarray,
    X: np.ndarray,
    W: Optional[np.ndarray],
    method: str,
) -> List[Tuple[int, Optional[FeatureFit]]]:
    out: List[Tuple[int, Optional[FeatureFit]]] = []
    for k, i in enumerate(rows):
        w = W[k] if W is not None else None
        try:
            out.append((int(i), fit_feature(Y[k], X, weights=w, method=method)))
        except InsufficientDataError:
            out.append((int(i), None))
    return out


def _average_expression(values: np.ndarray) -> np.ndarray:
    finite = np.isfinite(values)
    counts = finite.sum(axis=1)
    sums = np.where(finite, values, 0.0).sum(axis=1)
    amean = np.full(values.shape[0], np.nan)
    np.divide(sums, counts, out=amean, where=counts > 0)
    return amean


def lm_fit(
    se: SE,
    design: pd.DataFrame,
    assay: str = "log_expr",
    method: Literal["ls", "robust"] = "ls",
    weights: Union[str, np.ndarray, None] = None,
    n_jobs: int = 1,
    chunk_size: int = 500,
) -> LimmaModel:
    """
    Fit a linear model to every feature of an expression matrix.

    Works with any BiocPy SummarizedExperiment variant (SE, RSE, SCE) or a
    features x samples DataFrame. Missing values are dropped per feature;
    a feature with fewer usable samples than design columns is flagged as
    insufficient instead of failing the run.

    Args:
        se: Input SummarizedExperiment with a log-scale expression assay.
        design: Design matrix (samples x covariates) as pandas DataFrame.
        assay: Expression assay to use. Default: "log_expr".
        method: Fitting method ("ls" or "robust"). Default: "ls".
        weights: Observation weights: assay name, array (features x samples
            or one per sample) or None. A "weights" assay is used when present.
        n_jobs: Number of parallel jobs for fitting. Default: 1.
        chunk_size: Features per parallel task for weighted or robust fits.

    Returns:
        LimmaModel: Container with fitted model.

    Raises:
        TypeError: If inputs are invalid.
        KeyError: If assay doesn't exist.
        InsufficientDataError: Robust fitting requested on a matrix with
            missing values.

    Example:
        >>> import deferential_abundance.limma as limma
        >>> design = limma.model_matrix(["A", "A", "A", "B", "B", "B"])
        >>> model = limma.lm_fit(se, design)
        >>> results = model.contrasts_fit(("B", "A")).e_bayes().top_table()
    """
    check_se(se)
    check_assay_exists(se, assay)
    values, feature_names, sample_names = get_expression(se, assay)
    check_design(design, values.shape[1])
    if method not in FIT_METHODS:
        raise ValueError(f"Unknown fitting method '{method}', expected one of {FIT_METHODS}")

    W = get_weights(se, weights)
    if W is not None:
        if W.ndim == 1:
            W = np.broadcast_to(W, values.shape)
        check_weights(W, values.shape)

    X = design.to_numpy(dtype=float)
    n, p = values.shape[0], X.shape[1]
    obs = np.isfinite(values)
    if W is not None:
        obs &= np.isfinite(W) & (W > 0)

    if method == "robust" and not obs.all():
        n_bad = int((~obs.all(axis=1)).sum())
        raise InsufficientDataError(
            f"Robust fitting does not accept missing values; {n_bad} feature(s) have missing samples"
        )

    coefficients = np.full((n, p), np.nan)
    cov_unscaled = np.full((n, p, p), np.nan)
    sigma = np.full(n, np.nan)
    df_residual = np.zeros(n, dtype=int)
    insufficient = np.zeros(n, dtype=bool)

    if W is None and method == "ls":
        patterns, inverse = np.unique(obs, axis=0, return_inverse=True)
        inverse = np.asarray(inverse).reshape(-1)
        blocks = [np.flatnonzero(inverse == k) for k in range(len(patterns))]
        tasks = [delayed(_fit_block)(rows, values[rows], X, patterns[k]) for k, rows in enumerate(blocks)]
        results = Parallel(n_jobs=n_jobs, prefer="threads")(tasks)
        for rows, fit in results:
            if fit is None:
                insufficient[rows] = True
                continue
            coefficients[rows], cov_unscaled[rows], sigma[rows], df_residual[rows] = fit
    else:
        chunks = [np.arange(i, min(i + chunk_size, n)) for i in range(0, n, chunk_size)]
        tasks = [
            delayed(_fit_rows)(rows, values[rows], X, W[rows] if W is not None else None, method)
            for rows in chunks
        ]
        results = Parallel(n_jobs=n_jobs, prefer="threads")(tasks)
        for chunk in results:
            for i, fit in chunk:
                if fit is None:
                    insufficient[i] = True
                    continue
                coefficients[i] = fit.coefficients
                cov_unscaled[i] = fit.cov_unscaled
                sigma[i] = fit.sigma
                df_residual[i] = fit.df_residual

    diag = np.diagonal(cov_unscaled, axis1=1, axis2=2)
    with np.errstate(invalid="ignore"):
        stdev_unscaled = np.sqrt(diag)

    columns = [str(c) for c in design.columns]
    fit = LinearFit(
        coefficients=pd.DataFrame(coefficients, index=feature_names, columns=columns),
        stdev_unscaled=pd.DataFrame(stdev_unscaled, index=feature_names, columns=columns),
        cov_unscaled=cov_unscaled,
        sigma=sigma,
        df_residual=df_residual,
        amean=_average_expression(values),
        insufficient=insufficient,
        method=method,
    )

    return LimmaModel(
        sample_names=sample_names,
        feature_names=feature_names,
        lm_fit=fit,
        design=design,
        method=method,
    )
