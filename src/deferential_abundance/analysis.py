"""
One-shot differential abundance analysis.

Runs design construction, linear model fitting, contrast evaluation,
empirical Bayes moderation, multiple testing correction and classification
in one call and returns the results table.
"""

from __future__ import annotations
from typing import Any, Dict, Literal, Mapping, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, fields, replace
import pandas as pd

from .errors import DesignError
from .limma import (
    DEFAULT_FC_THRESHOLD,
    contrasts_fit,
    e_bayes,
    lm_fit,
    model_matrix,
    top_table,
)
from .limma.checks import check_se, check_assay_exists
from .limma.p_adjust import ADJUST_METHODS
from .limma.top_table import SORT_KEYS
from .limma.utils import get_expression, get_weights, log2_transform, resolve_groups


@dataclass(frozen=True)
class AnalysisConfig:
    """Configuration of a differential abundance run.

    Attributes:
        group: Column of column_data holding the group labels, or the labels.
        contrast: (numerator, denominator) group pair; tests numerator minus
            denominator. Default: second level minus first when there are
            exactly two levels.
        method: "ls" (least squares) or "robust". Default: "ls".
        fc_threshold: Log2 fold-change threshold for status. Default: log2(1.5).
        alpha: Adjusted p-value threshold for status. Default: 0.05.
        intercept: Use an intercept design (first level as reference).
        levels: Ordered group levels. Default: sorted distinct labels.
        assay: Expression assay name. Default: "log_expr".
        weights: Weights assay name or None (uses a "weights" assay if present).
        log_transform: log2-transform the assay first. Default: False.
        adjust_method: Multiple testing method. Default: "BH".
        proportion: Assumed proportion of changed features. Default: 0.01.
        n_jobs: Parallel jobs for model fitting. Default: 1.
        sort_by: Row order of the results table. Default: "none".
    """
    group: Union[str, Sequence[Any]] = "condition"
    contrast: Optional[Tuple[str, str]] = None
    method: Literal["ls", "robust"] = "ls"
    fc_threshold: float = DEFAULT_FC_THRESHOLD
    alpha: float = 0.05
    intercept: bool = False
    levels: Optional[Sequence[str]] = None
    assay: str = "log_expr"
    weights: Optional[str] = None
    log_transform: bool = False
    adjust_method: str = "BH"
    proportion: float = 0.01
    n_jobs: int = 1
    sort_by: str = "none"

    def __post_init__(self) -> None:
        if self.method not in ("ls", "robust"):
            raise ValueError(f"method must be 'ls' or 'robust', got {self.method!r}")
        if not self.fc_threshold >= 0:
            raise ValueError(f"fc_threshold must be non-negative, got {self.fc_threshold}")
        if not 0 < self.alpha <= 1:
            raise ValueError(f"alpha must lie in (0, 1], got {self.alpha}")
        if self.contrast is not None and len(self.contrast) != 2:
            raise ValueError(f"contrast must be a (numerator, denominator) pair, got {self.contrast!r}")
        if self.adjust_method not in ADJUST_METHODS:
            raise ValueError(f"Unknown adjust_method {self.adjust_method!r}")
        if self.sort_by not in SORT_KEYS:
            raise ValueError(f"Unknown sort_by {self.sort_by!r}")

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a config from a plain mapping (e.g. parsed YAML or JSON).

        Raises:
            TypeError: On keys that are not config fields.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise TypeError(f"Unknown AnalysisConfig keys: {unknown}")
        values: Dict[str, Any] = dict(mapping)
        if values.get("contrast") is not None:
            values["contrast"] = tuple(values["contrast"])
        return cls(**values)


def _default_contrast(levels: Sequence[str]) -> Tuple[str, str]:
    if len(levels) != 2:
        raise DesignError(
            f"A contrast must be given when there are {len(levels)} groups ({list(levels)})"
        )
    return levels[1], levels[0]


def run_differential_abundance(
    se: Any,
    config: Optional[AnalysisConfig] = None,
    **overrides: Any,
) -> pd.DataFrame:
    """
    Run the full differential abundance pipeline once.

    Works with any BiocPy SummarizedExperiment variant or a features x
    samples DataFrame (then ``group`` must be the labels themselves).

    Args:
        se: Input experiment with a log2 abundance assay.
        config: AnalysisConfig. Default: AnalysisConfig().
        **overrides: Field overrides applied on top of ``config``.

    Returns:
        pd.DataFrame: One row per feature, see top_table for the columns.

    Raises:
        DesignError: Samples cannot be assigned to groups, or the contrast
            is undefined.
        InsufficientDataError: Robust fitting on a matrix with missing values.
        CorrectionError: No feature could be tested.

    Example:
        >>> from deferential_abundance import AnalysisConfig, run_differential_abundance
        >>> cfg = AnalysisConfig(group="condition", contrast=("Treatment", "Control"))
        >>> results = run_differential_abundance(se, cfg)
        >>> results.loc[results["status"] != "Not significant"]
    """
    config = config or AnalysisConfig()
    if overrides:
        config = replace(config, **overrides)

    check_se(se)
    check_assay_exists(se, config.assay)
    values, feature_names, sample_names = get_expression(se, config.assay)

    groups = resolve_groups(se, config.group)
    if len(groups) != len(sample_names):
        raise DesignError(
            f"Got {len(groups)} group labels for {len(sample_names)} samples"
        )
    design = model_matrix(
        groups,
        levels=config.levels,
        intercept=config.intercept,
        sample_names=sample_names,
    )
    if config.levels is not None:
        levels = [str(lv) for lv in config.levels]
    else:
        levels = sorted({str(g) for g in groups})
    contrast = config.contrast or _default_contrast(levels)

    if config.log_transform:
        values = log2_transform(values)
    data = pd.DataFrame(values, index=feature_names, columns=sample_names)
    weights = get_weights(se, config.weights)

    model = lm_fit(data, design, method=config.method, weights=weights, n_jobs=config.n_jobs)
    model = contrasts_fit(model, tuple(str(x) for x in contrast))
    model = e_bayes(model, proportion=config.proportion)
    return top_table(
        model,
        sort_by=config.sort_by,
        adjust_method=config.adjust_method,
        fc_threshold=config.fc_threshold,
        alpha=config.alpha,
    )
