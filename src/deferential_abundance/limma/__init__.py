"""Limma-style linear models for differential abundance.

This module implements the limma pipeline natively on numpy/scipy:
feature-wise linear models tolerant of missing values, contrasts,
empirical Bayes variance moderation and multiple testing correction.

Functional API:
    >>> import deferential_abundance.limma as limma
    >>> design = limma.model_matrix(groups)
    >>> model = limma.lm_fit(se, design)
    >>> results = model.contrasts_fit(("B", "A")).e_bayes().top_table()
"""

# Functional API exports
from .model_matrix import model_matrix, make_contrast
from .lm_fit import lm_fit, fit_feature, LimmaModel, LinearFit, FeatureFit
from .contrasts_fit import contrasts_fit, ContrastFit
from .squeeze_var import squeeze_var, fit_f_dist, trigamma_inverse
from .e_bayes import e_bayes, EBayesFit
from .treat import treat
from .p_adjust import p_adjust
from .decide_tests import (
    decide_tests,
    classify,
    INCREASED,
    DECREASED,
    NOT_SIGNIFICANT,
    DEFAULT_FC_THRESHOLD,
)
from .top_table import top_table, RESULT_COLUMNS

__all__ = [
    # Functional API
    "model_matrix",
    "make_contrast",
    "lm_fit",
    "fit_feature",
    "contrasts_fit",
    "squeeze_var",
    "fit_f_dist",
    "trigamma_inverse",
    "e_bayes",
    "treat",
    "p_adjust",
    "decide_tests",
    "classify",
    "top_table",
    # Model classes
    "LimmaModel",
    "LinearFit",
    "FeatureFit",
    "ContrastFit",
    "EBayesFit",
    # Constants
    "INCREASED",
    "DECREASED",
    "NOT_SIGNIFICANT",
    "DEFAULT_FC_THRESHOLD",
    "RESULT_COLUMNS",
]
