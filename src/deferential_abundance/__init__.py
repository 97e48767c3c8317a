"""deferential_abundance: limma-style differential abundance testing in Python.

This package fits feature-wise linear models to log-scale protein or gene
abundances held in BiocPy SummarizedExperiment objects, moderates the
residual variances with empirical Bayes and classifies every feature as
increased, decreased or not significant between two groups.

Usage:
    >>> from deferential_abundance import run_differential_abundance
    >>> results = run_differential_abundance(se, group="condition", contrast=("B", "A"))

    >>> import deferential_abundance.limma as limma
    >>> model = limma.lm_fit(se, limma.model_matrix(groups))
    >>> results = model.contrasts_fit(("B", "A")).e_bayes().top_table(sort_by="p")
"""

from __future__ import annotations

from . import limma
from .analysis import AnalysisConfig, run_differential_abundance
from .errors import (
    DeferentialAbundanceError,
    DesignError,
    InsufficientDataError,
    ModerationFitError,
    CorrectionError,
    ModerationWarning,
)

__version__ = "0.2.0"

__all__ = [
    "AnalysisConfig",
    "run_differential_abundance",
    "DeferentialAbundanceError",
    "DesignError",
    "InsufficientDataError",
    "ModerationFitError",
    "CorrectionError",
    "ModerationWarning",
    "limma",
]
