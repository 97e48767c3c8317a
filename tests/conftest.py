"""Shared fixtures: small log2 abundance experiments with known effects."""

import numpy as np
import pandas as pd
import pytest

from biocframe import BiocFrame
from summarizedexperiment import SummarizedExperiment


N_FEATURES = 200
N_PER_GROUP = 3


@pytest.fixture
def mock_abundance():
    """Log2 abundances: 20 increased, 10 decreased, the rest unchanged.

    Residual variances are drawn from a scaled inverse chi-squared prior so
    that the empirical Bayes prior has finite degrees of freedom.
    """
    rng = np.random.default_rng(42)
    sd = np.sqrt(0.09 * 8 / rng.chisquare(8, size=N_FEATURES))
    noise = rng.standard_normal((N_FEATURES, 2 * N_PER_GROUP))
    values = 20.0 + noise * sd[:, None]
    values[:20, N_PER_GROUP:] += 2.0
    values[20:30, N_PER_GROUP:] -= 2.0

    feature_names = [f"P{i:05d}" for i in range(N_FEATURES)]
    sample_names = [f"S{i}" for i in range(2 * N_PER_GROUP)]
    return values, feature_names, sample_names


@pytest.fixture
def mock_groups():
    return ["Control"] * N_PER_GROUP + ["Treatment"] * N_PER_GROUP


@pytest.fixture
def mock_se(mock_abundance, mock_groups):
    """SummarizedExperiment with a log_expr assay and condition column."""
    values, feature_names, sample_names = mock_abundance
    col_data = BiocFrame({
        "sample_id": sample_names,
        "condition": mock_groups,
    })
    return SummarizedExperiment(
        assays={"log_expr": values},
        row_names=feature_names,
        column_names=sample_names,
        column_data=col_data,
    )


@pytest.fixture
def mock_frame(mock_abundance):
    values, feature_names, sample_names = mock_abundance
    return pd.DataFrame(values, index=feature_names, columns=sample_names)
