"""Tests for feature-wise linear model fitting."""

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from deferential_abundance.errors import InsufficientDataError
from deferential_abundance.limma import (
    FeatureFit,
    LimmaModel,
    fit_feature,
    lm_fit,
    model_matrix,
)


@pytest.fixture
def design(mock_groups):
    return model_matrix(mock_groups)


class TestFitFeature:
    """Single-feature fits."""

    def test_group_means_and_residual_sd(self, design):
        y = np.array([1.0, 2.0, 3.0, 5.0, 6.0, 7.0])
        fit = fit_feature(y, design)
        assert isinstance(fit, FeatureFit)
        np.testing.assert_allclose(fit.coefficients, [2.0, 6.0])
        assert fit.df_residual == 4
        assert fit.sigma == pytest.approx(1.0)
        np.testing.assert_allclose(np.diag(fit.cov_unscaled), [1 / 3, 1 / 3])

    def test_matches_statsmodels_ols(self, design):
        rng = np.random.default_rng(1)
        y = rng.normal(size=6)
        X = design.to_numpy()
        ref = sm.OLS(y, X).fit()
        fit = fit_feature(y, design)
        np.testing.assert_allclose(fit.coefficients, ref.params)
        assert fit.sigma == pytest.approx(np.sqrt(ref.scale))
        np.testing.assert_allclose(fit.sigma * np.sqrt(np.diag(fit.cov_unscaled)), ref.bse)

    def test_weighted_matches_statsmodels_wls(self, design):
        rng = np.random.default_rng(2)
        y = rng.normal(size=6)
        w = np.array([1.0, 0.5, 2.0, 1.0, 3.0, 0.25])
        ref = sm.WLS(y, design.to_numpy(), weights=w).fit()
        fit = fit_feature(y, design, weights=w)
        np.testing.assert_allclose(fit.coefficients, ref.params)
        assert fit.sigma == pytest.approx(np.sqrt(ref.scale))

    def test_missing_values_are_dropped(self, design):
        y = np.array([1.0, np.nan, 3.0, 5.0, 6.0, 7.0])
        fit = fit_feature(y, design)
        np.testing.assert_allclose(fit.coefficients, [2.0, 6.0])
        assert fit.df_residual == 3

    def test_zero_weight_counts_as_missing(self, design):
        y = np.array([1.0, 100.0, 3.0, 5.0, 6.0, 7.0])
        w = np.array([1.0, 0.0, 1.0, 1.0, 1.0, 1.0])
        fit = fit_feature(y, design, weights=w)
        assert fit.coefficients[0] == pytest.approx(2.0)
        assert fit.df_residual == 3

    def test_insufficient_data_raises(self, design):
        y = np.array([1.0, np.nan, np.nan, np.nan, np.nan, np.nan])
        with pytest.raises(InsufficientDataError):
            fit_feature(y, design)

    def test_unobserved_group_is_not_estimable(self, design):
        y = np.array([1.0, 2.0, 3.0, np.nan, np.nan, np.nan])
        fit = fit_feature(y, design)
        assert fit.coefficients[0] == pytest.approx(2.0)
        assert np.isnan(fit.coefficients[1])
        assert fit.df_residual == 2
        assert np.isnan(fit.cov_unscaled[1, 1])

    def test_exactly_determined_fit_has_no_residual_df(self, design):
        y = np.array([1.0, np.nan, np.nan, 5.0, np.nan, np.nan])
        fit = fit_feature(y, design)
        assert fit.df_residual == 0
        assert np.isnan(fit.sigma)

    def test_robust_downweights_outlier(self):
        design = model_matrix(["A"] * 4 + ["B"] * 4)
        y = np.array([0.0, 0.1, -0.1, 5.0, 2.0, 2.1, 1.9, 2.0])
        ls = fit_feature(y, design)
        robust = fit_feature(y, design, method="robust")
        assert robust.coefficients[0] < ls.coefficients[0]
        assert robust.df_residual == 6


class TestLmFit:
    """Whole-matrix fitting."""

    def test_returns_model(self, mock_se, design):
        model = lm_fit(mock_se, design)
        assert isinstance(model, LimmaModel)
        assert model.method == "ls"
        assert model.lm_fit.coefficients.shape == (200, 2)
        assert list(model.lm_fit.coefficients.columns) == ["Control", "Treatment"]
        assert model.feature_names[0] == "P00000"
        assert (model.lm_fit.df_residual == 4).all()
        assert not model.lm_fit.insufficient.any()

    def test_dataframe_input(self, mock_frame, mock_se, design):
        from_frame = lm_fit(mock_frame, design)
        from_se = lm_fit(mock_se, design)
        pd.testing.assert_frame_equal(
            from_frame.lm_fit.coefficients, from_se.lm_fit.coefficients
        )

    def test_block_fit_matches_feature_fit(self, mock_abundance, design):
        values, features, samples = mock_abundance
        values = values.copy()
        values[0, 1] = np.nan
        values[1, 4] = np.nan
        values[2, [0, 1]] = np.nan
        frame = pd.DataFrame(values, index=features, columns=samples)

        model = lm_fit(frame, design)
        for i in range(5):
            single = fit_feature(values[i], design)
            np.testing.assert_allclose(
                model.lm_fit.coefficients.iloc[i].to_numpy(), single.coefficients
            )
            assert model.lm_fit.sigma[i] == pytest.approx(single.sigma)
            assert model.lm_fit.df_residual[i] == single.df_residual
        assert list(model.lm_fit.df_residual[:3]) == [3, 3, 2]

    def test_insufficient_feature_is_flagged(self, mock_abundance, design):
        values, features, samples = mock_abundance
        values = values.copy()
        values[7, 1:] = np.nan
        model = lm_fit(pd.DataFrame(values, index=features, columns=samples), design)
        assert model.lm_fit.insufficient[7]
        assert model.lm_fit.insufficient.sum() == 1
        assert model.lm_fit.df_residual[7] == 0
        assert model.lm_fit.coefficients.iloc[7].isna().all()
        assert model.lm_fit.amean[7] == pytest.approx(values[7, 0])

    def test_average_expression(self, mock_se, mock_abundance, design):
        values, _, _ = mock_abundance
        model = lm_fit(mock_se, design)
        np.testing.assert_allclose(model.lm_fit.amean, values.mean(axis=1))

    def test_weights_assay_is_used(self, mock_abundance, mock_groups, design):
        from summarizedexperiment import SummarizedExperiment

        values, features, samples = mock_abundance
        weights = np.ones_like(values)
        weights[:, 0] = 0.0
        se = SummarizedExperiment(
            assays={"log_expr": values, "weights": weights},
            row_names=features,
            column_names=samples,
        )
        model = lm_fit(se, design)
        assert (model.lm_fit.df_residual == 3).all()
        np.testing.assert_allclose(
            model.lm_fit.coefficients["Control"].to_numpy(), values[:, 1:3].mean(axis=1)
        )

    def test_sample_weights(self, mock_frame, design):
        model = lm_fit(mock_frame, design, weights=np.array([1.0, 1.0, 1.0, 2.0, 2.0, 2.0]))
        assert model.lm_fit.coefficients.shape == (200, 2)

    def test_parallel_matches_sequential(self, mock_frame, design):
        seq = lm_fit(mock_frame, design, n_jobs=1)
        par = lm_fit(mock_frame, design, n_jobs=2)
        pd.testing.assert_frame_equal(seq.lm_fit.coefficients, par.lm_fit.coefficients)
        np.testing.assert_array_equal(seq.lm_fit.sigma, par.lm_fit.sigma)

    def test_robust_rejects_missing_values(self, mock_abundance, design):
        values, features, samples = mock_abundance
        values = values.copy()
        values[3, 2] = np.nan
        frame = pd.DataFrame(values, index=features, columns=samples)
        with pytest.raises(InsufficientDataError, match="Robust"):
            lm_fit(frame, design, method="robust")

    def test_robust_complete_matrix(self, mock_frame, design):
        model = lm_fit(mock_frame, design, method="robust")
        assert model.method == "robust"
        assert np.isfinite(model.lm_fit.coefficients.to_numpy()).all()
        assert (model.lm_fit.df_residual == 4).all()

    def test_unknown_method(self, mock_frame, design):
        with pytest.raises(ValueError, match="Unknown fitting method"):
            lm_fit(mock_frame, design, method="bayes")

    def test_design_size_mismatch(self, mock_frame):
        with pytest.raises(ValueError, match="Design matrix has"):
            lm_fit(mock_frame, model_matrix(["A", "B"]))

    def test_missing_assay(self, mock_se, design):
        with pytest.raises(KeyError, match="not found"):
            lm_fit(mock_se, design, assay="counts")

    def test_not_an_experiment(self, design):
        with pytest.raises(TypeError):
            lm_fit(np.zeros((3, 6)), design)
