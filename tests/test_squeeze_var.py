"""Tests for prior estimation and variance squeezing."""

import numpy as np
import pytest
from scipy.special import polygamma

from deferential_abundance.errors import ModerationFitError, ModerationWarning
from deferential_abundance.limma import fit_f_dist, squeeze_var, trigamma_inverse


class TestTrigammaInverse:

    @pytest.mark.parametrize("x", [0.01, 0.3, 1.0, 2.5, 40.0])
    def test_inverts_trigamma(self, x):
        y = trigamma_inverse(x)
        assert float(polygamma(1, y)) == pytest.approx(x, rel=1e-6)

    @pytest.mark.parametrize("x", [0.0, -1.0, np.inf, np.nan])
    def test_rejects_bad_argument(self, x):
        with pytest.raises(ModerationFitError):
            trigamma_inverse(x)


class TestFitFDist:
    """Method-of-moments estimates of d0 and s0^2."""

    def test_recovers_prior(self):
        rng = np.random.default_rng(7)
        # s2 / s0^2 ~ F(df, d0) with df = 4, d0 = 10, s0^2 = 0.5
        var = 0.5 * rng.f(4, 10, size=5000)
        d0, s20 = fit_f_dist(var, 4)
        assert 6 < d0 < 16
        assert 0.42 < s20 < 0.58

    def test_identical_variances_have_infinite_prior_df(self):
        with pytest.raises(ModerationFitError, match="infinite"):
            fit_f_dist(np.full(50, 0.2), 4)

    def test_needs_two_features(self):
        with pytest.raises(ModerationFitError, match="at least two"):
            fit_f_dist(np.array([0.3]), 4)

    def test_untestable_entries_are_ignored(self):
        rng = np.random.default_rng(3)
        var = 0.5 * rng.f(4, 10, size=1000)
        df = np.full(1000, 4.0)
        with_missing = np.append(var, [np.nan, 1.0])
        df_missing = np.append(df, [4.0, 0.0])
        assert fit_f_dist(with_missing, df_missing) == pytest.approx(fit_f_dist(var, df))


class TestSqueezeVar:

    def test_posterior_lies_between_raw_and_prior(self):
        rng = np.random.default_rng(11)
        var = 0.5 * rng.f(4, 10, size=500)
        squeezed = squeeze_var(var, 4)
        assert squeezed.df_prior > 0
        lo = np.minimum(var, squeezed.var_prior)
        hi = np.maximum(var, squeezed.var_prior)
        assert np.all(squeezed.var_post >= lo - 1e-12)
        assert np.all(squeezed.var_post <= hi + 1e-12)
        np.testing.assert_allclose(
            squeezed.var_post,
            (squeezed.df_prior * squeezed.var_prior + 4 * var) / (squeezed.df_prior + 4),
        )

    def test_identical_variances_are_unchanged(self):
        var = np.full(20, 0.25)
        with pytest.warns(ModerationWarning):
            squeezed = squeeze_var(var, 4)
        assert squeezed.df_prior == 0
        assert np.isnan(squeezed.var_prior)
        np.testing.assert_array_equal(squeezed.var_post, var)

    def test_single_feature_is_unchanged(self):
        with pytest.warns(ModerationWarning, match="prior df set to 0"):
            squeezed = squeeze_var(np.array([0.7]), 3)
        np.testing.assert_array_equal(squeezed.var_post, [0.7])
