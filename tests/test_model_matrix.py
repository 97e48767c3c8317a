"""Tests for design matrix and contrast construction."""

import numpy as np
import pandas as pd
import pytest

from deferential_abundance.errors import DesignError
from deferential_abundance.limma import model_matrix, make_contrast


class TestModelMatrix:
    """Group labels to design matrix."""

    def test_one_hot_rows_sum_to_one(self):
        design = model_matrix(["B", "A", "B", "C", "A"])
        assert list(design.columns) == ["A", "B", "C"]
        np.testing.assert_array_equal(design.sum(axis=1).to_numpy(), np.ones(5))
        assert set(np.unique(design.to_numpy())) == {0.0, 1.0}

    def test_first_seen_order_with_levels(self):
        design = model_matrix(["ctrl", "treat", "ctrl"], levels=["treat", "ctrl"])
        assert list(design.columns) == ["treat", "ctrl"]
        assert design.iloc[0].tolist() == [0.0, 1.0]

    def test_sample_names_become_index(self):
        design = model_matrix(["A", "B"], sample_names=["s1", "s2"])
        assert list(design.index) == ["s1", "s2"]

    def test_intercept_drops_reference_indicator(self):
        design = model_matrix(["A", "A", "B", "C"], intercept=True)
        assert list(design.columns) == ["Intercept", "B", "C"]
        assert design["Intercept"].tolist() == [1.0] * 4
        assert design.attrs["reference"] == "A"
        # k groups -> k - 1 indicator columns
        assert design.shape[1] - 1 == 2

    @pytest.mark.parametrize("bad", [None, "", "  ", float("nan"), pd.NA])
    def test_missing_label_is_design_error(self, bad):
        with pytest.raises(DesignError):
            model_matrix(["A", "B", bad, "B"])

    def test_nullable_string_labels_with_missing_entry(self):
        groups = pd.Series(["A", "A", None, "B", "B", "B"], dtype="string")
        with pytest.raises(DesignError, match="no group label"):
            model_matrix(groups.tolist())

    def test_label_outside_levels_is_design_error(self):
        with pytest.raises(DesignError, match="cannot be assigned"):
            model_matrix(["A", "B", "C"], levels=["A", "B"])

    def test_single_group_is_design_error(self):
        with pytest.raises(DesignError, match="two groups"):
            model_matrix(["A", "A", "A"])

    def test_sample_name_length_mismatch(self):
        with pytest.raises(DesignError):
            model_matrix(["A", "B"], sample_names=["s1"])


class TestMakeContrast:
    """Pairs of group labels to contrast vectors."""

    def test_no_intercept_difference_of_means(self):
        design = model_matrix(["A", "A", "B", "B"])
        contrast = make_contrast(design, "B", "A")
        assert contrast.to_dict() == {"A": -1.0, "B": 1.0}
        assert contrast.sum() == 0
        assert contrast.name == "B-A"

    def test_intercept_reference_contrast(self):
        design = model_matrix(["A", "A", "B", "B"], intercept=True)
        contrast = make_contrast(design, "B", "A")
        assert contrast.to_dict() == {"Intercept": 0.0, "B": 1.0}

    def test_intercept_non_reference_contrast(self):
        design = model_matrix(["A", "B", "C"], intercept=True)
        contrast = make_contrast(design, "C", "B")
        assert contrast.tolist() == [0.0, -1.0, 1.0]

    def test_unknown_group(self):
        design = model_matrix(["A", "B"])
        with pytest.raises(DesignError, match="not part of the design"):
            make_contrast(design, "Z", "A")

    def test_same_group(self):
        design = model_matrix(["A", "B"])
        with pytest.raises(DesignError):
            make_contrast(design, "A", "A")
