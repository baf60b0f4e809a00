"""
Tests for the exploratory factor model.
"""

import pytest
import numpy as np

from scale_validation.efa import extract_factors, fit_efa, efa_loadings_table
from scale_validation.exceptions import DataShapeError


@pytest.fixture(scope="module")
def efa_result(items_df, corr_result):
    return fit_efa(items_df, corr_result, n_factors=3, method="wls", rotation="varimax")


class TestExtraction:

    def test_one_factor_recovers_loadings(self):
        lam = np.array([0.8, 0.7, 0.6, 0.5])
        R = np.outer(lam, lam)
        np.fill_diagonal(R, 1.0)
        L, converged, _ = extract_factors(R, 1, "wls")
        np.testing.assert_allclose(np.abs(L[:, 0]), lam, atol=0.02)

    def test_invalid_n_factors(self, corr_result):
        with pytest.raises(ValueError, match="n_factors"):
            extract_factors(corr_result.matrix, 15)

    def test_unknown_method(self, corr_result):
        with pytest.raises(ValueError, match="method"):
            extract_factors(corr_result.matrix, 2, "ml")


class TestFit:

    def test_shapes(self, efa_result):
        assert efa_result.loadings.shape == (15, 3)
        assert list(efa_result.loadings.columns) == ["WLS1", "WLS2", "WLS3"]
        assert efa_result.rotation == "varimax"

    def test_communalities(self, efa_result):
        h2 = efa_result.communalities
        assert h2.between(0, 1).all()
        np.testing.assert_allclose(h2 + efa_result.uniquenesses, 1.0)

    def test_simple_structure(self, efa_result, structure):
        primary = efa_result.loadings.abs().idxmax(axis=1)
        for factor, items in structure.items():
            assert primary[items].nunique() == 1
        assert primary.nunique() == 3

    def test_mismatched_items(self, items_df, corr_result):
        with pytest.raises(DataShapeError):
            fit_efa(items_df[items_df.columns[::-1]], corr_result)

    def test_variance_table(self, efa_result):
        cum = efa_result.variance.loc["Cumulative Var"]
        assert cum.is_monotonic_increasing
        assert cum.iloc[-1] <= 1.0


class TestDisplay:

    def test_cut_blanks_small_loadings(self, efa_result):
        table = efa_loadings_table(efa_result, cut=0.5, digits=2)
        L = efa_result.loadings
        small = L.abs() < 0.5
        assert (table[L.columns].to_numpy()[small.to_numpy()] == "").all()
        assert {"h2", "u2", "com"} <= set(table.columns)

    def test_full_precision_kept(self, efa_result):
        before = efa_result.loadings.copy()
        efa_loadings_table(efa_result, cut=0.5, digits=2)
        assert efa_result.loadings.equals(before)
        assert efa_result.loadings.abs().min().min() < 0.5
