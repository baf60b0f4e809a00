"""
Tests for the confirmatory factor model (end-to-end on 494 respondents).
"""

import pytest
import numpy as np
import pandas as pd
import semopy
from types import SimpleNamespace

from scale_validation.cfa import (
    FIT_INDICES,
    build_model_description,
    fit_cfa,
    fit_indices_table,
    srmr,
    _check_admissible,
)
from scale_validation.exceptions import DataShapeError, ModelFitError


@pytest.fixture(scope="module")
def cfa_result(cfa_items_df, structure):
    return fit_cfa(cfa_items_df, structure, estimator="DWLS")


class TestModelDescription:

    def test_measurement_lines(self, structure):
        desc = build_model_description(structure, ordinal=False)
        assert desc.splitlines() == [
            "F1 =~ A1 + A2 + A3 + A4",
            "F2 =~ E1 + E2 + E3 + E4 + E5 + E6",
            "F3 =~ C1 + C2 + C3 + C4 + C5",
        ]

    def test_ordinal_declaration(self, structure):
        last = build_model_description(structure, ordinal=True).splitlines()[-1]
        assert last.startswith("DEFINE(ordinal)")
        assert last.split()[1:] == [i for items in structure.values() for i in items]


class TestEndToEnd:

    def test_converged(self, cfa_result):
        assert cfa_result.converged
        assert cfa_result.n_obs == 494
        assert cfa_result.estimator == "DWLS"

    def test_parameter_counts(self, cfa_result):
        assert len(cfa_result.loadings) == 15
        assert len(cfa_result.factor_covariances) == 3
        assert len(cfa_result.residual_variances) == 15
        assert set(cfa_result.loadings["factor"]) == {"F1", "F2", "F3"}

    def test_loadings_follow_structure(self, cfa_result, structure):
        for factor, items in structure.items():
            sub = cfa_result.loadings[cfa_result.loadings["factor"] == factor]
            assert sub["item"].tolist() == items

    def test_loadings_plausible(self, cfa_result):
        lam = cfa_result.loadings["loading"]
        assert lam.between(0.4, 0.99).all()

    def test_factor_covariances(self, cfa_result):
        cov = cfa_result.factor_covariances
        assert set(zip(cov["factor1"], cov["factor2"])) == {("F1", "F2"), ("F1", "F3"), ("F2", "F3")}
        assert cov["covariance"].between(0.0, 0.7).all()

    def test_factor_correlation_matrix(self, cfa_result):
        phi = cfa_result.factor_correlation_matrix()
        np.testing.assert_allclose(np.diag(phi), 1.0)
        np.testing.assert_allclose(phi.to_numpy(), phi.to_numpy().T)

    def test_fit_table_complete(self, cfa_result):
        fit = cfa_result.fit_indices
        assert list(fit.index) == FIT_INDICES
        assert np.isfinite(fit.to_numpy(dtype=float)).all()
        assert fit["df"] > 0
        assert 0 <= fit["pvalue"] <= 1

    def test_correctly_specified_model_fits(self, cfa_result):
        fit = cfa_result.fit_indices
        assert fit["srmr"] < 0.10
        assert fit["cfi"] > 0.90

    def test_fit_indices_table(self, cfa_result):
        table = fit_indices_table(cfa_result)
        assert list(table["index"]) == FIT_INDICES
        assert table.loc[table["index"] == "chisq", "meets_cutoff"].iloc[0] is None


class TestFailures:

    def test_unknown_estimator(self, cfa_items_df, structure):
        with pytest.raises(ValueError, match="estimator"):
            fit_cfa(cfa_items_df, structure, estimator="PML")

    def test_missing_items(self, cfa_items_df, structure):
        with pytest.raises(DataShapeError, match="C5"):
            fit_cfa(cfa_items_df.drop(columns="C5"), structure)

    def test_heywood_case(self):
        loadings = pd.DataFrame({"factor": ["F1", "F1"], "item": ["a", "b"], "loading": [1.02, 0.6]})
        cov = pd.DataFrame({"factor1": [], "factor2": [], "covariance": []})
        with pytest.raises(ModelFitError, match="Heywood"):
            _check_admissible(loadings, cov, ["F1"])

    def test_non_positive_definite_latent_matrix(self):
        loadings = pd.DataFrame({"factor": ["F1", "F2", "F3"], "item": ["a", "b", "c"],
                                 "loading": [0.7, 0.7, 0.7]})
        cov = pd.DataFrame({"factor1": ["F1", "F1", "F2"], "factor2": ["F2", "F3", "F3"],
                            "covariance": [0.95, -0.95, 0.95]})
        with pytest.raises(ModelFitError, match="positive definite"):
            _check_admissible(loadings, cov, ["F1", "F2", "F3"])


class TestNonConvergence:
    """Estimation failures stop the pipeline before a CFAResult exists."""

    def test_optimizer_not_successful(self, monkeypatch, cfa_items_df, structure):
        def fake_fit(self, *args, **kwargs):
            return SimpleNamespace(success=False, message="Iteration limit reached")

        monkeypatch.setattr(semopy.Model, "fit", fake_fit)
        result = None
        with pytest.raises(ModelFitError, match="Iteration limit reached"):
            result = fit_cfa(cfa_items_df, structure)
        assert result is None

    def test_singular_matrix_during_estimation(self, monkeypatch, cfa_items_df, structure):
        def fake_fit(self, *args, **kwargs):
            raise np.linalg.LinAlgError("Singular matrix")

        monkeypatch.setattr(semopy.Model, "fit", fake_fit)
        with pytest.raises(ModelFitError, match="estimation failed") as excinfo:
            fit_cfa(cfa_items_df, structure)
        assert isinstance(excinfo.value.__cause__, np.linalg.LinAlgError)

    def test_value_error_during_estimation(self, monkeypatch, cfa_items_df, structure):
        def fake_fit(self, *args, **kwargs):
            raise ValueError("array must not contain infs or NaNs")

        monkeypatch.setattr(semopy.Model, "fit", fake_fit)
        with pytest.raises(ModelFitError):
            fit_cfa(cfa_items_df, structure)


def test_srmr_zero_for_perfect_fit():
    R = np.array([[1.0, 0.4], [0.4, 1.0]])
    assert srmr(R, R) == 0.0
    assert srmr(R, np.eye(2)) == pytest.approx(np.sqrt(0.4 ** 2 / 3))
