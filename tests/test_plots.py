"""
Smoke tests for the figures: each plot is written where it is asked to be.
"""

import shutil

import graphviz
import pytest

import scale_validation.plots as plots
from scale_validation.factor_retention import estimate_n_factors
from scale_validation.network import fit_ega
from scale_validation.plots import (
    plot_correlation_heatmap,
    plot_scree,
    plot_network,
    plot_path_diagram,
)


class TestFigures:

    def test_heatmap(self, corr_result, tmp_path):
        path = plot_correlation_heatmap(corr_result, save_dir=tmp_path)
        assert path == tmp_path / "polychoric_heatmap.png"
        assert path.stat().st_size > 0

    def test_scree(self, corr_result, tmp_path):
        retention = estimate_n_factors(corr_result)
        path = plot_scree(retention, save_dir=tmp_path)
        assert path.exists()

    def test_network(self, corr_result, tmp_path):
        ega = fit_ega(corr_result, n_lambda=20, community_seed=3)
        path = plot_network(ega, save_dir=tmp_path, seed=3)
        assert path.name == "ega_network.png"
        assert path.exists()


class TestPathDiagram:

    @pytest.fixture(scope="class")
    def cfa_result(self, cfa_items_df, structure):
        from scale_validation.cfa import fit_cfa
        return fit_cfa(cfa_items_df, structure)

    def test_standardized_estimates_requested(self, monkeypatch, cfa_result, tmp_path):
        calls = {}

        def fake_semplot(model, filename, **kwargs):
            calls.update(model=model, filename=filename, **kwargs)

        monkeypatch.setattr(plots, "semplot", fake_semplot)
        path = plot_path_diagram(cfa_result, save_dir=tmp_path)
        assert path == tmp_path / "cfa_path_diagram.png"
        assert calls["model"] is cfa_result.model
        assert calls["filename"] == str(path)
        assert calls["std_ests"] is True

    def test_missing_graphviz_warns(self, monkeypatch, cfa_result, tmp_path):
        def no_dot(model, filename, **kwargs):
            raise graphviz.ExecutableNotFound(("dot", "-Tpng"))

        monkeypatch.setattr(plots, "semplot", no_dot)
        with pytest.warns(UserWarning, match="Graphviz"):
            assert plot_path_diagram(cfa_result, save_dir=tmp_path) is None

    @pytest.mark.skipif(shutil.which("dot") is None, reason="Graphviz executables not installed")
    def test_renders_png(self, cfa_result, tmp_path):
        path = plot_path_diagram(cfa_result, save_dir=tmp_path)
        assert path.exists() and path.stat().st_size > 0
