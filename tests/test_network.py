"""
Tests for exploratory graph analysis and bootEGA.
"""

import pytest
import numpy as np
import pandas as pd

from conftest import simulate_ordinal_items
from scale_validation.exceptions import ModelFitError
from scale_validation.network import (
    EGAResult,
    _reduce_replicates,
    lambda_path,
    ebic,
    partial_correlations,
    detect_communities,
    align_labels,
    fit_ega,
    boot_ega,
)


@pytest.fixture(scope="module")
def ega_result(corr_result):
    return fit_ega(corr_result, n_lambda=30, community_seed=3)


class TestGlasso:

    def test_lambda_path(self):
        S = np.array([[1.0, 0.4, 0.2], [0.4, 1.0, 0.1], [0.2, 0.1, 1.0]])
        path = lambda_path(S, 10, 0.01)
        assert len(path) == 10
        assert path[-1] == pytest.approx(0.4)
        assert path[0] == pytest.approx(0.004)
        assert np.all(np.diff(path) > 0)

    def test_lambda_path_without_signal(self):
        with pytest.raises(ModelFitError):
            lambda_path(np.eye(4), 10, 0.01)

    def test_partial_correlations(self):
        K = np.array([[2.0, -1.0], [-1.0, 2.0]])
        P = partial_correlations(K)
        assert P[0, 1] == pytest.approx(0.5)
        assert P[0, 0] == 0.0

    def test_ebic_penalises_edges(self):
        S = np.eye(4)
        K_sparse = np.eye(4)
        K_dense = np.eye(4) + 0.01 * (np.ones((4, 4)) - np.eye(4))
        assert ebic(S, K_dense, 200, 0.5) > ebic(S, K_sparse, 200, 0.5)


class TestCommunities:

    def test_no_edges_all_nan(self):
        net = pd.DataFrame(np.zeros((3, 3)), index=list("abc"), columns=list("abc"))
        assert detect_communities(net, seed=3).isna().all()

    def test_isolated_item_gets_nan(self):
        W = np.zeros((5, 5))
        W[0, 1] = W[1, 0] = 0.4
        W[2, 3] = W[3, 2] = 0.5
        net = pd.DataFrame(W, index=list("abcde"), columns=list("abcde"))
        dims = detect_communities(net, seed=3)
        assert np.isnan(dims["e"])
        assert dims["a"] == dims["b"] == 1
        assert dims["c"] == dims["d"] == 2

    def test_align_labels_undoes_permutation(self):
        ref = np.array([1, 1, 2, 2, 3, 3], dtype=float)
        rep = np.array([3, 3, 1, 1, 2, 2], dtype=float)
        np.testing.assert_array_equal(align_labels(rep, ref), ref)

    def test_align_labels_extra_dimension(self):
        ref = np.array([1, 1, 2, 2], dtype=float)
        rep = np.array([1, 2, 3, 3], dtype=float)
        aligned = align_labels(rep, ref)
        assert (aligned == ref).sum() == 3
        assert (aligned < 0).sum() == 1


class TestEGA:

    def test_network_shape(self, ega_result):
        W = ega_result.network.to_numpy()
        assert W.shape == (15, 15)
        np.testing.assert_allclose(W, W.T)
        assert np.all(np.diag(W) == 0)
        assert ega_result.n_edges > 0

    def test_recovers_three_dimensions(self, ega_result, structure):
        assert ega_result.n_dim == 3
        for items in structure.values():
            assert ega_result.dimensions[items].nunique() == 1

    def test_accepts_item_table(self, items_df, ega_result):
        from_items = fit_ega(items_df, n_lambda=30, community_seed=3)
        pd.testing.assert_series_equal(from_items.dimensions, ega_result.dimensions)


class TestBootEGA:

    @pytest.fixture(scope="class")
    def boot_serial(self, items_df):
        return boot_ega(items_df, n_boot=4, seed=3, n_jobs=1, n_lambda=20)

    def test_summary(self, boot_serial):
        assert boot_serial.n_boot == 4
        assert boot_serial.frequency["count"].sum() == 4
        assert boot_serial.frequency["frequency"].sum() == pytest.approx(1.0)
        assert boot_serial.median_dim >= 1

    def test_cooccurrence(self, boot_serial):
        co = boot_serial.cooccurrence.to_numpy()
        np.testing.assert_allclose(co, co.T)
        assert ((co >= 0) & (co <= 1)).all()

    def test_item_stability_bounds(self, boot_serial):
        stab = boot_serial.item_stability.dropna()
        assert stab.between(0, 1).all()

    def test_same_seed_same_result(self, items_df, boot_serial):
        again = boot_ega(items_df, n_boot=4, seed=3, n_jobs=1, n_lambda=20)
        np.testing.assert_array_equal(again.replicate_n_dim, boot_serial.replicate_n_dim)
        pd.testing.assert_frame_equal(again.cooccurrence, boot_serial.cooccurrence)

    def test_worker_count_does_not_change_result(self, items_df, boot_serial):
        parallel = boot_ega(items_df, n_boot=4, seed=3, n_jobs=2, n_lambda=20)
        np.testing.assert_array_equal(parallel.replicate_n_dim, boot_serial.replicate_n_dim)
        pd.testing.assert_frame_equal(parallel.cooccurrence, boot_serial.cooccurrence)
        pd.testing.assert_series_equal(parallel.item_stability, boot_serial.item_stability)

    def test_invalid_n_boot(self, items_df):
        with pytest.raises(ValueError):
            boot_ega(items_df, n_boot=0, n_jobs=1)


class TestBootEGAFailedReplicates:

    @pytest.fixture(scope="class")
    def ceiling_df(self):
        df = simulate_ordinal_items(247, seed=7)
        df["A1"] = 5
        df.loc[[10, 200], "A1"] = 4
        return df

    def test_constant_resample_does_not_abort(self, ceiling_df):
        with pytest.warns(UserWarning, match="replicates failed"):
            boot = boot_ega(ceiling_df, n_boot=50, seed=3, n_jobs=1, n_lambda=20)
        assert boot.n_failed > 0
        assert boot.n_valid == 50 - boot.n_failed
        assert boot.frequency["count"].sum() == boot.n_valid
        assert boot.frequency["frequency"].sum() == pytest.approx(1.0)
        assert len(boot.replicate_n_dim) == boot.n_valid
        assert boot.item_stability.dropna().between(0, 1).all()

    def test_denominators_use_valid_replicates(self):
        items = ["a", "b", "c", "d"]
        empirical = EGAResult(
            network=pd.DataFrame(np.zeros((4, 4)), index=items, columns=items),
            dimensions=pd.Series([1.0, 1.0, 2.0, 2.0], index=items),
            n_dim=2, lambda_=0.1, ebic=0.0, gamma=0.5, n_obs=100, n_lambda_skipped=0,
        )
        labels = np.array([[1.0, 1.0, 2.0, 2.0],
                           [2.0, 2.0, 1.0, 1.0]])
        boot = _reduce_replicates(empirical, labels, items, n_boot=3, seed=1,
                                  n_warn=0, n_failed=1)
        assert boot.n_valid == 2
        assert boot.frequency["frequency"].tolist() == [1.0]
        assert boot.cooccurrence.loc["a", "b"] == pytest.approx(1.0)
        assert boot.cooccurrence.loc["a", "c"] == 0.0
        np.testing.assert_allclose(boot.item_stability, 1.0)

    def test_all_replicates_failed(self, monkeypatch, items_df):
        import scale_validation.network as network

        def always_degenerate(task):
            return np.full(len(task[1]), np.nan), 0, True

        monkeypatch.setattr(network, "_boot_replicate", always_degenerate)
        with pytest.raises(ModelFitError, match="All 3"):
            boot_ega(items_df, n_boot=3, seed=1, n_jobs=1, n_lambda=20)
