"""
Tests for loading, consent filtering and Hampel outlier removal.
"""

import pytest
import pandas as pd
import numpy as np

from scale_validation.config import STUDY, get_item_columns
from scale_validation.data_loading import (
    load_participants,
    validate_columns,
    filter_consent,
    add_total_score,
    hampel_bounds,
    remove_outliers,
    clean_participants,
    get_item_table,
)
from scale_validation.exceptions import DataShapeError, ScaleValidationError


class TestLoading:

    def test_load_csv(self, tmp_path, raw_participants):
        path = tmp_path / "participants.csv"
        raw_participants.to_csv(path, index=False, encoding="utf-8")
        df = load_participants(path)
        assert len(df) == len(raw_participants)
        assert (df["informed_consent"] == "Sí").sum() == (raw_participants["informed_consent"] == "Sí").sum()

    def test_items_sit_at_configured_positions(self, raw_participants):
        start, end = STUDY.ITEM_POSITIONS
        assert list(raw_participants.columns[start - 1:end]) == get_item_columns()


class TestValidation:

    def test_missing_consent_column(self, raw_participants):
        with pytest.raises(DataShapeError, match="informed_consent"):
            validate_columns(raw_participants.drop(columns="informed_consent"))

    def test_missing_item_column(self, raw_participants):
        with pytest.raises(DataShapeError, match="E3"):
            clean_participants(raw_participants.drop(columns="E3"))

    def test_non_numeric_item(self, raw_participants):
        df = raw_participants.copy()
        df["C2"] = df["C2"].astype(str)
        with pytest.raises(DataShapeError, match="C2"):
            validate_columns(df)

    def test_errors_share_base_class(self):
        assert issubclass(DataShapeError, ScaleValidationError)
        assert issubclass(DataShapeError, ValueError)

    def test_fractional_items_rejected(self, raw_participants):
        df = raw_participants.copy()
        df["A1"] = df["A1"].astype(float)
        df.loc[0, "A1"] = 2.5
        with pytest.raises(DataShapeError, match="A1"):
            get_item_table(df)


class TestConsent:

    def test_only_affirmative_kept(self, raw_participants):
        out = filter_consent(raw_participants)
        assert (out["informed_consent"] == "Sí").all()
        assert len(out) == 54

    def test_input_not_modified(self, raw_participants):
        before = raw_participants.copy()
        filter_consent(raw_participants)
        pd.testing.assert_frame_equal(before, raw_participants)


class TestHampel:

    def test_bounds_symmetric_about_median(self):
        x = np.array([10, 11, 12, 13, 14, 100])
        lower, upper = hampel_bounds(x, k=3, constant=1)
        assert lower == pytest.approx(8.0)
        assert upper == pytest.approx(17.0)
        assert (lower + upper) / 2 == pytest.approx(np.median(x))

    def test_outlier_removed(self):
        df = pd.DataFrame({"total": [10, 11, 12, 13, 14, 100]})
        out, bounds = remove_outliers(df, total_col="total", k=3, constant=1)
        assert 100 not in out["total"].values
        assert len(out) == 5

    def test_boundary_values_kept(self):
        # median 12.5, MAD 1.5 -> bounds [8, 17]
        df = pd.DataFrame({"total": [8, 11, 12, 13, 14, 17]})
        out, (lower, upper) = remove_outliers(df, total_col="total", k=3, constant=1)
        assert len(out) == len(df)

    def test_zero_mad_keeps_only_median(self):
        df = pd.DataFrame({"total": [5, 5, 5, 5, 9]})
        out, (lower, upper) = remove_outliers(df, total_col="total", k=3, constant=1)
        assert lower == upper == 5
        assert out["total"].tolist() == [5, 5, 5, 5]

    def test_larger_k_removes_fewer(self, raw_participants):
        scored = add_total_score(filter_consent(raw_participants))
        strict, _ = remove_outliers(scored, k=1.0, constant=1.0)
        loose, _ = remove_outliers(scored, k=3.0, constant=1.0)
        assert len(strict) <= len(loose)


class TestCleaning:

    def test_total_is_item_sum(self, raw_participants):
        scored = add_total_score(raw_participants)
        expected = raw_participants[get_item_columns()].sum(axis=1)
        pd.testing.assert_series_equal(scored["total"], expected, check_names=False, check_dtype=False)

    def test_clean_result(self, raw_participants):
        result = clean_participants(raw_participants)
        lower, upper = result.bounds
        assert result.n_raw == 60
        assert result.n_consented == 54
        assert result.n_clean == result.n_consented - result.n_outliers
        assert result.data["total"].between(lower, upper).all()
        assert (result.data["informed_consent"] == "Sí").all()

    def test_sample_flow(self, raw_participants):
        flow = clean_participants(raw_participants).sample_flow()
        assert flow["N"].is_monotonic_decreasing

    def test_item_table(self, raw_participants):
        items = get_item_table(clean_participants(raw_participants).data)
        assert list(items.columns) == get_item_columns()
        assert items.dtypes.map(pd.api.types.is_integer_dtype).all()

    def test_missing_item_value_raises(self, raw_participants):
        df = raw_participants.copy()
        df["A2"] = df["A2"].astype(float)
        df.loc[1, "A2"] = np.nan
        with pytest.raises(DataShapeError, match="A2"):
            clean_participants(df)
