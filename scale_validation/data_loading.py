"""
Data loading module for the scale validation study.
CSV loading, data-shape validation, consent filtering, total score and
Hampel-filter outlier removal.
"""

import pandas as pd
import numpy as np
from pathlib import Path
from dataclasses import dataclass

from scale_validation.config import cfg, PROJECT_ROOT, get_item_columns
from scale_validation.exceptions import DataShapeError


# === 1. LOAD DATA ===

def load_participants(data_path: str | Path | None = None) -> pd.DataFrame:
    """
    Load the participant survey table.

    Args:
        data_path: Path to the CSV file (default: config data.participants_path).

    Returns:
        Raw DataFrame, one row per participant.
    """
    if data_path is None:
        data_path = PROJECT_ROOT / cfg["data"]["participants_path"]

    df = pd.read_csv(data_path, encoding="utf-8")

    print(f"Loaded {len(df):,} participants, {len(df.columns)} variables")
    return df


# === 2. DATA-SHAPE VALIDATION ===

def validate_columns(df: pd.DataFrame,
                     item_cols: list[str] | None = None,
                     consent_col: str | None = None) -> None:
    """
    Fail fast when the consent column or any item column is absent,
    or when an item column is not numeric.

    Raises:
        DataShapeError: with the offending column names.
    """
    if item_cols is None:
        item_cols = get_item_columns()
    if consent_col is None:
        consent_col = cfg["data"]["consent_column"]

    if consent_col not in df.columns:
        raise DataShapeError(f"Consent column '{consent_col}' not in data")

    missing = [c for c in item_cols if c not in df.columns]
    if missing:
        raise DataShapeError(f"Item columns missing from data: {missing}")

    non_numeric = [c for c in item_cols if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise DataShapeError(f"Item columns with non-numeric values: {non_numeric}")


def _assert_complete_items(df: pd.DataFrame, item_cols: list[str]) -> None:
    """Totals over incomplete rows would be silently wrong."""
    n_missing = df[item_cols].isna().sum()
    n_missing = n_missing[n_missing > 0]
    if len(n_missing) > 0:
        raise DataShapeError(
            f"Item columns with missing values among consented respondents: "
            f"{n_missing.to_dict()}"
        )


# === 3. CONSENT FILTER ===

def filter_consent(df: pd.DataFrame,
                   consent_col: str | None = None,
                   consent_value: str | None = None) -> pd.DataFrame:
    """Keep only respondents who accepted the informed consent."""
    if consent_col is None:
        consent_col = cfg["data"]["consent_column"]
    if consent_value is None:
        consent_value = cfg["data"]["consent_value"]

    out = df[df[consent_col] == consent_value].copy()
    print(f"Informed consent '{consent_value}': kept {len(out):,} of {len(df):,}")
    return out


# === 4. TOTAL SCORE ===

def add_total_score(df: pd.DataFrame,
                    item_cols: list[str] | None = None,
                    total_col: str | None = None) -> pd.DataFrame:
    """Add the row-wise sum of the scale items as the total score."""
    if item_cols is None:
        item_cols = get_item_columns()
    if total_col is None:
        total_col = cfg["data"]["total_column"]

    out = df.copy()
    out[total_col] = out[item_cols].sum(axis=1, min_count=len(item_cols))
    return out


# === 5. HAMPEL FILTER ===

def hampel_bounds(values: pd.Series | np.ndarray,
                  k: float | None = None,
                  constant: float | None = None) -> tuple[float, float]:
    """
    Outlier bounds median +/- k * constant * MAD.

    Args:
        values: Total scores.
        k: Multiplier (default: config cleaning.hampel_k).
        constant: MAD consistency constant (default: config cleaning.mad_constant).

    Returns:
        (lower, upper), symmetric around the median.
    """
    if k is None:
        k = cfg["cleaning"]["hampel_k"]
    if constant is None:
        constant = cfg["cleaning"]["mad_constant"]

    x = np.asarray(values, dtype=float)
    med = np.median(x)
    mad = constant * np.median(np.abs(x - med))
    return med - k * mad, med + k * mad


def remove_outliers(df: pd.DataFrame,
                    total_col: str | None = None,
                    k: float | None = None,
                    constant: float | None = None) -> tuple[pd.DataFrame, tuple[float, float]]:
    """Drop respondents whose total lies outside the Hampel bounds."""
    if total_col is None:
        total_col = cfg["data"]["total_column"]

    lower, upper = hampel_bounds(df[total_col], k=k, constant=constant)
    keep = (df[total_col] >= lower) & (df[total_col] <= upper)
    n_out = int((~keep).sum())
    print(f"Hampel filter [{lower:.2f}, {upper:.2f}]: removed {n_out:,} outlier(s)")
    return df[keep].copy(), (lower, upper)


# === 6. FULL CLEANING STAGE ===

@dataclass(frozen=True)
class CleaningResult:
    """Output of the loader/cleaner stage."""
    data: pd.DataFrame
    bounds: tuple
    n_raw: int
    n_consented: int
    n_outliers: int

    @property
    def n_clean(self) -> int:
        return len(self.data)

    def sample_flow(self) -> pd.DataFrame:
        """N at each cleaning step."""
        return pd.DataFrame([
            {"stage": "Raw loaded", "N": self.n_raw},
            {"stage": "Informed consent accepted", "N": self.n_consented},
            {"stage": "After Hampel filter", "N": self.n_clean},
        ])


def clean_participants(df: pd.DataFrame,
                       item_cols: list[str] | None = None,
                       k: float | None = None) -> CleaningResult:
    """
    Validate, filter to consented respondents, add total score, remove outliers.

    Raises:
        DataShapeError: before any computation if the table has the wrong shape.
    """
    if item_cols is None:
        item_cols = get_item_columns()

    validate_columns(df, item_cols)
    consented = filter_consent(df)
    _assert_complete_items(consented, item_cols)

    scored = add_total_score(consented, item_cols)
    clean, bounds = remove_outliers(scored, k=k)
    clean = clean.reset_index(drop=True)

    return CleaningResult(
        data=clean,
        bounds=bounds,
        n_raw=len(df),
        n_consented=len(consented),
        n_outliers=len(scored) - len(clean),
    )


def get_item_table(df: pd.DataFrame,
                   item_cols: list[str] | None = None) -> pd.DataFrame:
    """Return only the scale items, integer coded."""
    if item_cols is None:
        item_cols = get_item_columns()
    items = df[item_cols]
    fractional = [c for c in item_cols if (items[c] % 1 != 0).any()]
    if fractional:
        raise DataShapeError(f"Ordinal items with non-integer values: {fractional}")
    return items.astype(int).reset_index(drop=True)
