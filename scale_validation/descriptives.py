"""
Descriptive summaries for the scale validation study.
Sociodemographic characterisation, satisfaction with the instrument,
item descriptives and response frequencies. Reporting only.
"""

import pandas as pd
import numpy as np

from scale_validation.config import cfg, get_variable_labels


# === 1. VARIABLE LABELS ===

def label_variables(df: pd.DataFrame,
                    labels: dict[str, str] | None = None) -> pd.DataFrame:
    """
    Attach readable labels as DataFrame metadata (df.attrs['labels']).
    Columns are not renamed, so downstream code keeps raw names.
    """
    if labels is None:
        labels = get_variable_labels()
    out = df.copy()
    out.attrs["labels"] = {c: labels[c] for c in out.columns if c in labels}
    return out


def _label(df: pd.DataFrame, col: str) -> str:
    return df.attrs.get("labels", {}).get(col) or get_variable_labels().get(col, col)


def _is_continuous(s: pd.Series, max_levels: int = 10) -> bool:
    return pd.api.types.is_numeric_dtype(s) and s.nunique(dropna=True) > max_levels


# === 2. SUMMARY TABLES ===

def summary_table(df: pd.DataFrame,
                  columns: list[str]) -> pd.DataFrame:
    """
    Publication-style summary: n (%) per level for categorical variables,
    median (Q1, Q3) for continuous ones.

    Returns DataFrame: variable, label, level, statistic.
    """
    rows = []
    n_total = len(df)

    for col in columns:
        if col not in df.columns:
            print(f"[WARN] Variable '{col}' not in data, skipping")
            continue

        s = df[col]
        label = _label(df, col)

        if _is_continuous(s):
            q1, med, q3 = s.quantile([0.25, 0.5, 0.75])
            rows.append({
                "variable": col,
                "label": label,
                "level": "",
                "statistic": f"{med:g} ({q1:g}, {q3:g})",
            })
        else:
            counts = s.value_counts(dropna=True).sort_index()
            for level, n in counts.items():
                rows.append({
                    "variable": col,
                    "label": label,
                    "level": str(level),
                    "statistic": f"{n} ({n / n_total * 100:.0f}%)",
                })

        n_missing = int(s.isna().sum())
        if n_missing:
            rows.append({
                "variable": col,
                "label": label,
                "level": "Unknown",
                "statistic": str(n_missing),
            })

    return pd.DataFrame(rows)


def sociodemographic_table(df: pd.DataFrame) -> pd.DataFrame:
    """Table 1: characterisation of participants."""
    return summary_table(df, cfg["demographics"])


def satisfaction_table(df: pd.DataFrame) -> pd.DataFrame:
    """Table 2: frequency distribution of satisfaction with the instrument."""
    return summary_table(df, cfg["satisfaction"])


# === 3. ITEM DESCRIPTIVES ===

def item_descriptives(items_df: pd.DataFrame) -> pd.DataFrame:
    """
    Per-item n, mean, sd, median, min, max, range, skew, kurtosis, se.

    Skew and excess kurtosis use the sample standard deviation
    (b1 = m3 / s^3, b2 = m4 / s^4 - 3).
    """
    rows = []
    for col in items_df.columns:
        x = items_df[col].dropna().astype(float).values
        n = len(x)
        mean = x.mean()
        sd = x.std(ddof=1) if n > 1 else np.nan
        dev = x - mean
        if sd and sd > 0:
            skew = np.mean(dev ** 3) / sd ** 3
            kurt = np.mean(dev ** 4) / sd ** 4 - 3
        else:
            skew = kurt = np.nan
        rows.append({
            "item": col,
            "n": n,
            "mean": mean,
            "sd": sd,
            "median": np.median(x),
            "min": x.min(),
            "max": x.max(),
            "range": x.max() - x.min(),
            "skew": skew,
            "kurtosis": kurt,
            "se": sd / np.sqrt(n),
        })
    return pd.DataFrame(rows).set_index("item")


def response_frequencies(items_df: pd.DataFrame) -> pd.DataFrame:
    """Proportion of responses in each category, per item (rows sum to 1)."""
    categories = np.sort(pd.unique(items_df.values.ravel()))
    categories = categories[~pd.isna(categories)]

    freq = pd.DataFrame(0.0, index=items_df.columns, columns=categories)
    for col in items_df.columns:
        props = items_df[col].value_counts(normalize=True)
        freq.loc[col, props.index] = props.values
    freq["miss"] = items_df.isna().mean()
    return freq


def print_summary_table(table: pd.DataFrame, title: str) -> None:
    """Print a summary table with a banner."""
    print("=" * 70)
    print(title)
    print("=" * 70)
    print(table.to_string(index=False))
    print()
