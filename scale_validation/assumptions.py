"""
Normality and Factorability Module
===================================
Assumption checks run on the EFA half before factor extraction:
  - Mardia multivariate skewness / kurtosis
  - Anderson-Darling univariate normality, per item
  - KMO sampling adequacy and Bartlett's sphericity
  - Ordinal alpha on the polychoric matrix, with Feldt confidence interval
"""

import numpy as np
import pandas as pd
from typing import Dict
from scipy.stats import chi2, f as f_dist, norm
from statsmodels.stats.diagnostic import normal_ad
from factor_analyzer import calculate_bartlett_sphericity, calculate_kmo

from scale_validation.correlation import CorrelationResult


# ===================================================================
# 1. MULTIVARIATE NORMALITY
# ===================================================================

def mardia_test(items_df: pd.DataFrame) -> pd.DataFrame:
    """
    Mardia's multivariate skewness and kurtosis.

    b1p = sum(D^3) / n^2, b2p = trace(D^2) / n with D the Mahalanobis
    cross-product matrix on the sample covariance.

    Returns:
        DataFrame indexed by Skewness / Small Sample Skew / Kurtosis with
        columns beta_hat, kappa, p_value.
    """
    X = items_df.to_numpy(dtype=float)
    n, p = X.shape
    Xc = X - X.mean(axis=0)
    S = np.cov(Xc, rowvar=False, ddof=1)
    D = Xc @ np.linalg.pinv(S) @ Xc.T

    b1p = np.sum(D ** 3) / n ** 2
    b2p = np.sum(np.diag(D) ** 2) / n

    chi_df = p * (p + 1) * (p + 2) / 6
    k = (p + 1) * (n + 1) * (n + 3) / (n * ((n + 1) * (p + 1) - 6))
    skew_stat = n * b1p / 6
    small_skew_stat = n * k * b1p / 6
    kurt_stat = (b2p - p * (p + 2)) * np.sqrt(n / (8 * p * (p + 2)))

    return pd.DataFrame(
        {
            "beta_hat": [b1p, b1p, b2p],
            "kappa": [skew_stat, small_skew_stat, kurt_stat],
            "p_value": [
                chi2.sf(skew_stat, chi_df),
                chi2.sf(small_skew_stat, chi_df),
                2 * norm.sf(abs(kurt_stat)),
            ],
        },
        index=["Skewness", "Small Sample Skew", "Kurtosis"],
    )


# ===================================================================
# 2. UNIVARIATE NORMALITY
# ===================================================================

def anderson_darling(x: np.ndarray) -> tuple[float, float]:
    """
    Anderson-Darling test of normality with estimated mean and sd.

    Returns:
        (A^2 statistic, p-value).
    """
    x = np.sort(np.asarray(x, dtype=float))
    n = len(x)
    if n < 8:
        raise ValueError(f"Anderson-Darling needs at least 8 observations, got {n}")
    if x.std(ddof=1) == 0:
        return np.inf, 0.0
    a2, p = normal_ad(x)
    return float(a2), float(p)


def anderson_darling_table(items_df: pd.DataFrame, digits: int = 4) -> pd.DataFrame:
    """Univariate Anderson-Darling tests for every item."""
    rows = []
    for col in items_df.columns:
        stat, p = anderson_darling(items_df[col].values)
        rows.append({
            "variable": col,
            "AD_statistic": round(stat, digits),
            "p_value": round(p, digits),
        })
    return pd.DataFrame(rows)


# ===================================================================
# 3. FACTORABILITY
# ===================================================================

def compute_kmo_from_corr(corr_matrix: np.ndarray) -> float:
    """
    KMO sampling adequacy from a correlation matrix.

    KMO = sum(r_ij^2) / (sum(r_ij^2) + sum(q_ij^2)), q = partial correlations.
    """
    try:
        R_inv = np.linalg.inv(corr_matrix)
    except np.linalg.LinAlgError:
        R_inv = np.linalg.pinv(corr_matrix)

    d = np.diag(R_inv)
    d_safe = np.where(d > 0, d, 1e-10)
    partial = -R_inv / np.sqrt(np.outer(d_safe, d_safe))
    np.fill_diagonal(partial, 0.0)

    r2 = np.array(corr_matrix) ** 2
    np.fill_diagonal(r2, 0.0)
    q2 = partial ** 2

    sum_r2 = r2.sum()
    sum_q2 = q2.sum()

    if (sum_r2 + sum_q2) == 0:
        return 0.0

    return sum_r2 / (sum_r2 + sum_q2)


def compute_bartlett_from_corr(corr_matrix: np.ndarray, n_obs: int) -> tuple[float, float, float]:
    """
    Bartlett's test of sphericity from a correlation matrix.

    Returns:
        (chi-square, df, p-value).
    """
    p = corr_matrix.shape[0]
    det_R = np.linalg.det(corr_matrix)
    df = p * (p - 1) / 2

    if det_R <= 0:
        return np.inf, df, 0.0

    chi_sq = -(n_obs - 1 - (2 * p + 5) / 6) * np.log(det_R)
    return chi_sq, df, chi2.sf(chi_sq, df)


def check_factorability(items_df: pd.DataFrame,
                        corr_result: CorrelationResult) -> Dict:
    """
    KMO and Bartlett on the Pearson matrix (factor_analyzer) and on the
    shared polychoric matrix.

    Returns:
        Dict with kmo_items (Series), kmo_pearson, bartlett_pearson (chi2, p),
        kmo_polychoric, bartlett_polychoric (chi2, df, p), determinant,
        is_factorable.
    """
    kmo_items, kmo_total = calculate_kmo(items_df)
    chi_sq, p_value = calculate_bartlett_sphericity(items_df)

    R = corr_result.matrix
    kmo_poly = compute_kmo_from_corr(R)
    bartlett_poly = compute_bartlett_from_corr(R, corr_result.n_obs)

    return {
        "kmo_items": pd.Series(kmo_items, index=items_df.columns),
        "kmo_pearson": float(kmo_total),
        "bartlett_pearson": (float(chi_sq), float(p_value)),
        "kmo_polychoric": float(kmo_poly),
        "bartlett_polychoric": bartlett_poly,
        "determinant": corr_result.determinant,
        "is_factorable": bool(kmo_total >= 0.6 and p_value < 0.05),
    }


# ===================================================================
# 4. ORDINAL ALPHA
# ===================================================================

def ordinal_alpha(corr_result: CorrelationResult, check_keys: bool = True) -> Dict:
    """
    Standardized alpha on the polychoric matrix.

    alpha_ordinal = (k/(k-1)) * (1 - k/sum(R))

    Args:
        corr_result: Shared polychoric matrix.
        check_keys: Reverse items loading negatively on the first principal
            component before computing alpha.

    Returns:
        Dict with alpha, n_items, reversed_items.
    """
    R = np.array(corr_result.matrix)
    items = list(corr_result.items)
    reversed_items = []

    if check_keys:
        eigvals, eigvecs = np.linalg.eigh(R)
        first = eigvecs[:, np.argmax(eigvals)]
        if first.sum() < 0:
            first = -first
        signs = np.where(first < 0, -1.0, 1.0)
        reversed_items = [item for item, s in zip(items, signs) if s < 0]
        R = R * np.outer(signs, signs)

    k = R.shape[0]
    total_r = R.sum()
    alpha = (k / (k - 1)) * (1 - k / total_r) if total_r != 0 else np.nan

    return {"alpha": alpha, "n_items": k, "reversed_items": reversed_items}


def alpha_confidence_interval(alpha: float,
                              n_obs: int,
                              n_items: int,
                              p_val: float = 0.05) -> tuple[float, float]:
    """Feldt confidence interval for coefficient alpha."""
    df1 = n_obs - 1
    df2 = (n_obs - 1) * (n_items - 1)
    lower = 1 - (1 - alpha) * f_dist.ppf(1 - p_val / 2, df1, df2)
    upper = 1 - (1 - alpha) * f_dist.ppf(p_val / 2, df1, df2)
    return lower, upper


def print_assumption_summary(mardia: pd.DataFrame,
                             ad_table: pd.DataFrame,
                             factorability: Dict,
                             alpha: Dict,
                             alpha_ci: tuple) -> None:
    """Print normality and factorability checks."""
    print("=" * 70)
    print("NORMALITY AND FACTORABILITY (EFA SAMPLE)")
    print("=" * 70)

    print("\nMardia multivariate normality:")
    print(mardia.to_string(float_format=lambda v: f"{v:.4f}"))

    n_normal = int((ad_table["p_value"] >= 0.05).sum())
    print(f"\nAnderson-Darling: {n_normal}/{len(ad_table)} items compatible with normality")

    print(f"\nKMO (Pearson): {factorability['kmo_pearson']:.3f}")
    print(f"KMO (polychoric): {factorability['kmo_polychoric']:.3f}")
    chi_sq, p = factorability["bartlett_pearson"]
    print(f"Bartlett's test: chi2={chi_sq:.2f}, p={p:.2e}")
    print(f"Determinant of polychoric matrix: {factorability['determinant']:.3e}")
    status = "[OK]" if factorability["is_factorable"] else "[WARN]"
    print(f"{status} Factorable: {factorability['is_factorable']}")

    print(f"\nOrdinal alpha: {alpha['alpha']:.4f} "
          f"(95% CI {alpha_ci[0]:.4f} - {alpha_ci[1]:.4f})")
    if alpha["reversed_items"]:
        print(f"  Reversed items: {alpha['reversed_items']}")
    print()
