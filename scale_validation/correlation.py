"""
Polychoric Correlation Module
==============================
Two-step polychoric correlations (Olsson, 1979) for ordinal scale items,
with eigenvalue smoothing to a positive-definite matrix.

The returned CorrelationResult is computed once from the EFA half and shared,
read-only, by factor retention, EFA and HTMT.
"""

import warnings
import numpy as np
import pandas as pd
from dataclasses import dataclass
from scipy.optimize import minimize_scalar
from scipy.special import owens_t
from scipy.stats import norm

from scale_validation.config import cfg
from scale_validation.exceptions import DataShapeError, DegenerateDataError


@dataclass(frozen=True)
class SmoothingReport:
    """How much the raw matrix was changed to make it positive definite."""
    applied: bool
    n_eigenvalues_adjusted: int
    min_eigenvalue_before: float
    frobenius_change: float
    max_abs_change: float


@dataclass(frozen=True, eq=False)
class CorrelationResult:
    """Read-only polychoric correlation matrix and its provenance."""
    matrix: np.ndarray
    items: tuple
    n_obs: int
    thresholds: dict
    smoothing: SmoothingReport

    def as_frame(self) -> pd.DataFrame:
        """Labelled copy of the matrix."""
        return pd.DataFrame(self.matrix.copy(), index=list(self.items), columns=list(self.items))

    def submatrix(self, rows: list[str], cols: list[str]) -> np.ndarray:
        """Block of the matrix for the given item names."""
        pos = {item: i for i, item in enumerate(self.items)}
        r = [pos[i] for i in rows]
        c = [pos[i] for i in cols]
        return self.matrix[np.ix_(r, c)]

    @property
    def determinant(self) -> float:
        return float(np.linalg.det(self.matrix))

    @property
    def eigenvalues(self) -> np.ndarray:
        """Eigenvalues in descending order."""
        return np.sort(np.linalg.eigvalsh(self.matrix))[::-1]


# ===================================================================
# 1. BIVARIATE NORMAL PROBABILITIES
# ===================================================================

def _bvn_cdf(h: np.ndarray, k: np.ndarray, rho: float) -> np.ndarray:
    """
    Standard bivariate normal CDF P(X <= h, Y <= k) via Owen's T function.

    Phi2 = (Phi(h) + Phi(k)) / 2 - T(h, a_h) - T(k, a_k) - beta,
    beta = 0 if h*k > 0 else 1/2.
    """
    h = np.where(h == 0, 1e-10, h)
    k = np.where(k == 0, 1e-10, k)
    s = np.sqrt(1.0 - rho ** 2)
    a_h = (k - rho * h) / (h * s)
    a_k = (h - rho * k) / (k * s)
    beta = np.where(h * k > 0, 0.0, 0.5)
    p = 0.5 * (norm.cdf(h) + norm.cdf(k)) - owens_t(h, a_h) - owens_t(k, a_k) - beta
    return np.clip(p, 0.0, 1.0)


def _cell_probabilities(tx: np.ndarray, ty: np.ndarray, rho: float) -> np.ndarray:
    """
    Probabilities of every cell of the (len(tx)+1) x (len(ty)+1) table
    given inner thresholds tx, ty and latent correlation rho.
    """
    F = np.zeros((len(tx) + 2, len(ty) + 2))
    H, K = np.meshgrid(tx, ty, indexing="ij")
    F[1:-1, 1:-1] = _bvn_cdf(H, K, rho)
    F[-1, 1:-1] = norm.cdf(ty)
    F[1:-1, -1] = norm.cdf(tx)
    F[-1, -1] = 1.0
    P = F[1:, 1:] - F[:-1, 1:] - F[1:, :-1] + F[:-1, :-1]
    return np.maximum(P, 1e-15)


# ===================================================================
# 2. POLYCHORIC PAIR
# ===================================================================

def _thresholds(x: np.ndarray, categories: np.ndarray) -> np.ndarray:
    """Inner thresholds from cumulative marginal proportions."""
    cum = np.array([np.mean(x <= c) for c in categories[:-1]])
    return norm.ppf(cum)


def _contingency(x: np.ndarray, y: np.ndarray,
                 cats_x: np.ndarray, cats_y: np.ndarray) -> np.ndarray:
    table = np.zeros((len(cats_x), len(cats_y)))
    np.add.at(table, (np.searchsorted(cats_x, x), np.searchsorted(cats_y, y)), 1)
    return table


def polychoric_pair(x: np.ndarray,
                    y: np.ndarray,
                    correct: float | None = None) -> float:
    """
    Polychoric correlation for two ordinal variables via two-step MLE.

    Args:
        x, y: 1-D integer arrays (NaN-free), each with at least 2 categories.
        correct: Value added to empty cells of the contingency table
            (default: config correlation.zero_cell_correction; 0 disables).

    Returns:
        Estimated latent correlation in (-1, 1).
    """
    if correct is None:
        correct = cfg["correlation"]["zero_cell_correction"]

    cats_x = np.unique(x)
    cats_y = np.unique(y)
    if len(cats_x) < 2 or len(cats_y) < 2:
        raise DegenerateDataError("Polychoric correlation needs at least 2 observed categories per item")

    tx = _thresholds(x, cats_x)
    ty = _thresholds(y, cats_y)

    obs = _contingency(x, y, cats_x, cats_y)
    if correct > 0:
        obs = np.where(obs == 0, correct, obs)

    def _neg_ll(rho):
        return -np.sum(obs * np.log(_cell_probabilities(tx, ty, rho)))

    result = minimize_scalar(
        _neg_ll, bounds=(-0.9999, 0.9999),
        method="bounded", options={"xatol": 1e-6},
    )
    return float(result.x)


# ===================================================================
# 3. SMOOTHING
# ===================================================================

def smooth_correlation(A: np.ndarray,
                       min_eigenvalue: float | None = None) -> tuple[np.ndarray, SmoothingReport]:
    """
    Nearest PD matrix via eigenvalue clipping, rescaled to unit diagonal.

    Returns:
        (smoothed matrix, SmoothingReport). The input is returned unchanged
        when it is already positive definite.
    """
    if min_eigenvalue is None:
        min_eigenvalue = cfg["correlation"]["min_eigenvalue"]

    eigvals, eigvecs = np.linalg.eigh(A)
    n_bad = int(np.sum(eigvals <= min_eigenvalue))
    if n_bad == 0:
        return A, SmoothingReport(False, 0, float(eigvals.min()), 0.0, 0.0)

    clipped = np.maximum(eigvals, min_eigenvalue)
    A_pd = eigvecs @ np.diag(clipped) @ eigvecs.T
    d = np.sqrt(np.diag(A_pd))
    A_pd = A_pd / np.outer(d, d)
    A_pd = (A_pd + A_pd.T) / 2
    np.fill_diagonal(A_pd, 1.0)

    change = A_pd - A
    return A_pd, SmoothingReport(
        applied=True,
        n_eigenvalues_adjusted=n_bad,
        min_eigenvalue_before=float(eigvals.min()),
        frobenius_change=float(np.linalg.norm(change)),
        max_abs_change=float(np.abs(change).max()),
    )


# ===================================================================
# 4. MATRIX
# ===================================================================

def _validate_ordinal_items(items_df: pd.DataFrame) -> None:
    if items_df.isna().any().any():
        raise DataShapeError(
            f"Polychoric input has missing values in: "
            f"{items_df.columns[items_df.isna().any()].tolist()}"
        )
    non_numeric = [c for c in items_df.columns if not pd.api.types.is_numeric_dtype(items_df[c])]
    if non_numeric:
        raise DataShapeError(f"Polychoric input has non-numeric items: {non_numeric}")
    fractional = [c for c in items_df.columns if (items_df[c] % 1 != 0).any()]
    if fractional:
        raise DataShapeError(f"Polychoric input has non-integer items: {fractional}")
    constant = [c for c in items_df.columns if items_df[c].nunique() < 2]
    if constant:
        raise DegenerateDataError(f"Zero-variance item(s), correlation undefined: {constant}")


def compute_polychoric_matrix(
    items_df: pd.DataFrame,
    smooth: bool | None = None,
    correct: float | None = None,
    verbose: bool = True,
) -> CorrelationResult:
    """
    Polychoric correlation matrix for all item pairs.

    Args:
        items_df: Ordinal items (integer codes, no missing values).
        smooth: Clip eigenvalues to make the matrix PD (default: config).
        correct: Empty-cell correction (default: config).
        verbose: Print a one-line summary.

    Returns:
        CorrelationResult with a read-only matrix.

    Raises:
        DataShapeError: missing, non-numeric or non-integer items.
        DegenerateDataError: an item with a single observed category.
    """
    if smooth is None:
        smooth = cfg["correlation"]["smooth"]

    _validate_ordinal_items(items_df)

    cols = list(items_df.columns)
    values = items_df.to_numpy(dtype=int)
    k = len(cols)
    corr = np.eye(k)

    for i in range(k):
        for j in range(i + 1, k):
            corr[i, j] = corr[j, i] = polychoric_pair(values[:, i], values[:, j], correct=correct)

    if smooth:
        corr, report = smooth_correlation(corr)
        if report.applied:
            warnings.warn(
                f"Polychoric matrix not positive definite: {report.n_eigenvalues_adjusted} "
                f"eigenvalue(s) adjusted (min before {report.min_eigenvalue_before:.2e}, "
                f"max |change| {report.max_abs_change:.4f})."
            )
    else:
        eigvals = np.linalg.eigvalsh(corr)
        n_bad = int(np.sum(eigvals <= 0))
        report = SmoothingReport(False, 0, float(eigvals.min()), 0.0, 0.0)
        if n_bad:
            warnings.warn(f"Polychoric matrix has {n_bad} non-positive eigenvalue(s); not smoothed.")

    thresholds = {
        col: tuple(_thresholds(values[:, i], np.unique(values[:, i])))
        for i, col in enumerate(cols)
    }

    corr = np.array(corr, dtype=float)
    corr.setflags(write=False)

    if verbose:
        off = corr[np.triu_indices(k, 1)]
        print(f"Polychoric matrix: {k} items, N={len(items_df):,}, "
              f"r in [{off.min():.2f}, {off.max():.2f}], smoothed={report.applied}")

    return CorrelationResult(
        matrix=corr,
        items=tuple(cols),
        n_obs=len(items_df),
        thresholds=thresholds,
        smoothing=report,
    )
