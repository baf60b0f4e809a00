"""
Exploratory Factor Analysis Module
===================================
Weighted least squares extraction on the shared polychoric matrix,
followed by orthogonal (varimax) rotation.
"""

import warnings
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Optional
from scipy.optimize import minimize
from factor_analyzer import Rotator

from scale_validation.config import cfg
from scale_validation.correlation import CorrelationResult
from scale_validation.exceptions import DataShapeError, ModelFitError


@dataclass(frozen=True, eq=False)
class EFAResult:
    """Rotated loadings at full precision plus extraction diagnostics."""
    loadings: pd.DataFrame
    communalities: pd.Series
    uniquenesses: pd.Series
    variance: pd.DataFrame
    method: str
    rotation: Optional[str]
    n_obs: int
    converged: bool
    objective: float


# ===================================================================
# 1. EXTRACTION
# ===================================================================

def _loadings_from_psi(R: np.ndarray, psi: np.ndarray, n_factors: int) -> np.ndarray:
    """Principal-axis loadings of the reduced matrix with diag = 1 - psi."""
    Rr = np.array(R, dtype=float)
    np.fill_diagonal(Rr, 1.0 - psi)
    eigvals, eigvecs = np.linalg.eigh(Rr)
    order = np.argsort(eigvals)[::-1][:n_factors]
    vals = np.maximum(eigvals[order], 0.0)
    return eigvecs[:, order] * np.sqrt(vals)


def _extraction_weights(R: np.ndarray, method: str) -> np.ndarray:
    if method == "wls":
        # 1 / diag(R^-1) = 1 - SMC
        return 1.0 / np.diag(np.linalg.pinv(R))
    if method in ("minres", "uls"):
        return np.ones(R.shape[0])
    raise ValueError(f"Unknown extraction method '{method}'. Use: wls, minres, uls.")


def extract_factors(R: np.ndarray,
                    n_factors: int,
                    method: str = "wls") -> tuple[np.ndarray, bool, float]:
    """
    Least-squares factor extraction from a correlation matrix.

    Minimises sum_ij w_i w_j (r_ij - l_i l_j')^2 over the uniquenesses,
    bounded to [0.005, 1]. method="wls" weights by 1 - SMC, "minres"
    / "uls" weight equally.

    Returns:
        (unrotated loadings p x n_factors, converged, objective)
    """
    R = np.asarray(R, dtype=float)
    p = R.shape[0]
    if not 1 <= n_factors < p:
        raise ValueError(f"n_factors must be in [1, {p - 1}], got {n_factors}")

    w = _extraction_weights(R, method)
    W = np.outer(w, w)
    smc = 1.0 - 1.0 / np.diag(np.linalg.pinv(R))
    start = np.clip(1.0 - smc, 0.005, 1.0)

    def _objective(psi):
        L = _loadings_from_psi(R, psi, n_factors)
        resid = R - L @ L.T
        np.fill_diagonal(resid, 0.0)
        return np.sum(W * resid ** 2)

    result = minimize(
        _objective, start, method="L-BFGS-B",
        bounds=[(0.005, 1.0)] * p,
    )
    if not np.isfinite(result.fun):
        raise ModelFitError(f"{method.upper()} extraction diverged: {result.message}")

    L = _loadings_from_psi(R, result.x, n_factors)
    signs = np.where(L.sum(axis=0) < 0, -1.0, 1.0)
    return L * signs, bool(result.success), float(result.fun)


def _variance_table(L: np.ndarray, columns: list[str]) -> pd.DataFrame:
    ss = (L ** 2).sum(axis=0)
    prop = ss / L.shape[0]
    return pd.DataFrame(
        [ss, prop, np.cumsum(prop)],
        index=["SS loadings", "Proportion Var", "Cumulative Var"],
        columns=columns,
    )


# ===================================================================
# 2. MODEL FITTING
# ===================================================================

def fit_efa(
    items_df: pd.DataFrame,
    corr_result: CorrelationResult,
    n_factors: int | None = None,
    method: str | None = None,
    rotation: str | None = "config",
) -> EFAResult:
    """
    Fit an exploratory factor model to the EFA half.

    Args:
        items_df: EFA item table (coerced to integers).
        corr_result: Shared polychoric matrix of the same items.
        n_factors: Number of factors (default: config efa.n_factors).
        method: Extraction method (default: config efa.method).
        rotation: factor_analyzer rotation name, or None for unrotated
            (default: config efa.rotation).

    Returns:
        EFAResult with loadings indexed by item, columns WLS1..WLSk.
    """
    if n_factors is None:
        n_factors = cfg["efa"]["n_factors"]
    if method is None:
        method = cfg["efa"]["method"]
    if rotation == "config":
        rotation = cfg["efa"]["rotation"]

    items_df = items_df.astype(int)
    if tuple(items_df.columns) != corr_result.items:
        raise DataShapeError(
            f"EFA items {list(items_df.columns)} do not match the correlation "
            f"matrix items {list(corr_result.items)}"
        )

    L, converged, objective = extract_factors(corr_result.matrix, n_factors, method)
    if not converged:
        warnings.warn(f"{method.upper()} extraction did not report convergence (objective {objective:.4g}).")

    if rotation is not None and n_factors > 1:
        L = Rotator(method=rotation).fit_transform(L)
        signs = np.where(L.sum(axis=0) < 0, -1.0, 1.0)
        L = L * signs

    columns = [f"{method.upper()}{i + 1}" for i in range(n_factors)]
    items = list(corr_result.items)
    h2 = (L ** 2).sum(axis=1)

    return EFAResult(
        loadings=pd.DataFrame(L, index=items, columns=columns),
        communalities=pd.Series(h2, index=items, name="h2"),
        uniquenesses=pd.Series(1.0 - h2, index=items, name="u2"),
        variance=_variance_table(L, columns),
        method=method,
        rotation=rotation,
        n_obs=len(items_df),
        converged=converged,
        objective=objective,
    )


# ===================================================================
# 3. REPORTING
# ===================================================================

def efa_loadings_table(result: EFAResult,
                       cut: float | None = None,
                       digits: int | None = None) -> pd.DataFrame:
    """
    Display table: rounded loadings with |loading| < cut blanked, plus
    h2, u2 and Hoffman complexity. result.loadings is not modified.
    """
    if cut is None:
        cut = cfg["efa"]["display_cut"]
    if digits is None:
        digits = cfg["efa"]["display_digits"]

    L = result.loadings
    shown = L.round(digits).astype(object)
    shown = shown.where(L.abs() >= cut, "")

    sq = L.values ** 2
    complexity = sq.sum(axis=1) ** 2 / (sq ** 2).sum(axis=1)

    shown["h2"] = result.communalities.round(digits)
    shown["u2"] = result.uniquenesses.round(digits)
    shown["com"] = np.round(complexity, 1)
    return shown


def print_efa_summary(result: EFAResult) -> None:
    """Print the loading summary of the fitted EFA."""
    print("=" * 70)
    rot = result.rotation or "none"
    print(f"EXPLORATORY FACTOR ANALYSIS ({result.method.upper()}, rotation={rot}, N={result.n_obs:,})")
    print("=" * 70)
    print(efa_loadings_table(result).to_string())
    print()
    print(result.variance.round(2).to_string())
    print()
