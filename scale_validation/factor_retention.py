"""
Factor Retention Module
========================
Battery of factor-retention criteria on the shared polychoric matrix.
Advisory only: the confirmatory model's three factors are fixed by theory.

Criteria:
  - Kaiser (eigenvalues > 1)
  - Parallel analysis (percentile of random-data eigenvalues)
  - Optimal coordinates (Raiche et al., 2013)
  - Acceleration factor (Raiche et al., 2013)
  - Velicer's MAP
  - Explained variance of the least-squares solution
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass

from scale_validation.config import cfg
from scale_validation.correlation import CorrelationResult
from scale_validation.efa import extract_factors


@dataclass(frozen=True, eq=False)
class FactorRetentionResult:
    """Per-criterion recommendations and their consensus."""
    eigenvalues: np.ndarray
    reference_eigenvalues: np.ndarray
    table: pd.DataFrame
    consensus: int
    support: float


# ===================================================================
# 1. REFERENCE EIGENVALUES
# ===================================================================

def parallel_eigenvalues(n_obs: int,
                         n_vars: int,
                         n_iter: int | None = None,
                         percentile: float | None = None,
                         random_state: int | None = None) -> np.ndarray:
    """Percentile of eigenvalues of correlation matrices of random normal data."""
    fr = cfg["factor_retention"]
    if n_iter is None:
        n_iter = fr["n_parallel_iter"]
    if percentile is None:
        percentile = fr["parallel_percentile"]
    if random_state is None:
        random_state = fr["random_seed"]

    rng = np.random.default_rng(random_state)
    sims = np.empty((n_iter, n_vars))
    for b in range(n_iter):
        X = rng.standard_normal((n_obs, n_vars))
        sims[b] = np.sort(np.linalg.eigvalsh(np.corrcoef(X, rowvar=False)))[::-1]
    return np.percentile(sims, percentile, axis=0)


# ===================================================================
# 2. CRITERIA
# ===================================================================

def _leading_run(mask: np.ndarray) -> int:
    """Number of leading True values."""
    if mask.all():
        return len(mask)
    return int(np.argmin(mask))


def kaiser_criterion(eigenvalues: np.ndarray) -> int:
    return int(np.sum(eigenvalues > 1.0))


def parallel_analysis(eigenvalues: np.ndarray, reference: np.ndarray) -> int:
    return _leading_run(eigenvalues > reference)


def optimal_coordinates(eigenvalues: np.ndarray, reference: np.ndarray) -> int:
    """
    Each eigenvalue is compared with the value predicted by the line through
    the next eigenvalue and the last one.
    """
    ev = np.asarray(eigenvalues)
    n = len(ev)
    predicted = np.full(n, -np.inf)
    for i in range(n - 2):
        slope = (ev[n - 1] - ev[i + 1]) / (n - 1 - (i + 1))
        predicted[i] = ev[i + 1] - slope
    return _leading_run((ev > predicted) & (ev > reference))


def acceleration_factor(eigenvalues: np.ndarray) -> int:
    """Elbow at the largest second difference; retain the factors before it."""
    ev = np.asarray(eigenvalues)
    if len(ev) < 3:
        return 1
    accel = ev[:-2] - 2 * ev[1:-1] + ev[2:]
    elbow = int(np.argmax(accel)) + 1    # 0-based position of the elbow eigenvalue
    return max(elbow, 1)


def velicer_map(R: np.ndarray) -> int:
    """Minimum average squared partial correlation after removing m components."""
    R = np.asarray(R, dtype=float)
    p = R.shape[0]
    eigvals, eigvecs = np.linalg.eigh(R)
    order = np.argsort(eigvals)[::-1]
    eigvals, eigvecs = eigvals[order], eigvecs[:, order]

    off = ~np.eye(p, dtype=bool)
    avg_sq = [np.mean(R[off] ** 2)]
    for m in range(1, p - 1):
        A = eigvecs[:, :m] * np.sqrt(np.maximum(eigvals[:m], 0.0))
        C = R - A @ A.T
        d = np.sqrt(np.clip(np.diag(C), 1e-12, None))
        partial = C / np.outer(d, d)
        avg_sq.append(np.mean(partial[off] ** 2))
    return int(np.argmin(avg_sq))


def explained_variance_criterion(R: np.ndarray,
                                 max_factors: int,
                                 threshold: float | None = None,
                                 method: str = "wls") -> int:
    """Smallest number of factors whose common variance reaches the threshold."""
    if threshold is None:
        threshold = cfg["factor_retention"]["variance_threshold"]
    p = R.shape[0]
    for k in range(1, max_factors + 1):
        L, _, _ = extract_factors(R, k, method)
        if (L ** 2).sum() / p >= threshold:
            return k
    return max_factors


# ===================================================================
# 3. BATTERY
# ===================================================================

def estimate_n_factors(
    corr_result: CorrelationResult,
    n_obs: int | None = None,
    max_factors: int | None = None,
    method: str | None = None,
) -> FactorRetentionResult:
    """
    Run every retention criterion on the shared polychoric matrix.

    Args:
        corr_result: Shared polychoric matrix (not modified).
        n_obs: Sample size used for parallel analysis (default: corr_result.n_obs).
        max_factors: Upper bound on any recommendation (default: config).
        method: Extraction method for the explained-variance criterion
            (default: config efa.method).

    Returns:
        FactorRetentionResult; consensus is the most frequent recommendation,
        ties broken toward fewer factors.
    """
    if n_obs is None:
        n_obs = corr_result.n_obs
    if max_factors is None:
        max_factors = cfg["factor_retention"]["max_factors"]
    if method is None:
        method = cfg["efa"]["method"]

    R = corr_result.matrix
    p = R.shape[0]
    max_factors = min(max_factors, p - 1)

    eigenvalues = corr_result.eigenvalues
    reference = parallel_eigenvalues(n_obs, p)

    recommendations = {
        "Kaiser criterion": kaiser_criterion(eigenvalues),
        "Parallel analysis": parallel_analysis(eigenvalues, reference),
        "Optimal coordinates": optimal_coordinates(eigenvalues, reference),
        "Acceleration factor": acceleration_factor(eigenvalues),
        "Velicer's MAP": velicer_map(R),
        "Explained variance": explained_variance_criterion(R, max_factors, method=method),
    }
    recommendations = {k: int(min(v, max_factors)) for k, v in recommendations.items()}

    table = pd.DataFrame(
        {"method": list(recommendations), "n_factors": list(recommendations.values())}
    )
    counts = table["n_factors"].value_counts()
    top = counts.max()
    consensus = int(min(counts[counts == top].index))
    support = float(top / len(table))

    return FactorRetentionResult(
        eigenvalues=eigenvalues,
        reference_eigenvalues=reference,
        table=table,
        consensus=consensus,
        support=support,
    )


def print_retention_summary(result: FactorRetentionResult) -> None:
    """Print the per-criterion table and the consensus."""
    print("=" * 70)
    print("NUMBER OF FACTORS")
    print("=" * 70)
    print(result.table.to_string(index=False))
    print(f"\nThe choice of {result.consensus} dimension(s) is supported by "
          f"{result.support:.2%} of the methods.")
    print()
