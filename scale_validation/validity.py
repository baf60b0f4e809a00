"""
Reliability and Validity Module
================================
Convergent and discriminant validity of the confirmatory solution:
  - Average variance extracted (AVE) and composite reliability (CR)
  - Fornell-Larcker matrix: AVE on the diagonal, squared inter-factor
    correlations below it
  - Heterotrait-monotrait ratio (HTMT) on the shared polychoric matrix
"""

import warnings
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Dict, List

from scale_validation.cfa import CFAResult
from scale_validation.config import cfg
from scale_validation.correlation import CorrelationResult
from scale_validation.exceptions import DataShapeError, ModelFitError


@dataclass(frozen=True, eq=False)
class ValidityResult:
    reliability: pd.DataFrame      # per factor: loadings summary, CR, AVE, flags
    validity_matrix: pd.DataFrame
    htmt: pd.DataFrame
    fornell_larcker_ok: pd.Series
    htmt_ok: pd.DataFrame


# ===================================================================
# 1. CONVERGENT VALIDITY
# ===================================================================

def _ave(lam: np.ndarray) -> float:
    if lam.size == 0:
        raise ValueError("AVE needs at least one loading")
    return float(np.mean(lam ** 2))


def _cr(lam: np.ndarray) -> float:
    if lam.size == 0:
        raise ValueError("CR needs at least one loading")
    num = lam.sum() ** 2
    return float(num / (num + np.sum(1.0 - lam ** 2)))


def _per_factor(source, func, name: str):
    if isinstance(source, CFAResult):
        return pd.Series(
            {f: func(source.factor_loadings(f)) for f in source.factors}, name=name
        )
    return func(np.asarray(source, dtype=float))


def average_variance_extracted(source: CFAResult | np.ndarray):
    """
    AVE = mean of squared standardized loadings.

    Args:
        source: Converged CFAResult (returns a Series per factor) or one
            factor's standardized loadings (returns a float).
    """
    return _per_factor(source, _ave, "AVE")


def composite_reliability(source: CFAResult | np.ndarray):
    """
    CR = (sum lambda)^2 / ((sum lambda)^2 + sum(1 - lambda^2)).

    Not clamped: a value outside [0, 1] signals an inadmissible solution.
    Accepts a CFAResult (Series per factor) or one factor's loadings (float).
    """
    return _per_factor(source, _cr, "CR")


def reliability_table(cfa_result: CFAResult,
                      cr_threshold: float | None = None,
                      ave_threshold: float | None = None) -> pd.DataFrame:
    """Items, loading summary, CR, AVE and sqrt(AVE) for each factor."""
    v = cfg["validity"]
    if cr_threshold is None:
        cr_threshold = v["cr_threshold"]
    if ave_threshold is None:
        ave_threshold = v["ave_threshold"]

    ave = average_variance_extracted(cfa_result)
    cr = composite_reliability(cfa_result)
    rows = []
    for factor in cfa_result.factors:
        lam = cfa_result.factor_loadings(factor)
        rows.append({
            "factor": factor,
            "items": ", ".join(cfa_result.structure[factor]),
            "n_items": len(lam),
            "min_loading": lam.min(),
            "mean_loading": lam.mean(),
            "max_loading": lam.max(),
            "CR": cr[factor],
            "AVE": ave[factor],
            "sqrt_AVE": np.sqrt(ave[factor]),
            "CR_ok": cr[factor] >= cr_threshold,
            "AVE_ok": ave[factor] >= ave_threshold,
        })
    return pd.DataFrame(rows)


# ===================================================================
# 2. DISCRIMINANT VALIDITY
# ===================================================================

def validity_matrix(cfa_result: CFAResult,
                    ave: pd.Series | None = None) -> pd.DataFrame:
    """
    Lower-triangular factor table: AVE on the diagonal, squared standardized
    inter-factor correlations below it, NaN above.
    """
    if ave is None:
        ave = average_variance_extracted(cfa_result)
    phi = cfa_result.factor_correlation_matrix()
    out = phi ** 2
    for factor in cfa_result.factors:
        out.loc[factor, factor] = ave[factor]
    upper = np.triu(np.ones(out.shape, dtype=bool), k=1)
    return out.mask(upper)


def fornell_larcker(matrix: pd.DataFrame) -> pd.Series:
    """True where a factor's AVE exceeds every squared correlation it shares."""
    vals = matrix.to_numpy()
    ok = {}
    for i, factor in enumerate(matrix.index):
        shared = np.concatenate([vals[i, :i], vals[i + 1:, i]])
        ok[factor] = bool(np.all(vals[i, i] > shared))
    return pd.Series(ok, name="fornell_larcker_ok")


def htmt_matrix(corr_result: CorrelationResult,
                structure: Dict[str, List[str]]) -> pd.DataFrame:
    """
    Heterotrait-monotrait ratio of correlations.

    HTMT_ij = mean|r(i-items, j-items)| /
              sqrt(mean|r within i| * mean|r within j|)

    Within-factor means exclude the diagonal. A factor with fewer than two
    items has no monotrait correlation, so its row and column are NaN.
    The diagonal is NaN.
    """
    available = set(corr_result.items)
    for factor, items in structure.items():
        missing = [i for i in items if i not in available]
        if missing:
            raise DataShapeError(f"Factor {factor} items not in correlation matrix: {missing}")

    factors = list(structure)
    within = {}
    for factor, items in structure.items():
        if len(items) < 2:
            warnings.warn(f"Factor {factor} has a single item; its HTMT ratios are undefined.")
            within[factor] = np.nan
            continue
        block = np.abs(corr_result.submatrix(items, items))
        within[factor] = block[~np.eye(len(items), dtype=bool)].mean()

    out = pd.DataFrame(np.nan, index=factors, columns=factors)
    for a, fa in enumerate(factors):
        for fb in factors[a + 1:]:
            hetero = np.abs(corr_result.submatrix(structure[fa], structure[fb])).mean()
            denom = np.sqrt(within[fa] * within[fb])
            value = hetero / denom if np.isfinite(denom) and denom > 0 else np.nan
            out.loc[fa, fb] = out.loc[fb, fa] = value
    return out


# ===================================================================
# 3. PIPELINE
# ===================================================================

def run_validity_analysis(cfa_result: CFAResult,
                          corr_result: CorrelationResult,
                          structure: Dict[str, List[str]] | None = None,
                          htmt_threshold: float | None = None) -> ValidityResult:
    """
    Reliability, Fornell-Larcker and HTMT for a converged CFA.

    Args:
        cfa_result: Converged confirmatory solution.
        corr_result: Shared polychoric matrix (HTMT only).
        structure: factor -> items for HTMT (default: the CFA structure).
        htmt_threshold: Discriminant cutoff (default: config validity.htmt_threshold).

    Raises:
        ModelFitError: the CFA did not converge.
    """
    if not cfa_result.converged:
        raise ModelFitError("Validity indices require a converged CFA solution")
    if htmt_threshold is None:
        htmt_threshold = cfg["validity"]["htmt_threshold"]

    reliability = reliability_table(cfa_result)
    vmat = validity_matrix(cfa_result)
    htmt = htmt_matrix(corr_result, structure or cfa_result.structure)

    return ValidityResult(
        reliability=reliability,
        validity_matrix=vmat,
        htmt=htmt,
        fornell_larcker_ok=fornell_larcker(vmat),
        htmt_ok=htmt < htmt_threshold,
    )


def print_validity_summary(result: ValidityResult) -> None:
    """Print reliability, Fornell-Larcker and HTMT tables."""
    print("=" * 70)
    print("RELIABILITY AND VALIDITY")
    print("=" * 70)

    print("\nConvergent validity:")
    print(result.reliability.to_string(index=False, float_format=lambda v: f"{v:.3f}"))

    print("\nFornell-Larcker (diagonal AVE, off-diagonal squared correlations):")
    print(result.validity_matrix.round(3).to_string())
    for factor, ok in result.fornell_larcker_ok.items():
        print(f"  {'[OK]' if ok else '[WARN]'} {factor}")

    print("\nHTMT:")
    print(result.htmt.round(3).to_string())
    print()
