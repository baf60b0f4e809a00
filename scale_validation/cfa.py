"""
Confirmatory Factor Analysis Module
====================================
Fixed three-factor measurement model fitted with semopy, all items declared
ordinal, diagonally weighted least squares.

Fit indices: chi-square, df, p-value, GFI, RMSEA, SRMR, CFI, TLI, AGFI,
PNFI, IFI. semopy's calc_stats supplies the chi-square family, GFI, AGFI,
CFI, TLI, NFI and RMSEA; SRMR, PNFI and IFI are derived here.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Dict, List, Optional
import semopy
from semopy import Model

from scale_validation.config import cfg, get_factor_structure
from scale_validation.correlation import CorrelationResult, compute_polychoric_matrix
from scale_validation.exceptions import DataShapeError, ModelFitError

VALID_ESTIMATORS = ["MLW", "ULS", "GLS", "WLS", "DWLS"]
FIT_INDICES = ["chisq", "df", "pvalue", "gfi", "rmsea", "srmr",
               "cfi", "tli", "agfi", "pnfi", "ifi"]


@dataclass(frozen=True, eq=False)
class CFAResult:
    """Converged confirmatory model and its standardized solution."""
    model: Model
    structure: Dict[str, List[str]]
    fit_indices: pd.Series
    loadings: pd.DataFrame             # factor, item, loading
    factor_covariances: pd.DataFrame   # factor1, factor2, covariance
    residual_variances: pd.DataFrame   # item, variance
    estimator: str
    n_obs: int
    converged: bool

    @property
    def factors(self) -> List[str]:
        return list(self.structure)

    def factor_loadings(self, factor: str) -> np.ndarray:
        """Standardized loadings of one factor's items, in structure order."""
        sub = self.loadings[self.loadings["factor"] == factor]
        return sub["loading"].to_numpy()

    def factor_correlation_matrix(self) -> pd.DataFrame:
        """Standardized inter-factor covariances as a symmetric matrix."""
        phi = pd.DataFrame(np.eye(len(self.factors)), index=self.factors, columns=self.factors)
        for _, row in self.factor_covariances.iterrows():
            phi.loc[row["factor1"], row["factor2"]] = row["covariance"]
            phi.loc[row["factor2"], row["factor1"]] = row["covariance"]
        return phi


# ===================================================================
# 1. MODEL SPECIFICATION
# ===================================================================

def build_model_description(structure: Dict[str, List[str]] | None = None,
                            ordinal: bool | None = None) -> str:
    """
    lavaan-style measurement model, e.g. "F1 =~ A1 + A2 + A3 + A4".

    Args:
        structure: factor -> items (default: config factor_structure).
        ordinal: Append a DEFINE(ordinal) line for every item
            (default: config cfa.declare_ordinal).
    """
    if structure is None:
        structure = get_factor_structure()
    if ordinal is None:
        ordinal = cfg["cfa"]["declare_ordinal"]

    lines = [f"{factor} =~ " + " + ".join(items) for factor, items in structure.items()]
    if ordinal:
        all_items = [item for items in structure.values() for item in items]
        lines.append("DEFINE(ordinal) " + " ".join(all_items))
    return "\n".join(lines)


# ===================================================================
# 2. PARAMETER EXTRACTION
# ===================================================================

def _standardized_parameters(model: Model,
                             structure: Dict[str, List[str]]) -> tuple:
    params = model.inspect(std_est=True)
    factors = list(structure)
    items = [item for its in structure.values() for item in its]

    # semopy reports measurement paths as item ~ factor
    load = params[(params["op"] == "~") & params["rval"].isin(factors)]
    rows = []
    for factor, its in structure.items():
        for item in its:
            hit = load[(load["lval"] == item) & (load["rval"] == factor)]
            if hit.empty:
                raise ModelFitError(f"No loading estimated for {factor} =~ {item}")
            rows.append({"factor": factor, "item": item,
                         "loading": float(hit["Est. Std"].iloc[0])})
    loadings = pd.DataFrame(rows)

    cov = params[(params["op"] == "~~")
                 & params["lval"].isin(factors)
                 & params["rval"].isin(factors)
                 & (params["lval"] != params["rval"])]
    order = {f: i for i, f in enumerate(factors)}
    cov_rows = {}
    for _, row in cov.iterrows():
        f1, f2 = sorted([row["lval"], row["rval"]], key=order.get)
        cov_rows[(f1, f2)] = float(row["Est. Std"])
    factor_covariances = pd.DataFrame(
        [{"factor1": f1, "factor2": f2, "covariance": cov_rows.get((f1, f2), np.nan)}
         for i, f1 in enumerate(factors) for f2 in factors[i + 1:]]
    )

    res = params[(params["op"] == "~~")
                 & (params["lval"] == params["rval"])
                 & params["lval"].isin(items)]
    res_map = dict(zip(res["lval"], res["Est. Std"].astype(float)))
    residual_variances = pd.DataFrame(
        [{"item": item, "variance": res_map.get(item, np.nan)} for item in items]
    )
    return loadings, factor_covariances, residual_variances


def _check_admissible(loadings: pd.DataFrame,
                      factor_covariances: pd.DataFrame,
                      factors: List[str]) -> None:
    """Heywood cases or a non-PD latent correlation matrix are fit failures."""
    if loadings["loading"].isna().any():
        raise ModelFitError("Standardized loadings contain NaN")
    heywood = loadings[loadings["loading"].abs() >= 1.0]
    if not heywood.empty:
        raise ModelFitError(
            f"Heywood case: |standardized loading| >= 1 for {heywood['item'].tolist()}"
        )
    if factor_covariances["covariance"].isna().any():
        raise ModelFitError("Inter-factor covariances could not be estimated")

    phi = np.eye(len(factors))
    idx = {f: i for i, f in enumerate(factors)}
    for _, row in factor_covariances.iterrows():
        i, j = idx[row["factor1"]], idx[row["factor2"]]
        phi[i, j] = phi[j, i] = row["covariance"]
    if np.linalg.eigvalsh(phi).min() <= 0:
        raise ModelFitError("Latent correlation matrix is not positive definite")


# ===================================================================
# 3. FIT INDICES
# ===================================================================

def _semopy_stats(model: Model) -> pd.Series:
    stats = semopy.calc_stats(model)
    if "Value" in stats.index:
        return stats.loc["Value"]
    return stats["Value"]


def implied_correlation(loadings: pd.DataFrame,
                        phi: pd.DataFrame,
                        items: List[str]) -> np.ndarray:
    """Model-implied item correlations from the standardized solution."""
    factors = list(phi.index)
    lam = np.zeros((len(items), len(factors)))
    pos = {item: i for i, item in enumerate(items)}
    fpos = {f: j for j, f in enumerate(factors)}
    for _, row in loadings.iterrows():
        lam[pos[row["item"]], fpos[row["factor"]]] = row["loading"]
    sigma = lam @ phi.to_numpy() @ lam.T
    np.fill_diagonal(sigma, 1.0)
    return sigma


def srmr(sample_corr: np.ndarray, implied_corr: np.ndarray) -> float:
    """Standardized root mean square residual over the lower triangle incl. diagonal."""
    idx = np.tril_indices(sample_corr.shape[0])
    resid = (np.asarray(sample_corr) - implied_corr)[idx]
    return float(np.sqrt(np.mean(resid ** 2)))


def compute_fit_indices(model: Model,
                        loadings: pd.DataFrame,
                        phi: pd.DataFrame,
                        sample_corr: CorrelationResult) -> pd.Series:
    """Full global fit table in FIT_INDICES order."""
    stats = _semopy_stats(model)
    chisq = float(stats["chi2"])
    df = float(stats["DoF"])
    chisq_b = float(stats["chi2 Baseline"])
    df_b = float(stats["DoF Baseline"])
    nfi = float(stats["NFI"]) if "NFI" in stats.index else (chisq_b - chisq) / chisq_b

    items = list(sample_corr.items)
    sigma = implied_correlation(loadings, phi, items)

    values = {
        "chisq": chisq,
        "df": df,
        "pvalue": float(stats["chi2 p-value"]),
        "gfi": float(stats["GFI"]),
        "rmsea": float(stats["RMSEA"]),
        "srmr": srmr(sample_corr.matrix, sigma),
        "cfi": float(stats["CFI"]),
        "tli": float(stats["TLI"]),
        "agfi": float(stats["AGFI"]),
        "pnfi": (df / df_b) * nfi if df_b > 0 else np.nan,
        "ifi": (chisq_b - chisq) / (chisq_b - df) if chisq_b != df else np.nan,
    }
    return pd.Series(values, index=FIT_INDICES, name="value")


# ===================================================================
# 4. MODEL FITTING
# ===================================================================

def fit_cfa(
    cfa_df: pd.DataFrame,
    structure: Dict[str, List[str]] | None = None,
    estimator: str | None = None,
    solver: str | None = None,
    ordinal: bool | None = None,
    sample_corr: Optional[CorrelationResult] = None,
) -> CFAResult:
    """
    Fit the fixed measurement model to the CFA half.

    Args:
        cfa_df: CFA item table.
        structure: factor -> items (default: config factor_structure).
        estimator: semopy objective (default: config cfa.estimator, DWLS).
        solver: scipy solver used by semopy (default: config cfa.solver).
        ordinal: Declare items ordinal (default: config cfa.declare_ordinal).
        sample_corr: Polychoric matrix of the CFA half used for SRMR
            (computed here when not given).

    Returns:
        CFAResult of a converged, admissible solution.

    Raises:
        DataShapeError: items of the structure missing from cfa_df.
        ModelFitError: non-convergence, Heywood case, or non-PD latent
            correlation matrix.
    """
    if structure is None:
        structure = get_factor_structure()
    if estimator is None:
        estimator = cfg["cfa"]["estimator"]
    if solver is None:
        solver = cfg["cfa"]["solver"]
    if estimator not in VALID_ESTIMATORS:
        raise ValueError(f"Unsupported estimator: {estimator}. Choose from {VALID_ESTIMATORS}")

    items = [item for its in structure.values() for item in its]
    missing = [c for c in items if c not in cfa_df.columns]
    if missing:
        raise DataShapeError(f"CFA items missing from data: {missing}")
    data = cfa_df[items]

    if sample_corr is None:
        sample_corr = compute_polychoric_matrix(data.astype(int), verbose=False)

    description = build_model_description(structure, ordinal=ordinal)
    model = Model(description)

    print(f"[CFA] fitting {len(structure)} factors / {len(items)} items, "
          f"estimator={estimator}, solver={solver}, N={len(data):,}")
    try:
        result = model.fit(data, obj=estimator, solver=solver)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise ModelFitError(f"CFA estimation failed: {e}") from e

    if not getattr(result, "success", False):
        message = getattr(result, "message", "unknown reason")
        raise ModelFitError(f"CFA did not converge: {message}")

    loadings, factor_covariances, residual_variances = _standardized_parameters(model, structure)
    _check_admissible(loadings, factor_covariances, list(structure))

    phi = pd.DataFrame(np.eye(len(structure)), index=list(structure), columns=list(structure))
    for _, row in factor_covariances.iterrows():
        phi.loc[row["factor1"], row["factor2"]] = row["covariance"]
        phi.loc[row["factor2"], row["factor1"]] = row["covariance"]

    fit_indices = compute_fit_indices(model, loadings, phi, sample_corr)

    return CFAResult(
        model=model,
        structure={f: list(its) for f, its in structure.items()},
        fit_indices=fit_indices,
        loadings=loadings,
        factor_covariances=factor_covariances,
        residual_variances=residual_variances,
        estimator=estimator,
        n_obs=len(data),
        converged=True,
    )


# ===================================================================
# 5. REPORTING
# ===================================================================

# Conventional cutoffs (Hu & Bentler, 1999)
_CUTOFFS = {
    "rmsea": ("<=", 0.06),
    "srmr": ("<=", 0.08),
    "cfi": (">=", 0.95),
    "tli": (">=", 0.95),
    "gfi": (">=", 0.90),
    "agfi": (">=", 0.90),
    "ifi": (">=", 0.95),
}


def fit_indices_table(result: CFAResult) -> pd.DataFrame:
    """Fit indices with the conventional cutoff and whether it is met."""
    rows = []
    for name, value in result.fit_indices.items():
        rule = _CUTOFFS.get(name)
        if rule is None:
            ok, cutoff = None, ""
        else:
            op, thr = rule
            ok = value <= thr if op == "<=" else value >= thr
            cutoff = f"{op} {thr}"
        rows.append({"index": name, "value": value, "cutoff": cutoff, "meets_cutoff": ok})
    return pd.DataFrame(rows)


def print_cfa_summary(result: CFAResult) -> None:
    """Print fit indices and the standardized solution."""
    print("=" * 70)
    print(f"CONFIRMATORY FACTOR ANALYSIS ({result.estimator}, N={result.n_obs:,})")
    print("=" * 70)

    print("\nGlobal fit:")
    print(fit_indices_table(result).to_string(index=False, float_format=lambda v: f"{v:.4f}"))

    print("\nStandardized loadings:")
    print(result.loadings.to_string(index=False, float_format=lambda v: f"{v:.3f}"))

    print("\nStandardized inter-factor covariances:")
    print(result.factor_covariances.to_string(index=False, float_format=lambda v: f"{v:.3f}"))

    print("\nStandardized residual variances:")
    print(result.residual_variances.to_string(index=False, float_format=lambda v: f"{v:.3f}"))
    print()
