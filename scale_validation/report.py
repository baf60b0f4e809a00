"""
Markdown validation report: one section per pipeline stage.
"""

from pathlib import Path

import numpy as np
import pandas as pd

from scale_validation.cfa import CFAResult, fit_indices_table
from scale_validation.config import STUDY, get_output_dir
from scale_validation.data_loading import CleaningResult
from scale_validation.efa import EFAResult, efa_loadings_table
from scale_validation.factor_retention import FactorRetentionResult
from scale_validation.network import BootEGAResult, EGAResult
from scale_validation.preprocessing import SampleSplit
from scale_validation.validity import ValidityResult


def _md_table(df: pd.DataFrame, index: bool = False, digits: int = 3) -> list[str]:
    """Render a DataFrame as markdown table lines."""
    if index:
        df = df.reset_index()
    header = "| " + " | ".join(str(c) for c in df.columns) + " |"
    sep = "|" + "|".join("---" for _ in df.columns) + "|"
    rows = []
    for _, row in df.iterrows():
        cells = []
        for v in row.values:
            if isinstance(v, (float, np.floating)):
                cells.append("" if np.isnan(v) else f"{v:.{digits}f}")
            else:
                cells.append(str(v))
        rows.append("| " + " | ".join(cells) + " |")
    return [header, sep] + rows


def generate_validation_report(
    cleaning: CleaningResult,
    split: SampleSplit,
    assumptions: dict,
    retention: FactorRetentionResult,
    efa: EFAResult,
    cfa: CFAResult,
    validity: ValidityResult,
    ega: EGAResult,
    boot: BootEGAResult,
    output_path: str | Path | None = None,
) -> str:
    """
    Assemble the validation report.

    Args:
        assumptions: dict with keys mardia, anderson_darling, factorability,
            alpha, alpha_ci.
        output_path: Where to write (default: reports/validation_report.md).

    Returns:
        Report text.
    """
    lines = [
        f"# Validation Report: {STUDY.NAME}",
        "",
        "---",
        "",
        "## 1. Sample",
        "",
    ]
    lines += _md_table(cleaning.sample_flow())
    lo, hi = cleaning.bounds
    lines += [
        "",
        f"Hampel bounds on the total score: [{lo:.2f}, {hi:.2f}] "
        f"({cleaning.n_outliers} outlier(s) removed).",
        "",
        f"Random split (seed {split.seed}): {split.n_efa} respondents for EFA, "
        f"{split.n_cfa} for CFA.",
        "",
        "---",
        "",
        "## 2. Normality and Factorability (EFA sample)",
        "",
        "### Mardia",
        "",
    ]
    lines += _md_table(assumptions["mardia"], index=True, digits=4)

    ad = assumptions["anderson_darling"]
    n_normal = int((ad["p_value"] >= 0.05).sum())
    fac = assumptions["factorability"]
    chi_sq, p_bart = fac["bartlett_pearson"]
    alpha = assumptions["alpha"]
    lo_a, hi_a = assumptions["alpha_ci"]
    lines += [
        "",
        f"Anderson-Darling: {n_normal}/{len(ad)} items compatible with normality (p >= 0.05).",
        "",
        f"- KMO (Pearson): {fac['kmo_pearson']:.3f}",
        f"- KMO (polychoric): {fac['kmo_polychoric']:.3f}",
        f"- Bartlett: chi2 = {chi_sq:.2f}, p = {p_bart:.2e}",
        f"- Determinant of the polychoric matrix: {fac['determinant']:.3e}",
        f"- Ordinal alpha: {alpha['alpha']:.3f} (95% CI {lo_a:.3f} - {hi_a:.3f})",
        "",
        "---",
        "",
        "## 3. Number of Factors",
        "",
    ]
    lines += _md_table(retention.table)
    lines += [
        "",
        f"Consensus: **{retention.consensus}** factor(s), supported by "
        f"{retention.support:.0%} of the criteria.",
        "",
        "---",
        "",
        f"## 4. Exploratory Factor Analysis ({efa.method.upper()}, {efa.rotation or 'unrotated'})",
        "",
    ]
    lines += _md_table(efa_loadings_table(efa), index=True, digits=2)
    lines += [
        "",
        "---",
        "",
        f"## 5. Confirmatory Factor Analysis ({cfa.estimator}, N={cfa.n_obs})",
        "",
        "### Global fit",
        "",
    ]
    lines += _md_table(fit_indices_table(cfa), digits=4)
    lines += ["", "### Standardized loadings", ""]
    lines += _md_table(cfa.loadings)
    lines += ["", "### Inter-factor covariances (standardized)", ""]
    lines += _md_table(cfa.factor_covariances)
    lines += [
        "",
        "---",
        "",
        "## 6. Reliability and Validity",
        "",
    ]
    lines += _md_table(validity.reliability)
    lines += ["", "### Fornell-Larcker matrix", ""]
    lines += _md_table(validity.validity_matrix, index=True)
    lines += ["", "### HTMT", ""]
    lines += _md_table(validity.htmt, index=True)

    dims = ega.dimensions
    lines += [
        "",
        "---",
        "",
        "## 7. Exploratory Graph Analysis",
        "",
        f"EBICglasso (gamma = {ega.gamma}, lambda = {ega.lambda_:.4f}): "
        f"**{ega.n_dim}** dimension(s), {ega.n_edges} edges.",
        "",
    ]
    lines += _md_table(dims.to_frame().reset_index().rename(columns={"index": "item"}), digits=0)
    lines += [
        "",
        f"### bootEGA ({boot.n_boot} replicates, seed {boot.seed})",
        "",
        f"Median dimensions: {boot.median_dim:.0f}; mean: {boot.mean_dim:.2f} "
        f"({boot.n_valid} valid replicate(s), {boot.n_failed} failed).",
        "",
    ]
    lines += _md_table(boot.frequency)
    lines += ["", "Item stability:", ""]
    lines += _md_table(boot.item_stability.to_frame().reset_index().rename(columns={"index": "item"}))
    lines.append("")

    text = "\n".join(lines)
    if output_path is None:
        output_path = get_output_dir("reports") / "validation_report.md"
    Path(output_path).write_text(text, encoding="utf-8")
    print(f"  -> {output_path}")
    return text
