"""
Psychometric validation of the 15-item scale
=============================================
Cleaning -> descriptives -> EFA/CFA split -> assumptions -> polychoric
correlations -> number of factors -> EFA -> CFA -> reliability/validity
-> exploratory graph analysis.

Usage:
    python run_analysis.py [config.yaml]
"""

import sys
import warnings

# ---- Setup ---------------------------------------------------------------
from scale_validation.config import cfg, use_config, set_global_seed, get_output_dir, get_factor_structure

if len(sys.argv) > 1:
    use_config(sys.argv[1])
    print(f"Using configuration: {sys.argv[1]}")

from scale_validation.data_loading import load_participants, clean_participants, get_item_table
from scale_validation.descriptives import (
    label_variables,
    sociodemographic_table,
    satisfaction_table,
    item_descriptives,
    response_frequencies,
    print_summary_table,
)
from scale_validation.preprocessing import split_efa_cfa
from scale_validation.correlation import compute_polychoric_matrix
from scale_validation.assumptions import (
    mardia_test,
    anderson_darling_table,
    check_factorability,
    ordinal_alpha,
    alpha_confidence_interval,
    print_assumption_summary,
)
from scale_validation.factor_retention import estimate_n_factors, print_retention_summary
from scale_validation.efa import fit_efa, efa_loadings_table, print_efa_summary
from scale_validation.cfa import fit_cfa, fit_indices_table, print_cfa_summary
from scale_validation.validity import run_validity_analysis, print_validity_summary
from scale_validation.network import fit_ega, boot_ega, print_ega_summary
from scale_validation.plots import (
    plot_correlation_heatmap,
    plot_scree,
    plot_path_diagram,
    plot_network,
)
from scale_validation.report import generate_validation_report


def main() -> None:
    set_global_seed()
    warnings.simplefilter("always", UserWarning)

    print("=" * 70)
    print("PSYCHOMETRIC PROPERTIES -- SCALE VALIDATION PIPELINE")
    print("=" * 70)

    tables_dir = get_output_dir("tables")
    figures_dir = get_output_dir("figures")

    # ---- 1. Load and clean ----------------------------------------------------
    print("\n--- 1. Loading and cleaning ---")
    raw = load_participants()
    cleaning = clean_participants(raw)
    data = label_variables(cleaning.data)
    cleaning.sample_flow().to_csv(tables_dir / "sample_flow.csv", index=False)
    print(f"  Clean sample: N = {cleaning.n_clean:,}")

    # ---- 2. Descriptives --------------------------------------------------------
    print("\n--- 2. Descriptives ---")
    demo = sociodemographic_table(data)
    satisfaction = satisfaction_table(data)
    print_summary_table(demo, "TABLE 1. CHARACTERISATION OF PARTICIPANTS")
    print_summary_table(satisfaction, "TABLE 2. SATISFACTION WITH THE INSTRUMENT")
    demo.to_csv(tables_dir / "sociodemographics.csv", index=False)
    satisfaction.to_csv(tables_dir / "satisfaction.csv", index=False)

    items = get_item_table(data)

    # ---- 3. Split -----------------------------------------------------------------
    print("\n--- 3. EFA / CFA split ---")
    split = split_efa_cfa(items)

    desc = item_descriptives(split.efa)
    freq = response_frequencies(split.efa)
    desc.to_csv(tables_dir / "item_descriptives_efa.csv")
    freq.to_csv(tables_dir / "response_frequencies_efa.csv")
    print(desc.round(2).to_string())

    # ---- 4. Polychoric correlations (computed once, shared) --------------------
    print("\n--- 4. Polychoric correlations (EFA half) ---")
    corr = compute_polychoric_matrix(split.efa)
    corr.as_frame().to_csv(tables_dir / "polychoric_efa.csv")
    plot_correlation_heatmap(corr, save_dir=figures_dir)

    # ---- 5. Assumptions -----------------------------------------------------------
    print("\n--- 5. Normality and factorability ---")
    mardia = mardia_test(split.efa)
    ad = anderson_darling_table(split.efa)
    factorability = check_factorability(split.efa, corr)
    alpha = ordinal_alpha(corr)
    alpha_ci = alpha_confidence_interval(alpha["alpha"], corr.n_obs, alpha["n_items"])
    print_assumption_summary(mardia, ad, factorability, alpha, alpha_ci)
    mardia.to_csv(tables_dir / "mardia.csv")
    ad.to_csv(tables_dir / "anderson_darling.csv", index=False)

    # ---- 6. Number of factors -------------------------------------------------------
    print("\n--- 6. Number of factors ---")
    retention = estimate_n_factors(corr)
    print_retention_summary(retention)
    retention.table.to_csv(tables_dir / "factor_retention.csv", index=False)
    plot_scree(retention, save_dir=figures_dir)

    # ---- 7. EFA -------------------------------------------------------------------
    print("\n--- 7. Exploratory factor analysis ---")
    efa = fit_efa(split.efa, corr)
    print_efa_summary(efa)
    efa.loadings.to_csv(tables_dir / "efa_loadings.csv")
    efa_loadings_table(efa).to_csv(tables_dir / "efa_loadings_display.csv")

    # ---- 8. CFA -------------------------------------------------------------------
    print("\n--- 8. Confirmatory factor analysis ---")
    cfa = fit_cfa(split.cfa, get_factor_structure())
    print_cfa_summary(cfa)
    fit_indices_table(cfa).to_csv(tables_dir / "cfa_fit_indices.csv", index=False)
    cfa.loadings.to_csv(tables_dir / "cfa_loadings.csv", index=False)
    cfa.factor_covariances.to_csv(tables_dir / "cfa_factor_covariances.csv", index=False)
    cfa.residual_variances.to_csv(tables_dir / "cfa_residual_variances.csv", index=False)
    plot_path_diagram(cfa, save_dir=figures_dir)

    # ---- 9. Reliability and validity -------------------------------------------------
    print("\n--- 9. Reliability and validity ---")
    validity = run_validity_analysis(cfa, corr)
    print_validity_summary(validity)
    validity.reliability.to_csv(tables_dir / "reliability.csv", index=False)
    validity.validity_matrix.to_csv(tables_dir / "validity_matrix.csv")
    validity.htmt.to_csv(tables_dir / "htmt.csv")

    # ---- 10. Exploratory graph analysis -----------------------------------------------
    print("\n--- 10. Exploratory graph analysis ---")
    ega = fit_ega(corr)
    boot = boot_ega(split.efa, empirical=ega)
    print_ega_summary(ega, boot)
    ega.network.to_csv(tables_dir / "ega_network.csv")
    boot.frequency.to_csv(tables_dir / "bootega_frequency.csv", index=False)
    boot.item_stability.to_csv(tables_dir / "bootega_item_stability.csv")
    plot_network(ega, save_dir=figures_dir, seed=cfg["ega"]["community_seed"])

    # ---- Report -----------------------------------------------------------------------
    print("\n--- Report ---")
    generate_validation_report(
        cleaning=cleaning,
        split=split,
        assumptions={
            "mardia": mardia,
            "anderson_darling": ad,
            "factorability": factorability,
            "alpha": alpha,
            "alpha_ci": alpha_ci,
        },
        retention=retention,
        efa=efa,
        cfa=cfa,
        validity=validity,
        ega=ega,
        boot=boot,
    )

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  Tables:  {tables_dir}/")
    print(f"  Figures: {figures_dir}/")
    print(f"  Report:  {get_output_dir('reports')}/validation_report.md")


if __name__ == "__main__":
    main()
