"""
Figures
=======
Correlation heatmap, scree plot with the parallel-analysis reference, the
CFA path diagram (semopy semplot, rendered by Graphviz) and the EGA
network graph. Matplotlib figures are written to outputs/figures at 150 dpi.
"""

import warnings
from pathlib import Path

import numpy as np
import matplotlib
matplotlib.use("Agg")  # non-interactive backend for scripts
import matplotlib.pyplot as plt
import graphviz
import networkx as nx
import seaborn as sns
from semopy import semplot

from scale_validation.cfa import CFAResult
from scale_validation.config import get_output_dir
from scale_validation.correlation import CorrelationResult
from scale_validation.factor_retention import FactorRetentionResult
from scale_validation.network import EGAResult


def plot_correlation_heatmap(corr_result: CorrelationResult,
                             save_dir: Path | None = None) -> Path:
    if save_dir is None:
        save_dir = get_output_dir("figures")

    corr = corr_result.as_frame()
    fig, ax = plt.subplots(figsize=(9, 8))
    mask = np.triu(np.ones_like(corr, dtype=bool), k=1)
    sns.heatmap(corr, mask=mask, annot=True, fmt=".2f", cmap="RdBu_r",
                center=0, vmin=-1, vmax=1, square=True, ax=ax,
                cbar_kws={"shrink": 0.7}, annot_kws={"size": 7})
    ax.set_title(f"Polychoric Correlations (N={corr_result.n_obs:,})", fontweight="bold")
    plt.tight_layout()
    path = save_dir / "polychoric_heatmap.png"
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()
    return path


def plot_scree(retention: FactorRetentionResult,
               save_dir: Path | None = None) -> Path:
    if save_dir is None:
        save_dir = get_output_dir("figures")

    x = np.arange(1, len(retention.eigenvalues) + 1)
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(x, retention.eigenvalues, marker="o", color="#4C72B0", label="Observed")
    ax.plot(x, retention.reference_eigenvalues, marker="x", linestyle="--",
            color="#D9534F", label="Parallel analysis")
    ax.axhline(1.0, color="gray", linestyle=":", alpha=0.7, label="Kaiser (1.0)")
    ax.axvline(retention.consensus, color="#5CB85C", alpha=0.5,
               label=f"Consensus: {retention.consensus}")
    ax.set_xticks(x)
    ax.set_xlabel("Factor")
    ax.set_ylabel("Eigenvalue")
    ax.set_title("Scree Plot", fontweight="bold")
    ax.legend(fontsize=8)
    ax.grid(alpha=0.3)
    plt.tight_layout()
    path = save_dir / "scree_parallel.png"
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()
    return path


def plot_network(ega: EGAResult,
                 save_dir: Path | None = None,
                 seed: int = 3) -> Path:
    if save_dir is None:
        save_dir = get_output_dir("figures")

    items = list(ega.network.index)
    W = ega.network.to_numpy()
    G = nx.Graph()
    G.add_nodes_from(items)
    for i, j in zip(*np.triu_indices(len(items), 1)):
        if W[i, j] != 0:
            G.add_edge(items[i], items[j], weight=W[i, j], strength=abs(W[i, j]))

    palette = sns.color_palette("Set2", max(ega.n_dim, 1))
    node_colors = [
        "lightgray" if np.isnan(ega.dimensions[n]) else palette[int(ega.dimensions[n]) - 1]
        for n in G.nodes
    ]
    edges = list(G.edges(data="weight"))
    edge_colors = ["#2E8B57" if w > 0 else "#D9534F" for _, _, w in edges]
    widths = [1 + 8 * abs(w) for _, _, w in edges]

    fig, ax = plt.subplots(figsize=(7, 7))
    layout = nx.spring_layout(G, weight="strength", seed=seed)
    nx.draw_networkx_edges(G, layout, edgelist=[(u, v) for u, v, _ in edges],
                           width=widths, edge_color=edge_colors, alpha=0.7, ax=ax)
    nx.draw_networkx_nodes(G, layout, node_color=node_colors, node_size=700,
                           edgecolors="black", ax=ax)
    nx.draw_networkx_labels(G, layout, font_size=9, ax=ax)
    ax.set_title(f"EGA Network ({ega.n_dim} dimensions)", fontweight="bold")
    ax.axis("off")
    plt.tight_layout()
    path = save_dir / "ega_network.png"
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()
    return path


def plot_path_diagram(cfa_result: CFAResult,
                      save_dir: Path | None = None,
                      engine: str = "dot") -> Path | None:
    """
    Path diagram of the fitted measurement model with standardized estimates.

    Args:
        cfa_result: Converged confirmatory solution.
        save_dir: Output directory (default: outputs/figures).
        engine: Graphviz layout engine.

    Returns:
        Path of cfa_path_diagram.png, or None when the Graphviz executables
        are not installed.
    """
    if save_dir is None:
        save_dir = get_output_dir("figures")

    path = save_dir / "cfa_path_diagram.png"
    try:
        semplot(cfa_result.model, str(path), plot_covs=True, plot_ests=True,
                std_ests=True, engine=engine, latshape="circle")
    except graphviz.ExecutableNotFound as e:
        warnings.warn(f"Path diagram skipped, Graphviz is not installed: {e}")
        return None
    return path
