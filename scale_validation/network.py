"""
Exploratory Graph Analysis Module
==================================
Network-based dimensionality check on the polychoric matrix:
  - EBIC-selected graphical lasso (gamma = 0.5) over a log-spaced lambda path
  - Partial-correlation network, Louvain community detection (networkx)
  - Bootstrap EGA: case resampling, per-replicate child seeds, replicates
    fanned out over a process pool and reduced after all complete
"""

import warnings
import numpy as np
import pandas as pd
import networkx as nx
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from scipy.optimize import linear_sum_assignment
from sklearn.covariance import graphical_lasso
from sklearn.exceptions import ConvergenceWarning

from scale_validation.config import cfg
from scale_validation.correlation import CorrelationResult, compute_polychoric_matrix
from scale_validation.exceptions import DegenerateDataError, ModelFitError


@dataclass(frozen=True, eq=False)
class EGAResult:
    """Regularized partial-correlation network and its communities."""
    network: pd.DataFrame        # partial correlations, zero diagonal
    dimensions: pd.Series        # item -> dimension (NaN for isolated items)
    n_dim: int
    lambda_: float
    ebic: float
    gamma: float
    n_obs: int
    n_lambda_skipped: int

    @property
    def n_edges(self) -> int:
        W = self.network.to_numpy()
        return int(np.count_nonzero(W[np.triu_indices_from(W, 1)]))


@dataclass(frozen=True, eq=False)
class BootEGAResult:
    """Reduced bootstrap replicates of the EGA structure."""
    empirical: EGAResult
    n_boot: int
    seed: int
    replicate_n_dim: np.ndarray
    frequency: pd.DataFrame      # n_dim, count, frequency
    median_dim: float
    mean_dim: float
    cooccurrence: pd.DataFrame
    item_stability: pd.Series
    n_replicate_warnings: int
    n_failed: int = 0            # replicates with an undefined matrix or no converged glasso

    @property
    def n_valid(self) -> int:
        return self.n_boot - self.n_failed


# ===================================================================
# 1. GLASSO WITH EBIC
# ===================================================================

def lambda_path(S: np.ndarray, n_lambda: int, lambda_min_ratio: float) -> np.ndarray:
    """Log-spaced penalties from lambda_max * ratio up to lambda_max = max |s_ij|."""
    off = np.abs(S[np.triu_indices_from(S, 1)])
    lambda_max = float(off.max())
    if lambda_max <= 0:
        raise ModelFitError("Correlation matrix has no off-diagonal signal for glasso")
    return np.logspace(np.log10(lambda_max * lambda_min_ratio), np.log10(lambda_max), n_lambda)


def ebic(S: np.ndarray, K: np.ndarray, n_obs: int, gamma: float) -> float:
    """
    Extended BIC of a precision matrix (Foygel & Drton, 2010).

    EBIC = -2 loglik + E log(n) + 4 E gamma log(p)
    """
    p = S.shape[0]
    _, logdet = np.linalg.slogdet(K)
    loglik = (n_obs / 2.0) * (logdet - np.trace(S @ K))
    n_edges = np.count_nonzero(np.abs(K[np.triu_indices(p, 1)]) > 1e-10)
    return float(-2.0 * loglik + n_edges * np.log(n_obs) + 4.0 * n_edges * gamma * np.log(p))


def partial_correlations(K: np.ndarray) -> np.ndarray:
    d = np.sqrt(np.diag(K))
    P = -K / np.outer(d, d)
    P[np.abs(P) < 1e-10] = 0.0
    np.fill_diagonal(P, 0.0)
    return P


def ebic_glasso(S: np.ndarray,
                n_obs: int,
                gamma: float,
                n_lambda: int,
                lambda_min_ratio: float) -> tuple[np.ndarray, float, float, int]:
    """
    Fit the graphical lasso along the lambda path and keep the EBIC minimum.

    Returns:
        (precision matrix, lambda, EBIC, number of lambdas that failed)

    Raises:
        ModelFitError: no lambda on the path converged.
    """
    best = None
    n_failed = 0
    for lam in lambda_path(S, n_lambda, lambda_min_ratio):
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            try:
                _, K = graphical_lasso(S, alpha=lam, max_iter=200)
            except (FloatingPointError, ConvergenceWarning, np.linalg.LinAlgError):
                n_failed += 1
                continue
        score = ebic(S, K, n_obs, gamma)
        if best is None or score < best[2]:
            best = (K, float(lam), score)

    if best is None:
        raise ModelFitError(f"Graphical lasso failed for all {n_lambda} penalties")
    return best[0], best[1], best[2], n_failed


# ===================================================================
# 2. COMMUNITIES
# ===================================================================

def detect_communities(network: pd.DataFrame, seed: int) -> pd.Series:
    """
    Louvain communities on absolute edge weights.

    Communities are numbered 1..k in order of their first item; items with
    no edges get NaN.
    """
    items = list(network.index)
    W = network.to_numpy()
    G = nx.Graph()
    G.add_nodes_from(items)
    for i, j in zip(*np.triu_indices(len(items), 1)):
        if W[i, j] != 0:
            G.add_edge(items[i], items[j], weight=abs(W[i, j]))

    dims = pd.Series(np.nan, index=items, name="dimension")
    if G.number_of_edges() == 0:
        return dims

    pos = {item: k for k, item in enumerate(items)}
    communities = nx.community.louvain_communities(G, weight="weight", seed=seed)
    communities = [c for c in communities if any(G.degree(n) > 0 for n in c)]
    communities.sort(key=lambda c: min(pos[n] for n in c))
    for label, members in enumerate(communities, start=1):
        for item in members:
            if G.degree(item) > 0:
                dims[item] = label
    return dims


# ===================================================================
# 3. EGA
# ===================================================================

def _ega_settings(gamma=None, n_lambda=None, lambda_min_ratio=None, community_seed=None) -> dict:
    e = cfg["ega"]
    return {
        "gamma": e["gamma"] if gamma is None else gamma,
        "n_lambda": e["n_lambda"] if n_lambda is None else n_lambda,
        "lambda_min_ratio": e["lambda_min_ratio"] if lambda_min_ratio is None else lambda_min_ratio,
        "community_seed": e["community_seed"] if community_seed is None else community_seed,
    }


def _fit_ega(corr_result: CorrelationResult, n_obs: int, settings: dict) -> EGAResult:
    S = np.array(corr_result.matrix, dtype=float)
    K, lam, score, n_failed = ebic_glasso(
        S, n_obs, settings["gamma"], settings["n_lambda"], settings["lambda_min_ratio"]
    )
    items = list(corr_result.items)
    network = pd.DataFrame(partial_correlations(K), index=items, columns=items)
    dims = detect_communities(network, settings["community_seed"])
    return EGAResult(
        network=network,
        dimensions=dims,
        n_dim=int(dims.nunique(dropna=True)),
        lambda_=lam,
        ebic=score,
        gamma=settings["gamma"],
        n_obs=n_obs,
        n_lambda_skipped=n_failed,
    )


def fit_ega(
    data: CorrelationResult | pd.DataFrame,
    n_obs: int | None = None,
    gamma: float | None = None,
    n_lambda: int | None = None,
    lambda_min_ratio: float | None = None,
    community_seed: int | None = None,
) -> EGAResult:
    """
    Exploratory graph analysis.

    Args:
        data: Shared polychoric matrix, or an item table from which one is computed.
        n_obs: Sample size for EBIC (default: the matrix's n_obs).
        gamma: EBIC hyperparameter (default: config ega.gamma).
        n_lambda, lambda_min_ratio: Penalty path (default: config).
        community_seed: Louvain seed (default: config ega.community_seed).

    Returns:
        EGAResult.

    Raises:
        ModelFitError: no penalty on the path converged.
    """
    if isinstance(data, pd.DataFrame):
        data = compute_polychoric_matrix(data, verbose=False)
    if n_obs is None:
        n_obs = data.n_obs

    settings = _ega_settings(gamma, n_lambda, lambda_min_ratio, community_seed)
    result = _fit_ega(data, n_obs, settings)
    if result.n_lambda_skipped:
        warnings.warn(
            f"Graphical lasso did not converge for {result.n_lambda_skipped} of "
            f"{settings['n_lambda']} penalties; they were skipped."
        )
    return result


# ===================================================================
# 4. BOOTSTRAP EGA
# ===================================================================

def _boot_replicate(task: tuple) -> tuple[np.ndarray, int, bool]:
    """
    One resample: polychoric matrix, EGA, dimension labels in column order.

    A resample that leaves an item constant, or where no penalty converges,
    is returned as failed with all-NaN labels.
    """
    values, columns, child_seed, settings, corr_options = task
    rng = np.random.default_rng(child_seed)
    n = values.shape[0]
    sample = pd.DataFrame(values[rng.integers(0, n, size=n)], columns=columns)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            corr = compute_polychoric_matrix(sample, verbose=False, **corr_options)
            result = _fit_ega(corr, n, settings)
        except (DegenerateDataError, ModelFitError):
            return np.full(len(columns), np.nan), len(caught), True
    return result.dimensions.to_numpy(dtype=float), len(caught), False


def align_labels(replicate: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """
    Relabel a replicate's dimensions to best match the reference structure
    (Hungarian assignment on item overlap). Unmatched labels become negative.
    """
    rep_labels = np.unique(replicate[~np.isnan(replicate)])
    ref_labels = np.unique(reference[~np.isnan(reference)])
    aligned = np.full_like(replicate, np.nan)
    if len(rep_labels) == 0:
        return aligned

    overlap = np.zeros((len(rep_labels), len(ref_labels)))
    for a, r in enumerate(rep_labels):
        for b, e in enumerate(ref_labels):
            overlap[a, b] = np.sum((replicate == r) & (reference == e))

    mapping = {r: -(k + 1.0) for k, r in enumerate(rep_labels)}
    if len(ref_labels):
        rows, cols = linear_sum_assignment(-overlap)
        for a, b in zip(rows, cols):
            mapping[rep_labels[a]] = ref_labels[b]

    for r, target in mapping.items():
        aligned[replicate == r] = target
    return aligned


def boot_ega(
    items_df: pd.DataFrame,
    n_boot: int | None = None,
    seed: int | None = None,
    n_jobs: int | None = None,
    empirical: EGAResult | None = None,
    gamma: float | None = None,
    n_lambda: int | None = None,
    lambda_min_ratio: float | None = None,
    community_seed: int | None = None,
) -> BootEGAResult:
    """
    Bootstrap stability of the EGA structure.

    Args:
        items_df: Item table to resample (rows with replacement).
        n_boot: Number of replicates (default: config ega.n_boot).
        seed: Root seed; replicate b uses SeedSequence(seed).spawn(n_boot)[b].
        n_jobs: Worker processes; 1 runs in-process (default: config ega.n_jobs).
        empirical: EGA of the full items_df (computed when not given).

    Returns:
        BootEGAResult. Identical for identical seed and n_boot regardless
        of n_jobs. Failed replicates are counted in n_failed and left out
        of the frequency, co-occurrence and stability denominators.

    Raises:
        ModelFitError: every replicate failed.
    """
    e = cfg["ega"]
    if n_boot is None:
        n_boot = e["n_boot"]
    if seed is None:
        seed = e["boot_seed"]
    if n_jobs is None:
        n_jobs = e["n_jobs"]
    if n_boot < 1:
        raise ValueError(f"n_boot must be positive, got {n_boot}")

    settings = _ega_settings(gamma, n_lambda, lambda_min_ratio, community_seed)
    corr_options = {
        "smooth": cfg["correlation"]["smooth"],
        "correct": cfg["correlation"]["zero_cell_correction"],
    }
    if empirical is None:
        empirical = _fit_ega(compute_polychoric_matrix(items_df, verbose=False),
                             len(items_df), settings)

    columns = list(items_df.columns)
    values = items_df.to_numpy(dtype=int)
    children = np.random.SeedSequence(seed).spawn(n_boot)
    tasks = [(values, columns, child, settings, corr_options) for child in children]

    print(f"[bootEGA] {n_boot} replicates, seed={seed}, workers={n_jobs}")
    if n_jobs == 1:
        outputs = [_boot_replicate(t) for t in tasks]
    else:
        with ProcessPoolExecutor(max_workers=n_jobs) as pool:
            outputs = list(pool.map(_boot_replicate, tasks, chunksize=max(1, n_boot // (4 * n_jobs))))

    failed = np.array([bad for _, _, bad in outputs], dtype=bool)
    labels = np.vstack([dims for dims, _, _ in outputs])[~failed]
    n_warn = int(sum(w for _, w, _ in outputs))
    n_failed = int(failed.sum())
    if n_warn:
        warnings.warn(f"{n_warn} warning(s) raised across bootstrap replicates "
                      f"(smoothing or skipped penalties).")
    if n_failed == n_boot:
        raise ModelFitError(f"All {n_boot} bootstrap replicates failed")
    if n_failed:
        warnings.warn(f"{n_failed} of {n_boot} bootstrap replicates failed (constant item "
                      f"in the resample or no converged penalty) and were excluded.")

    return _reduce_replicates(empirical, labels, columns, n_boot, seed, n_warn, n_failed)


def _reduce_replicates(empirical: EGAResult,
                       labels: np.ndarray,
                       columns: list,
                       n_boot: int,
                       seed: int,
                       n_warn: int,
                       n_failed: int = 0) -> BootEGAResult:
    """Summaries over the valid replicates; labels holds only those rows."""
    n_valid = labels.shape[0]
    n_dims = np.array([len(np.unique(row[~np.isnan(row)])) for row in labels])

    counts = pd.Series(n_dims).value_counts().sort_index()
    frequency = pd.DataFrame({
        "n_dim": counts.index.astype(int),
        "count": counts.values,
        "frequency": counts.values / n_valid,
    })

    p = labels.shape[1]
    co = np.zeros((p, p))
    for row in labels:
        assigned = ~np.isnan(row)
        same = (row[:, None] == row[None, :]) & assigned[:, None] & assigned[None, :]
        co += same
    cooccurrence = pd.DataFrame(co / n_valid, index=columns, columns=columns)

    reference = empirical.dimensions.reindex(columns).to_numpy(dtype=float)
    hits = np.zeros(p)
    for row in labels:
        hits += align_labels(row, reference) == reference
    stability = pd.Series(hits / n_valid, index=columns, name="stability")
    stability[np.isnan(reference)] = np.nan

    return BootEGAResult(
        empirical=empirical,
        n_boot=n_boot,
        seed=seed,
        replicate_n_dim=n_dims,
        frequency=frequency,
        median_dim=float(np.median(n_dims)),
        mean_dim=float(np.mean(n_dims)),
        cooccurrence=cooccurrence,
        item_stability=stability,
        n_replicate_warnings=n_warn,
        n_failed=n_failed,
    )


# ===================================================================
# 5. REPORTING
# ===================================================================

def print_ega_summary(result: EGAResult, boot: BootEGAResult | None = None) -> None:
    """Print the EGA structure and, if given, its bootstrap stability."""
    print("=" * 70)
    print(f"EXPLORATORY GRAPH ANALYSIS (EBICglasso, gamma={result.gamma})")
    print("=" * 70)
    print(f"Dimensions: {result.n_dim}   edges: {result.n_edges}   lambda: {result.lambda_:.4f}")
    print(result.dimensions.to_frame().T.to_string())

    if boot is not None:
        print(f"\nbootEGA ({boot.n_boot} replicates): median {boot.median_dim:.0f}, "
              f"mean {boot.mean_dim:.2f} dimensions")
        if boot.n_failed:
            print(f"  [WARN] {boot.n_failed} replicate(s) failed and were excluded")
        print(boot.frequency.to_string(index=False, float_format=lambda v: f"{v:.3f}"))
        print("\nItem stability:")
        print(boot.item_stability.round(3).to_frame().T.to_string())
    print()
