"""
Pytest Configuration and Shared Fixtures
=========================================

Synthetic ordinal survey data with a known three-factor structure.
"""

import pytest
import pandas as pd
import numpy as np
from pathlib import Path
import sys

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from scale_validation.correlation import compute_polychoric_matrix


STRUCTURE = {
    "F1": ["A1", "A2", "A3", "A4"],
    "F2": ["E1", "E2", "E3", "E4", "E5", "E6"],
    "F3": ["C1", "C2", "C3", "C4", "C5"],
}
ITEMS = [item for items in STRUCTURE.values() for item in items]
THRESHOLDS = [-1.5, -0.5, 0.5, 1.5]


def simulate_ordinal_items(n: int,
                           structure: dict = STRUCTURE,
                           loading: float = 0.7,
                           factor_corr: float = 0.3,
                           seed: int = 0) -> pd.DataFrame:
    """Five-category items generated from correlated normal factors."""
    rng = np.random.default_rng(seed)
    m = len(structure)
    phi = np.full((m, m), factor_corr)
    np.fill_diagonal(phi, 1.0)
    F = rng.multivariate_normal(np.zeros(m), phi, size=n)

    cols = {}
    for j, items in enumerate(structure.values()):
        for item in items:
            latent = loading * F[:, j] + np.sqrt(1 - loading ** 2) * rng.standard_normal(n)
            cols[item] = np.digitize(latent, THRESHOLDS) + 1
    return pd.DataFrame(cols)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return project root path."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def structure():
    return {f: list(items) for f, items in STRUCTURE.items()}


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def items_df():
    """400 respondents, loadings 0.7, factor correlations 0.3."""
    return simulate_ordinal_items(400, seed=11)


@pytest.fixture(scope="session")
def cfa_items_df():
    """494 respondents for the confirmatory model."""
    return simulate_ordinal_items(494, seed=123)


@pytest.fixture(scope="session")
def corr_result(items_df):
    """Shared polychoric matrix of items_df."""
    return compute_polychoric_matrix(items_df, verbose=False)


@pytest.fixture
def raw_participants():
    """Raw survey table: 14 columns of metadata/demographics, then the 15 items."""
    rng = np.random.default_rng(5)
    n = 60
    items = simulate_ordinal_items(n, seed=5)
    meta = pd.DataFrame({
        "id": np.arange(1, n + 1),
        "informed_consent": np.where(np.arange(n) % 10 == 0, "No", "Sí"),
        "sex": rng.choice(["Femenino", "Masculino"], size=n),
        "age": rng.integers(18, 40, size=n),
        "campus": rng.choice(["Lima", "Arequipa"], size=n),
        "modalidad": rng.choice(["Presencial", "Virtual"], size=n),
        "regime": rng.choice(["Regular", "Especial"], size=n),
        "field_OCDE": rng.choice(["Ciencias", "Humanidades", "Ingeniería"], size=n),
        "school": rng.choice(["S1", "S2"], size=n),
        "faculty": rng.choice(["Fac1", "Fac2"], size=n),
        "current_level": rng.integers(1, 6, size=n),
        "unders_and_accept_inst": rng.integers(1, 6, size=n),
        "unders_items": rng.integers(1, 6, size=n),
        "satisfac_instrument": rng.integers(1, 6, size=n),
        "email": [f"p{i}@example.org" for i in range(n)],
    })
    return pd.concat([meta, items], axis=1)
