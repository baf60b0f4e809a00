"""
Configuration loader and study design constants for the scale validation study.

Usage:
    from scale_validation.config import cfg, set_global_seed, STUDY
    set_global_seed()           # call once at start of every script/notebook
    print(STUDY.N_ITEMS)        # 15
    print(cfg['data']['consent_column'])
"""

import yaml
import numpy as np
from pathlib import Path
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DEFAULT_CONFIG = _PROJECT_ROOT / "configs" / "default.yaml"


def load_config(path: Path = _DEFAULT_CONFIG) -> dict:
    """Load YAML config and return as dict."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


cfg = load_config()


def use_config(path: str | Path) -> dict:
    """
    Replace the active configuration in place with the YAML file at `path`.
    Modules holding a reference to `cfg` see the new values.
    """
    new_cfg = load_config(Path(path))
    cfg.clear()
    cfg.update(new_cfg)
    return cfg


# ---------------------------------------------------------------------------
# Study design constants (immutable, used in assertions & methodology text)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class StudyDesign:
    """Immutable design facts for the scale validation study."""
    NAME: str = "Psychometric properties of a 15-item self-report scale"
    N_ITEMS: int = 15
    N_FACTORS: int = 3
    ITEM_POSITIONS: tuple = (16, 30)   # 1-based, inclusive, in the raw table


STUDY = StudyDesign()


# ---------------------------------------------------------------------------
# Global seed management
# ---------------------------------------------------------------------------
def set_global_seed(seed: int | None = None) -> int:
    """
    Seed numpy's legacy global RNG (split seed from config if none given).

    Pipeline stages draw from their own seeded generators (split,
    parallel analysis, bootEGA child seeds, Louvain), so their results do
    not depend on this call. It only covers third-party code that falls
    back on the global RNG. Returns the seed used.
    """
    if seed is None:
        seed = cfg["split"]["random_seed"]
    np.random.seed(seed)
    return seed


# ---------------------------------------------------------------------------
# Item / factor helpers
# ---------------------------------------------------------------------------
def get_item_columns() -> list[str]:
    """Return the ordered list of scale item columns."""
    return list(cfg["items"])


def get_factor_structure() -> dict[str, list[str]]:
    """Return factor -> item list mapping of the confirmatory model."""
    structure = {f: list(items) for f, items in cfg["factor_structure"].items()}
    assigned = [item for items in structure.values() for item in items]
    if len(assigned) != len(set(assigned)):
        raise ValueError("Factor structure assigns at least one item to several factors.")
    unknown = set(assigned) - set(get_item_columns())
    if unknown:
        raise ValueError(f"Factor structure references unknown items: {sorted(unknown)}")
    return structure


def get_variable_labels() -> dict[str, str]:
    """Return raw_col -> readable label mapping."""
    return cfg.get("variable_labels", {})


# ---------------------------------------------------------------------------
# Output path helpers
# ---------------------------------------------------------------------------
def get_output_dir(kind: str = "reports") -> Path:
    """Return absolute path for an output directory, creating it if needed."""
    key_map = {
        "reports": "reports_dir",
        "figures": "figures_dir",
        "tables": "tables_dir",
    }
    rel = cfg["outputs"].get(key_map.get(kind, kind), kind)
    out = _PROJECT_ROOT / rel
    out.mkdir(parents=True, exist_ok=True)
    return out


# Convenience: project root path
PROJECT_ROOT = _PROJECT_ROOT
