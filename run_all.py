"""
run_all.py -- One-command reproducibility pipeline
=====================================================
Regenerates ALL tables, figures, the validation report, and metadata.

Usage:
    python run_all.py

Phases executed in order:
  1. Validation pipeline (run_analysis.py)
  2. Metadata (package versions, config hash, seeds, study design)
"""

import subprocess
import sys
import json
import hashlib
import platform
import importlib.metadata
from datetime import datetime

from scale_validation.config import cfg, STUDY, get_output_dir, PROJECT_ROOT


def run_script(script_name: str) -> bool:
    """Run a Python script and return True if it succeeded."""
    print(f"\n{'='*70}")
    print(f"  RUNNING: {script_name}")
    print(f"{'='*70}\n")
    result = subprocess.run(
        [sys.executable, script_name],
        cwd=str(PROJECT_ROOT),
    )
    if result.returncode != 0:
        print(f"\n  [FAIL] {script_name} exited with code {result.returncode}")
        return False
    print(f"\n  [OK] {script_name} completed successfully")
    return True


def generate_metadata():
    """Generate run_metadata.json with reproducibility info."""
    reports_dir = get_output_dir("reports")

    # Package versions
    packages = [
        "pandas", "numpy", "scipy", "scikit-learn", "statsmodels", "factor_analyzer",
        "semopy", "networkx", "graphviz", "matplotlib", "seaborn", "PyYAML",
    ]
    versions = {}
    for pkg in packages:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "not installed"

    # Config hash
    config_path = PROJECT_ROOT / "configs" / "default.yaml"
    config_hash = hashlib.md5(config_path.read_bytes()).hexdigest()

    metadata = {
        "timestamp": datetime.now().isoformat(),
        "python_version": platform.python_version(),
        "platform": platform.platform(),
        "seeds": {
            "split": cfg["split"]["random_seed"],
            "parallel_analysis": cfg["factor_retention"]["random_seed"],
            "community_detection": cfg["ega"]["community_seed"],
            "bootstrap": cfg["ega"]["boot_seed"],
        },
        "n_boot": cfg["ega"]["n_boot"],
        "config_hash_md5": config_hash,
        "study": {
            "name": STUDY.NAME,
            "n_items": STUDY.N_ITEMS,
            "n_factors": STUDY.N_FACTORS,
            "factor_structure": cfg["factor_structure"],
            "cfa_estimator": cfg["cfa"]["estimator"],
        },
        "package_versions": versions,
    }

    meta_path = reports_dir / "run_metadata.json"
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=2, ensure_ascii=False)

    print(f"  -> {meta_path}")
    return metadata


# =============================================================
# MAIN
# =============================================================
if __name__ == "__main__":
    print("=" * 70)
    print("  SCALE VALIDATION -- FULL REPRODUCIBILITY PIPELINE")
    print("=" * 70)
    print(f"  Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    if not run_script("run_analysis.py"):
        print("\n  PIPELINE HALTED at run_analysis.py")
        sys.exit(1)

    print(f"\n{'='*70}")
    print("  GENERATING METADATA")
    print(f"{'='*70}")

    generate_metadata()

    print(f"\n{'='*70}")
    print("  PIPELINE COMPLETE")
    print(f"  Finished: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"{'='*70}")
