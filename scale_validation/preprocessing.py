"""
Preprocessing module for the scale validation study.
Random split of the cleaned item table into exploratory (EFA) and
confirmatory (CFA) halves.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass

from scale_validation.config import cfg


@dataclass(frozen=True)
class SampleSplit:
    """Two disjoint halves of the item table. Indices are row positions."""
    efa: pd.DataFrame
    cfa: pd.DataFrame
    efa_index: tuple
    cfa_index: tuple
    seed: int

    @property
    def n_efa(self) -> int:
        return len(self.efa_index)

    @property
    def n_cfa(self) -> int:
        return len(self.cfa_index)


def split_efa_cfa(items_df: pd.DataFrame,
                  random_state: int | None = None,
                  efa_fraction: float | None = None) -> SampleSplit:
    """
    Unstratified random split: floor(fraction * N) rows to EFA, the rest to CFA.

    Args:
        items_df: Cleaned item-only table.
        random_state: Seed (default: config split.random_seed).
        efa_fraction: Share assigned to EFA (default: config split.efa_fraction).

    Returns:
        SampleSplit. Same seed and same row count give the same partition.
    """
    if random_state is None:
        random_state = cfg["split"]["random_seed"]
    if efa_fraction is None:
        efa_fraction = cfg["split"]["efa_fraction"]
    if not 0 < efa_fraction < 1:
        raise ValueError(f"efa_fraction must be in (0, 1), got {efa_fraction}")

    n = len(items_df)
    n_efa = int(np.floor(efa_fraction * n))

    rng = np.random.default_rng(random_state)
    efa_pos = np.sort(rng.choice(n, size=n_efa, replace=False))
    in_efa = np.zeros(n, dtype=bool)
    in_efa[efa_pos] = True
    cfa_pos = np.flatnonzero(~in_efa)

    efa = items_df.iloc[efa_pos].reset_index(drop=True)
    cfa = items_df.iloc[cfa_pos].reset_index(drop=True)

    print(f"Split N={n:,}: EFA={len(efa):,}, CFA={len(cfa):,} (seed={random_state})")
    return SampleSplit(
        efa=efa,
        cfa=cfa,
        efa_index=tuple(int(i) for i in efa_pos),
        cfa_index=tuple(int(i) for i in cfa_pos),
        seed=random_state,
    )
