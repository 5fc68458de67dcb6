import math
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from utils.exceptions import ResultStoreError

SCORE_COLUMNS = [
    'wflow_id', 'candidate_id', 'fold_id', 'fold_position',
    'metric', 'value', 'failed', 'error',
]
SUMMARY_COLUMNS = ['wflow_id', 'candidate_id', 'metric', 'mean', 'std_err', 'n']


@dataclass(frozen=True)
class Score:
    """One metric value of one candidate on one fold. Failed fits carry value=NaN."""
    wflow_id: str
    candidate_id: str
    fold_id: str
    fold_position: int
    metric: str
    value: float
    failed: bool = False
    error: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.wflow_id, self.candidate_id, self.fold_id, self.metric)


class ResultStore:
    """
    Append-only score table for one workflow run.

    Scores can only be added, never changed or removed; `freeze()` closes the
    store for good once the run is done.
    """

    def __init__(self, wflow_id: str):
        self.wflow_id = wflow_id
        self._scores: List[Score] = []
        self._keys = set()
        # (candidate_id, metric) -> {fold_position: value}
        self._values: Dict[tuple, Dict[int, float]] = {}
        # candidate_id -> fold positions with a failed fit
        self._failed_folds: Dict[str, set] = {}
        self._frozen = False

    # ------------------------------------------------------------------ #
    # Writes                                                             #
    # ------------------------------------------------------------------ #
    def append(self, score: Score) -> None:
        if self._frozen:
            raise ResultStoreError(f"[{self.wflow_id}] Result store is frozen; cannot add {score.key}.")
        if score.wflow_id != self.wflow_id:
            raise ResultStoreError(f"Score for '{score.wflow_id}' cannot be added to store '{self.wflow_id}'.")
        if score.key in self._keys:
            raise ResultStoreError(f"Duplicate score {score.key}.")
        self._keys.add(score.key)
        self._scores.append(score)
        if score.failed:
            self._failed_folds.setdefault(score.candidate_id, set()).add(score.fold_position)
        else:
            self._values.setdefault((score.candidate_id, score.metric), {})[score.fold_position] = score.value

    def extend(self, scores: Iterable[Score]) -> None:
        for score in scores:
            self.append(score)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------ #
    # Reads                                                              #
    # ------------------------------------------------------------------ #
    def values(self, candidate_id: str, metric: str) -> Dict[int, float]:
        """Non-missing values of one candidate keyed by fold position."""
        return dict(self._values.get((candidate_id, metric), {}))

    def failure_count(self, candidate_id: str) -> int:
        return len(self._failed_folds.get(candidate_id, ()))

    def scored_folds(self, candidate_id: str) -> List[int]:
        """Fold positions with at least one Score row (failed or not)."""
        return sorted({s.fold_position for s in self._scores if s.candidate_id == candidate_id})

    @property
    def scores(self) -> tuple:
        return tuple(self._scores)

    def __len__(self) -> int:
        return len(self._scores)

    def to_frame(self) -> pd.DataFrame:
        if not self._scores:
            return pd.DataFrame(columns=SCORE_COLUMNS)
        return pd.DataFrame([asdict(s) for s in self._scores], columns=SCORE_COLUMNS)

    def summarize(self, candidate_ids: Sequence[str], metrics: Sequence[str]) -> pd.DataFrame:
        """
        Mean, standard error and evaluated-fold count per (candidate, metric),
        computed from exactly the folds the candidate has non-missing scores for.
        Rows follow the given candidate order (generation order).
        """
        rows = []
        for candidate_id in candidate_ids:
            for metric in metrics:
                vals = np.array(list(self.values(candidate_id, metric).values()), dtype=float)
                n = int(vals.size)
                mean = float(vals.mean()) if n else math.nan
                std_err = float(vals.std(ddof=1) / math.sqrt(n)) if n > 1 else math.nan
                rows.append({
                    'wflow_id': self.wflow_id,
                    'candidate_id': candidate_id,
                    'metric': metric,
                    'mean': mean,
                    'std_err': std_err,
                    'n': n,
                })
        return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
