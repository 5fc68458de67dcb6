from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from modules.candidate_grid import CandidateGrid
from modules.evaluation_engine import MetricSet
from modules.racing.elimination_state import EliminationRecord
from modules.result_store import ResultStore, SCORE_COLUMNS, best_per_workflow, rank_summary
from utils.exceptions import ConfigurationError

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

RACE_LOG_COLUMNS = [
    'wflow_id', 'fold_id', 'fold_number', 'n_active_before', 'n_active_after',
    'best_candidate', 'eliminated', 'fallback',
]


@dataclass
class WorkflowResult:
    """
    Read-only outcome of evaluating one workflow.

    A failed result carries the error message and an empty score table.
    """
    wflow_id: str
    tuner: str
    status: str = STATUS_COMPLETED
    metrics: Optional[MetricSet] = None
    candidates: Optional[CandidateGrid] = None
    store: Optional[ResultStore] = None
    eliminations: Dict[str, EliminationRecord] = field(default_factory=dict)
    race_log: List[Dict[str, Any]] = field(default_factory=list)
    n_folds: int = 0
    error: Optional[str] = None

    @classmethod
    def failed(cls, wflow_id: str, tuner: str, error: str) -> "WorkflowResult":
        return cls(wflow_id=wflow_id, tuner=tuner, status=STATUS_FAILED, error=error)

    @property
    def is_failed(self) -> bool:
        return self.status == STATUS_FAILED

    @property
    def surviving(self) -> List[str]:
        if self.candidates is None:
            return []
        return [c.id for c in self.candidates if c.id not in self.eliminations]

    # ------------------------------------------------------------------ #
    # Tables                                                             #
    # ------------------------------------------------------------------ #
    def scores(self) -> pd.DataFrame:
        """Score table with the elimination fold of each candidate (NaN if never eliminated)."""
        columns = SCORE_COLUMNS + ['elimination_fold']
        if self.is_failed or self.store is None:
            return pd.DataFrame(columns=columns)
        df = self.store.to_frame()
        elim = {cid: r.eliminated_after for cid, r in self.eliminations.items()}
        df['elimination_fold'] = df['candidate_id'].map(elim).astype(float)
        return df[columns]

    def summarize(self) -> pd.DataFrame:
        """
        Per (candidate, metric): mean, std_err, n plus candidate_index, status,
        elimination reason/fold and the candidate's parameters.
        """
        if self.is_failed or self.store is None:
            return pd.DataFrame()
        ids = [c.id for c in self.candidates]
        summary = self.store.summarize(ids, self.metrics.names)
        index = {c.id: c.index for c in self.candidates}
        params = {c.id: dict(c.params) for c in self.candidates}
        summary['candidate_index'] = summary['candidate_id'].map(index)
        summary['status'] = np.where(summary['candidate_id'].isin(list(self.eliminations)), 'eliminated', 'active')
        summary['elimination_reason'] = summary['candidate_id'].map(
            {cid: r.reason for cid, r in self.eliminations.items()})
        summary['elimination_fold'] = summary['candidate_id'].map(
            {cid: r.eliminated_after for cid, r in self.eliminations.items()}).astype(float)
        summary['params'] = summary['candidate_id'].map(params)
        return summary

    def race_log_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.race_log, columns=RACE_LOG_COLUMNS)

    # ------------------------------------------------------------------ #
    # Selection                                                          #
    # ------------------------------------------------------------------ #
    def _metric(self, metric: Optional[str]):
        if self.is_failed:
            raise ConfigurationError(f"[{self.wflow_id}] Workflow failed: {self.error}")
        return self.metrics.get(metric) if metric else self.metrics.primary

    def show_best(self, metric: Optional[str] = None, n: int = 5) -> pd.DataFrame:
        """Top-n surviving candidates for one metric."""
        m = self._metric(metric)
        summary = self.summarize()
        rows = summary[(summary['metric'] == m.name) & (summary['status'] == 'active')]
        return rank_summary(rows, minimize=m.minimize).head(n)

    def select_best(self, metric: Optional[str] = None) -> Dict[str, Any]:
        """Parameters of the best surviving candidate (ties go to the first generated)."""
        m = self._metric(metric)
        summary = self.summarize()
        rows = summary[(summary['metric'] == m.name) & (summary['status'] == 'active')]
        best = best_per_workflow(rows, minimize=m.minimize).iloc[0]
        return {'candidate_id': best['candidate_id'], **best['params']}
