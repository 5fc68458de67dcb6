"""
Result Store Module
===================

Responsibility:
- Append-only, freezable table of per-fold scores (one row per
  workflow/candidate/fold/metric).
- Derived summary (mean, standard error, evaluated folds) per candidate.
- Deterministic ranking in the metric's preferred direction.
"""

from .result_store import Score, ResultStore, SCORE_COLUMNS, SUMMARY_COLUMNS
from .ranking import rank_summary, best_per_workflow

__all__ = [
    'Score',
    'ResultStore',
    'SCORE_COLUMNS',
    'SUMMARY_COLUMNS',
    'rank_summary',
    'best_per_workflow',
]
