"""
Racing Module
=============

Responsibility:
- Fold-by-fold evaluation state machine for one workflow (RacingController).
- Pluggable interim elimination policies (paired t interval, blocked ANOVA).
- Monotonic elimination bookkeeping and the per-workflow result object.
"""

from .elimination_policy import (
    Comparison,
    EliminationPolicy,
    PairedTTestPolicy,
    AnovaPolicy,
    POLICIES,
    make_policy,
    mean_comparison,
)
from .elimination_state import EliminationRecord, EliminationState
from .workflow_result import WorkflowResult, STATUS_COMPLETED, STATUS_FAILED
from .racing_controller import RacingController, RaceState

__all__ = [
    'Comparison',
    'EliminationPolicy',
    'PairedTTestPolicy',
    'AnovaPolicy',
    'POLICIES',
    'make_policy',
    'mean_comparison',
    'EliminationRecord',
    'EliminationState',
    'WorkflowResult',
    'STATUS_COMPLETED',
    'STATUS_FAILED',
    'RacingController',
    'RaceState',
]
