"""
Workflow Set Module
===================

Responsibility:
- Ordered, id-addressed collection of workflows (add, merge, cross).
- Per-entry execution options layered over common options.
- Set-wide evaluation with per-workflow failure isolation and two
  schedules (workflow by workflow, or one global queue per fold step).
- Read-only score, summary, ranking and status views.
"""

from .workflow_set import WorkflowSet, STATUS_COLUMNS

__all__ = ['WorkflowSet', 'STATUS_COLUMNS']
