"""
Workflow Module
===============

Responsibility:
- The Workflow record: id, preprocessor, model and parameter space.
- Per-workflow execution options with validation and layered overrides.
"""

from .workflow import Workflow
from .options import WorkflowOptions

__all__ = ['Workflow', 'WorkflowOptions']
