"""
Evaluation Engine
=================

Responsibility:
- Metric capability (name, scoring function, optimization direction).
- Stateless (workflow, candidate, fold) fit-and-score unit.
- Explicit failure markers instead of exceptions for failed fits.
"""

from .metrics import Metric, MetricSet, BUILTIN_METRICS, MINIMIZE, MAXIMIZE
from .evaluator import Evaluator, FitFailure, is_failure

__all__ = [
    'Metric',
    'MetricSet',
    'BUILTIN_METRICS',
    'MINIMIZE',
    'MAXIMIZE',
    'Evaluator',
    'FitFailure',
    'is_failure',
]
