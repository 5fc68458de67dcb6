"""
Resampling Module
=================

Responsibility:
- Hold the ordered, read-only train/test partitions (folds) of a run.
- Wrap any scikit-learn splitter into a plan shared by every workflow.
"""

from .resample_plan import Fold, Partition, ResamplePlan

__all__ = ['Fold', 'Partition', 'ResamplePlan']
