"""
Tuners Module
=============

Responsibility:
- Interchangeable tuning strategies applied to a single workflow:
  full grid evaluation and racing with interim elimination.
"""

from .tuners import Tuner, GridTuner, RacingTuner, TUNERS, get_tuner

__all__ = ['Tuner', 'GridTuner', 'RacingTuner', 'TUNERS', 'get_tuner']
