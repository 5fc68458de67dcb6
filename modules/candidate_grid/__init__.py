"""
Candidate Grid Module
=====================

Responsibility:
- Generate the concrete hyperparameter assignments (candidates) of a workflow.
- Space-filling Latin hypercube designs, regular factorial grids and
  validated user-supplied grids.
- Deterministic output for a given seed.
"""

from .candidate_grid import Candidate, CandidateGrid, CandidateGridGenerator

__all__ = ['Candidate', 'CandidateGrid', 'CandidateGridGenerator']
