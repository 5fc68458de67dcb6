"""
Reporting Module
================

Responsibility:
- Persist the score, summary, ranking, status and race-log tables of an
  evaluated workflow set (Parquet, optional Excel copies).
- Export the best configuration of every workflow as JSON.
"""

from .reporting_engine import ReportingEngine

__all__ = ['ReportingEngine']
