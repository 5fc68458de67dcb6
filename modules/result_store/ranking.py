"""
Deterministic ranking of summary rows.

Rows are ordered by mean in the metric's preferred direction (missing means
last); ties fall back to workflow insertion order and then to candidate
generation order, so the result never depends on dict or hash iteration.
"""
import numpy as np
import pandas as pd

_SORT_KEYS = ['_key', 'wflow_order', 'candidate_index']


def _with_key(summary: pd.DataFrame, minimize: bool) -> pd.DataFrame:
    df = summary.copy()
    df['_key'] = df['mean'] if minimize else -df['mean']
    if 'wflow_order' not in df.columns:
        df['wflow_order'] = 0
    return df


def best_per_workflow(summary: pd.DataFrame, minimize: bool) -> pd.DataFrame:
    """Reduce a single-metric summary to the best candidate of every workflow."""
    df = _with_key(summary, minimize)
    df = df.sort_values(_SORT_KEYS, kind='mergesort', na_position='last')
    return df.groupby('wflow_id', sort=False).head(1).drop(columns=['_key'])


def rank_summary(summary: pd.DataFrame, minimize: bool, select_best: bool = False) -> pd.DataFrame:
    """
    Rank a single-metric summary table.

    Expects columns wflow_id, candidate_id, candidate_index and mean
    (wflow_order optional). Adds a 1-based, gap-free `rank` column.
    """
    if summary.empty:
        out = summary.copy()
        out['rank'] = pd.Series(dtype=int)
        return out

    df = best_per_workflow(summary, minimize) if select_best else summary
    df = _with_key(df, minimize)
    df = df.sort_values(_SORT_KEYS, kind='mergesort', na_position='last').drop(columns=['_key'])
    df['rank'] = np.arange(1, len(df) + 1)
    return df.reset_index(drop=True)
