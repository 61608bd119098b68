# src/outbreak_incidence/series/operations.py
"""
Operations on an IncidenceSeries. None of them modify their input.

Functions:
- slice_bins(): keep a contiguous range of bins
- slice_groups(): keep some groups
- slice_series(): both of the above
- slice_by_date(): keep the bins overlapping a date window
- select_stride(): keep every n-th bin
- pool(): sum all groups into one
- cumulate(): cumulative counts
- to_table(): long or wide DataFrame
"""

import dataclasses
from typing import Hashable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..errors import InvalidInput
from .binning import _parse_bound
from .incidence_series import DEFAULT_GROUP, IncidenceSeries


def _derive(series: IncidenceSeries, **changes) -> IncidenceSeries:
    return dataclasses.replace(series, **changes)


def slice_bins(series: IncidenceSeries, start: Optional[int] = None, stop: Optional[int] = None) -> IncidenceSeries:
    """Bins ``[start, stop)``; zero-count bins are kept."""
    n = series.n_bins
    start = 0 if start is None else int(start)
    stop = n if stop is None else int(stop)
    if not 0 <= start < stop <= n:
        raise InvalidInput(f"Bin range [{start}, {stop}) is empty or outside [0, {n})")
    return _derive(
        series,
        starts=series.starts[start:stop],
        ends=series.ends[start:stop],
        counts=series.counts[start:stop],
    )


def slice_groups(series: IncidenceSeries, groups: Sequence[Hashable]) -> IncidenceSeries:
    """Keep ``groups``, in the order given."""
    if isinstance(groups, str) or not isinstance(groups, (list, tuple, pd.Index, np.ndarray)):
        groups = [groups]
    groups = list(groups)
    if not groups:
        raise InvalidInput("No groups selected")
    idx = [series.group_index(g) for g in groups]
    return _derive(series, groups=tuple(groups), counts=series.counts[:, idx])


def slice_series(
    series: IncidenceSeries,
    bin_range: Optional[Tuple[Optional[int], Optional[int]]] = None,
    groups: Optional[Sequence[Hashable]] = None,
) -> IncidenceSeries:
    """Restrict a series to a bin range and/or a subset of groups."""
    out = series
    if bin_range is not None:
        out = slice_bins(out, *bin_range)
    if groups is not None:
        out = slice_groups(out, groups)
    return out


def date_window_to_bins(series: IncidenceSeries, from_date=None, to_date=None) -> Tuple[int, int]:
    """Bin range ``[i, j)`` of every bin overlapping ``[from_date, to_date)``."""
    lo = _parse_bound(from_date, "from_date")
    hi = _parse_bound(to_date, "to_date")
    overlap = np.ones(series.n_bins, dtype=bool)
    if lo is not None:
        overlap &= np.asarray(series.ends > lo)
    if hi is not None:
        overlap &= np.asarray(series.starts < hi)
    hits = np.flatnonzero(overlap)
    if hits.size == 0:
        raise InvalidInput(f"No bin overlaps [{from_date}, {to_date})")
    return int(hits[0]), int(hits[-1]) + 1


def slice_by_date(series: IncidenceSeries, from_date=None, to_date=None) -> IncidenceSeries:
    """Keep every bin overlapping ``[from_date, to_date)``."""
    return slice_bins(series, *date_window_to_bins(series, from_date, to_date))


def select_stride(series: IncidenceSeries, step: int, offset: int = 0) -> IncidenceSeries:
    """Keep bins ``offset, offset + step, ...``.

    This is a selection, not a resampling: counts of the skipped bins are
    dropped. With step > 1 the result has gaps and is flagged irregular.
    """
    if int(step) != step or step < 1:
        raise InvalidInput(f"step must be a positive integer, got {step}")
    if not 0 <= offset < series.n_bins:
        raise InvalidInput(f"offset must be in [0, {series.n_bins}), got {offset}")
    step = int(step)
    sel = slice(offset, None, step)
    starts = series.starts[sel]
    ends = series.ends[sel]
    contiguous = bool(np.all(ends[:-1] == starts[1:]))
    return _derive(
        series,
        starts=starts,
        ends=ends,
        counts=series.counts[sel],
        regular=series.regular and contiguous,
    )


def pool(series: IncidenceSeries) -> IncidenceSeries:
    """Sum all groups into a single group."""
    return _derive(
        series,
        groups=(DEFAULT_GROUP,),
        counts=series.counts.sum(axis=1, keepdims=True),
    )


def cumulate(series: IncidenceSeries) -> IncidenceSeries:
    """Cumulative counts per group."""
    if series.cumulative:
        raise InvalidInput("Series is already cumulative")
    return _derive(series, counts=np.cumsum(series.counts, axis=0), cumulative=True)


def to_table(series: IncidenceSeries, wide: bool = False) -> pd.DataFrame:
    """Flatten a series.

    Long form has one row per (bin, group): bin_start, bin_end, group, count.
    Wide form has one row per bin and one count column per group.
    """
    if wide:
        df = pd.DataFrame(series.counts, columns=list(series.groups))
        df.insert(0, "bin_end", series.ends)
        df.insert(0, "bin_start", series.starts)
        return df

    n_bins, n_groups = series.counts.shape
    return pd.DataFrame({
        "bin_start": series.starts.repeat(n_groups),
        "bin_end": series.ends.repeat(n_groups),
        "group": list(series.groups) * n_bins,
        "count": series.counts.reshape(-1),
    })
