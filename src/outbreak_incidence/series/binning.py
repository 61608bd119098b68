# src/outbreak_incidence/series/binning.py
"""
Bin a line list of case dates into an IncidenceSeries.

Each date is coerced on its own, so a single malformed entry never aborts the
binning: it is counted in ``n_missing`` and logged instead.
"""

import logging
import numbers
from enum import Enum
from typing import Hashable, Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import InvalidInput
from .incidence_series import DEFAULT_GROUP, NA_GROUP, IncidenceSeries
from .intervals import parse_interval

logger = logging.getLogger(__name__)


class NAPolicy(Enum):
    """What to do with cases whose group label is missing."""
    RETAIN_AS_GROUP = "retain"
    EXCLUDE = "exclude"


def _coerce_date(value) -> pd.Timestamp:
    """Return a day-resolution Timestamp, or NaT when ``value`` is not a date."""
    if value is None or isinstance(value, (bool, numbers.Number)):
        return pd.NaT
    try:
        ts = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return pd.NaT
    if not isinstance(ts, pd.Timestamp) or pd.isna(ts):
        return pd.NaT
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts.normalize()


def _is_missing_label(label) -> bool:
    if label is None:
        return True
    if isinstance(label, str):
        return False
    try:
        return bool(pd.isna(label))
    except (TypeError, ValueError):
        return False


def _parse_bound(value, name: str) -> Optional[pd.Timestamp]:
    if value is None:
        return None
    ts = _coerce_date(value)
    if pd.isna(ts):
        raise InvalidInput(f"{name} is not a valid date: {value!r}")
    return ts


def incidence(
    dates: Iterable,
    interval=1,
    groups: Optional[Sequence[Hashable]] = None,
    na_as_group: bool = True,
    first_date=None,
    last_date=None,
    standard: bool = True,
    na_policy: Optional[NAPolicy] = None,
) -> IncidenceSeries:
    """Count cases per time interval, optionally split by group.

    Args:
        dates: case dates; anything pandas can parse as a date. Missing or
            unparseable entries are dropped and counted in ``n_missing``.
        interval: whole number of days, or a unit name ("week", "epiweek",
            "month", "quarter", "year", "2 weeks"...).
        groups: optional group label per date.
        na_as_group: keep cases with a missing group as an "NA" group. Ignored
            when ``na_policy`` is given.
        first_date, last_date: optional window; dates outside are dropped and
            counted in ``n_excluded``.
        standard: snap the first bin of a calendar interval to the start of its
            unit (Monday for weeks, Sunday for epiweeks, 1st of the month...).
        na_policy: explicit NAPolicy, overrides ``na_as_group``.

    Returns:
        IncidenceSeries covering every bin from the first date to the bin that
        holds the last date. The last bin always spans a full interval.

    Raises:
        InvalidInput: empty input, all dates missing, bad interval, groups of
            the wrong length, or nothing left to count after exclusions.
    """
    dates = list(dates)
    if not dates:
        raise InvalidInput("No dates supplied")

    interval = parse_interval(interval)

    if groups is not None:
        groups = list(groups)
        if len(groups) != len(dates):
            raise InvalidInput(
                f"groups has {len(groups)} entries but dates has {len(dates)}"
            )

    if na_policy is None:
        na_policy = NAPolicy.RETAIN_AS_GROUP if na_as_group else NAPolicy.EXCLUDE
    else:
        na_policy = NAPolicy(na_policy)

    parsed = pd.DatetimeIndex([_coerce_date(d) for d in dates])
    keep = ~np.asarray(parsed.isna())
    n_missing = int((~keep).sum())
    if n_missing == len(dates):
        raise InvalidInput("All dates are missing or invalid")
    if n_missing:
        logger.warning("%d of %d dates missing or invalid; not counted", n_missing, len(dates))

    n_excluded = 0

    if groups is None:
        labels = [DEFAULT_GROUP] * len(dates)
    else:
        na_mask = np.array([_is_missing_label(g) for g in groups], dtype=bool)
        labels = [NA_GROUP if na else g for g, na in zip(groups, na_mask)]
        if na_policy is NAPolicy.EXCLUDE:
            dropped = int((keep & na_mask).sum())
            keep &= ~na_mask
            n_excluded += dropped
            if dropped:
                logger.warning("%d cases with a missing group excluded", dropped)

    first = _parse_bound(first_date, "first_date")
    last = _parse_bound(last_date, "last_date")
    if first is not None and last is not None and first > last:
        raise InvalidInput(f"first_date ({first.date()}) is after last_date ({last.date()})")

    outside = np.zeros(len(dates), dtype=bool)
    if first is not None:
        outside |= keep & np.asarray(parsed < first)
    if last is not None:
        outside |= keep & np.asarray(parsed > last)
    if outside.any():
        n_excluded += int(outside.sum())
        keep &= ~outside
        logger.info("%d cases outside [%s, %s] excluded", int(outside.sum()), first, last)

    if not keep.any():
        raise InvalidInput("No dates left to count after exclusions")

    kept_dates = parsed[keep]
    kept_labels = [lab for lab, k in zip(labels, keep) if k]

    start = first if first is not None else kept_dates.min()
    if standard:
        start = interval.floor(start)
    end = last if last is not None else kept_dates.max()
    edges = interval.edges(start, end)

    try:
        group_order = list(dict.fromkeys(kept_labels))
    except TypeError:
        raise InvalidInput("Group labels must be hashable") from None
    group_pos = {g: i for i, g in enumerate(group_order)}

    bin_idx = edges.searchsorted(kept_dates, side="right") - 1
    group_idx = np.array([group_pos[lab] for lab in kept_labels], dtype=int)

    counts = np.zeros((len(edges) - 1, len(group_order)), dtype=np.int64)
    np.add.at(counts, (bin_idx, group_idx), 1)

    logger.info(
        "Binned %d cases into %d bins of %s (%d groups)",
        int(keep.sum()), counts.shape[0], interval, len(group_order),
    )

    return IncidenceSeries(
        starts=edges[:-1],
        ends=edges[1:],
        groups=tuple(group_order),
        counts=counts,
        interval=interval,
        n_missing=n_missing,
        n_excluded=n_excluded,
    )


# Name used by callers that think of this step as binning
bin_dates = incidence


def as_incidence(counts, first_date, interval=1, groups: Optional[Sequence[Hashable]] = None) -> IncidenceSeries:
    """Build a regular series from counts that are already aggregated.

    ``counts`` is a vector (one group) or a (bins x groups) matrix; the first
    bin starts on ``first_date``.
    """
    interval = parse_interval(interval)
    start = _parse_bound(first_date, "first_date")
    if start is None:
        raise InvalidInput("first_date is required")

    arr = np.asarray(counts, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2 or arr.size == 0:
        raise InvalidInput("counts must be a non-empty vector or matrix")
    if not np.all(np.isfinite(arr)) or np.any(arr < 0) or np.any(arr != np.round(arr)):
        raise InvalidInput("counts must be non-negative whole numbers")

    if groups is None:
        if arr.shape[1] != 1:
            raise InvalidInput("groups are required when counts has several columns")
        groups = (DEFAULT_GROUP,)

    edges = pd.DatetimeIndex([interval.shift(start, k) for k in range(arr.shape[0] + 1)])
    return IncidenceSeries(
        starts=edges[:-1],
        ends=edges[1:],
        groups=tuple(groups),
        counts=arr.astype(np.int64),
        interval=interval,
    )
