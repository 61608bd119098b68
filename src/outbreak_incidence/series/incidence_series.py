# src/outbreak_incidence/series/incidence_series.py
"""
The IncidenceSeries container: counts of cases per time bin and per group.
"""

from dataclasses import dataclass
from typing import Hashable, Tuple

import numpy as np
import pandas as pd

from ..errors import InvalidInput
from .intervals import Interval

# Label of the single group of an ungrouped or pooled series
DEFAULT_GROUP = "all"
# Label given to cases whose group is missing
NA_GROUP = "NA"


@dataclass(frozen=True, eq=False)
class IncidenceSeries:
    """Counts per bin (rows) and per group (columns).

    Bins are start-inclusive and end-exclusive. Instances are never modified;
    every operation in ``operations`` returns a new series.

    Attributes:
        starts, ends: bin boundaries
        groups: group labels, in first-seen order
        counts: int array of shape (n_bins, n_groups), read-only
        interval: the Interval the bins were built with
        regular: False once bins have gaps between them (stride selection)
        cumulative: True if counts are cumulative
        n_missing: inputs dropped because their date was missing or invalid
        n_excluded: valid dates dropped by configuration
    """

    starts: pd.DatetimeIndex
    ends: pd.DatetimeIndex
    groups: Tuple[Hashable, ...]
    counts: np.ndarray
    interval: Interval
    regular: bool = True
    cumulative: bool = False
    n_missing: int = 0
    n_excluded: int = 0

    def __post_init__(self):
        counts = np.array(self.counts, dtype=np.int64, copy=True)
        if counts.ndim == 1:
            counts = counts.reshape(-1, 1)
        starts = pd.DatetimeIndex(self.starts)
        ends = pd.DatetimeIndex(self.ends)
        groups = tuple(self.groups)

        if counts.shape != (len(starts), len(groups)):
            raise InvalidInput(
                f"counts shape {counts.shape} does not match "
                f"{len(starts)} bins x {len(groups)} groups"
            )
        if len(ends) != len(starts):
            raise InvalidInput("starts and ends must have the same length")
        if len(starts) == 0 or len(groups) == 0:
            raise InvalidInput("An incidence series needs at least one bin and one group")
        if len(set(groups)) != len(groups):
            raise InvalidInput(f"Duplicated group labels: {groups}")
        if not starts.is_monotonic_increasing or starts.has_duplicates:
            raise InvalidInput("Bin starts must be strictly increasing")
        if np.any(ends <= starts):
            raise InvalidInput("Every bin must end after it starts")
        if np.any(counts < 0):
            raise InvalidInput("Counts must be non-negative")

        counts.flags.writeable = False
        object.__setattr__(self, "counts", counts)
        object.__setattr__(self, "starts", starts)
        object.__setattr__(self, "ends", ends)
        object.__setattr__(self, "groups", groups)

    @property
    def n_bins(self) -> int:
        return self.counts.shape[0]

    @property
    def n_groups(self) -> int:
        return self.counts.shape[1]

    @property
    def is_grouped(self) -> bool:
        return self.groups != (DEFAULT_GROUP,)

    @property
    def total(self) -> int:
        """Number of cases in the series (last bin if cumulative)."""
        if self.cumulative:
            return int(self.counts[-1].sum())
        return int(self.counts.sum())

    @property
    def bin_widths(self) -> np.ndarray:
        """Width of each bin in days."""
        return ((self.ends - self.starts) / pd.Timedelta(days=1)).to_numpy(dtype=float)

    @property
    def timespan(self) -> int:
        """Days covered from the first bin start to the last bin end."""
        return int((self.ends[-1] - self.starts[0]).days)

    def dates(self, position: str = "start") -> pd.DatetimeIndex:
        """Bin dates at 'start', 'middle' or 'end'."""
        if position == "start":
            return self.starts
        if position == "end":
            return self.ends
        if position == "middle":
            return self.starts + (self.ends - self.starts) / 2
        raise InvalidInput(f"position must be 'start', 'middle' or 'end', got {position!r}")

    def days_since_start(self, position: str = "middle") -> np.ndarray:
        """Bin dates as days elapsed since the first bin start."""
        return ((self.dates(position) - self.starts[0]) / pd.Timedelta(days=1)).to_numpy(dtype=float)

    def group_index(self, group: Hashable) -> int:
        try:
            return self.groups.index(group)
        except ValueError:
            raise InvalidInput(f"Unknown group {group!r}; available: {list(self.groups)}") from None

    def counts_for(self, group: Hashable = None) -> np.ndarray:
        """Counts of one group; the only group when ``group`` is None."""
        if group is None:
            if self.n_groups != 1:
                raise InvalidInput(f"Series has several groups; pass one of {list(self.groups)}")
            return self.counts[:, 0]
        return self.counts[:, self.group_index(group)]

    def __str__(self):
        lines = [
            "<incidence series>",
            f"  cases: {self.total} ({'cumulative' if self.cumulative else 'incidence'})",
            f"  dates: {self.starts[0].date()} to {(self.ends[-1] - pd.Timedelta(days=1)).date()}",
            f"  interval: {self.interval}",
            f"  bins: {self.n_bins}{'' if self.regular else ' (irregular)'}",
            f"  timespan: {self.timespan} days",
        ]
        if self.is_grouped:
            lines.append(f"  groups: {self.n_groups} ({', '.join(str(g) for g in self.groups)})")
        if self.n_missing or self.n_excluded:
            lines.append(f"  dropped: {self.n_missing} missing, {self.n_excluded} excluded")
        return "\n".join(lines)
