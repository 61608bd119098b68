# src/outbreak_incidence/series/intervals.py
"""
Time intervals used to bin case dates.

An interval is either a fixed number of days (``7``, ``"2 weeks"``) or a
calendar unit whose length in days varies (``"month"``, ``"quarter"``,
``"year"``). Bin edges are always computed from a single anchor date, so
month bins starting on the 31st stay on the last day of each month instead of
drifting.
"""

import math
import numbers
import re
from dataclasses import dataclass
from typing import Union

import pandas as pd

from ..errors import InvalidInput

MONDAY = 0
SUNDAY = 6

# name -> (unit, week_start)
_UNIT_ALIASES = {
    "d": ("day", None),
    "day": ("day", None),
    "days": ("day", None),
    "daily": ("day", None),
    "w": ("week", MONDAY),
    "week": ("week", MONDAY),
    "weeks": ("week", MONDAY),
    "weekly": ("week", MONDAY),
    "isoweek": ("week", MONDAY),
    "isoweeks": ("week", MONDAY),
    "epiweek": ("week", SUNDAY),
    "epiweeks": ("week", SUNDAY),
    "month": ("month", None),
    "months": ("month", None),
    "monthly": ("month", None),
    "quarter": ("quarter", None),
    "quarters": ("quarter", None),
    "quarterly": ("quarter", None),
    "year": ("year", None),
    "years": ("year", None),
    "yearly": ("year", None),
    "annual": ("year", None),
}

_INTERVAL_RE = re.compile(r"^\s*(\d+)?\s*([a-z]+)\s*$")


@dataclass(frozen=True)
class Interval:
    n: int
    unit: str = "day"
    week_start: int = MONDAY

    @property
    def is_fixed(self) -> bool:
        """True when every bin has the same length in days."""
        return self.unit in ("day", "week")

    @property
    def days(self) -> int:
        if self.unit == "day":
            return self.n
        if self.unit == "week":
            return 7 * self.n
        raise InvalidInput(f"Interval '{self}' has no fixed length in days")

    def offset(self, k: int):
        """Offset covering k intervals."""
        if self.is_fixed:
            return pd.Timedelta(days=self.days * k)
        if self.unit == "month":
            return pd.DateOffset(months=self.n * k)
        if self.unit == "quarter":
            return pd.DateOffset(months=3 * self.n * k)
        return pd.DateOffset(years=self.n * k)

    def shift(self, anchor: pd.Timestamp, k: int) -> pd.Timestamp:
        return anchor + self.offset(k)

    def floor(self, ts: pd.Timestamp) -> pd.Timestamp:
        """Snap a date back to the start of its calendar unit."""
        ts = pd.Timestamp(ts).normalize()
        if self.unit == "week":
            return ts - pd.Timedelta(days=(ts.weekday() - self.week_start) % 7)
        if self.unit == "month":
            return ts.replace(day=1)
        if self.unit == "quarter":
            return ts.replace(month=3 * ((ts.month - 1) // 3) + 1, day=1)
        if self.unit == "year":
            return ts.replace(month=1, day=1)
        return ts

    def edges(self, start: pd.Timestamp, last: pd.Timestamp) -> pd.DatetimeIndex:
        """Bin edges from ``start`` until the bin holding ``last`` is closed.

        The final bin is padded to a full interval, so the last edge may lie
        after ``last``.
        """
        start = pd.Timestamp(start)
        last = pd.Timestamp(last)
        if self.is_fixed:
            n_bins = (last - start).days // self.days + 1
        else:
            n_bins = 1
            while self.shift(start, n_bins) <= last:
                n_bins += 1
        return pd.DatetimeIndex([self.shift(start, k) for k in range(n_bins + 1)])

    def __str__(self):
        unit = self.unit if self.n == 1 else f"{self.unit}s"
        if self.unit == "week" and self.week_start == SUNDAY:
            unit = "epiweek" if self.n == 1 else "epiweeks"
        return f"{self.n} {unit}"


def parse_interval(value: Union[int, float, str, Interval]) -> Interval:
    """Turn a user supplied interval into an Interval.

    Accepts a positive whole number of days, a unit name such as ``"week"`` or
    ``"epiweek"``, a multiple such as ``"2 weeks"``, or an Interval.

    Raises:
        InvalidInput: for non-positive, fractional or unknown intervals.
    """
    if isinstance(value, Interval):
        return value

    if isinstance(value, bool):
        raise InvalidInput(f"Invalid interval: {value!r}")

    if isinstance(value, numbers.Integral):
        if value <= 0:
            raise InvalidInput(f"interval must be > 0, got {value}")
        return Interval(int(value), "day")

    if isinstance(value, numbers.Real):
        if not math.isfinite(value) or value <= 0:
            raise InvalidInput(f"interval must be > 0, got {value}")
        if float(value) != int(value):
            raise InvalidInput(f"interval must be a whole number of days, got {value}")
        return Interval(int(value), "day")

    if isinstance(value, str):
        m = _INTERVAL_RE.match(value.lower())
        if m is None or m.group(2) not in _UNIT_ALIASES:
            raise InvalidInput(f"Unknown interval: {value!r}")
        n = int(m.group(1)) if m.group(1) else 1
        if n <= 0:
            raise InvalidInput(f"interval must be > 0, got {value!r}")
        unit, week_start = _UNIT_ALIASES[m.group(2)]
        return Interval(n, unit, MONDAY if week_start is None else week_start)

    raise InvalidInput(f"Invalid interval: {value!r}")
