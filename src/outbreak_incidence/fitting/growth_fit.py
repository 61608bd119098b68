# src/outbreak_incidence/fitting/growth_fit.py
"""
Log-linear growth models for incidence series.

The model is an ordinary least squares fit of

    log(count) = intercept + rate * x

where x is the number of days from the first bin start of the series to the
middle of each bin. ``rate`` is therefore a daily exponential growth (> 0) or
decay (< 0) rate, and ln(2)/|rate| the doubling or halving time in days.

Bins with a zero count cannot be log-transformed; they are left out of the
regression but kept in the predictions table so the fitted curve still covers
them.
"""

import logging
import math
import numbers
from dataclasses import dataclass
from typing import Dict, Hashable, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import t as student_t

from ..errors import InsufficientData, InvalidInput, ModelFitFailure
from ..series.incidence_series import IncidenceSeries
from ..series.intervals import Interval

logger = logging.getLogger(__name__)

LN2 = math.log(2.0)

GROWTH = "growth"
DECAY = "decay"
STABLE = "stable"


def _t_quantile(confidence: float, df: int) -> float:
    if df <= 0:
        return float("nan")
    return float(student_t.ppf(0.5 + confidence / 2.0, df))


def _check_confidence(confidence: float) -> float:
    confidence = float(confidence)
    if not 0.0 < confidence < 1.0:
        raise InvalidInput(f"confidence must be in (0, 1), got {confidence}")
    return confidence


def _interval_table(x, intercept, slope, n, x_mean, sxx, sigma, q) -> pd.DataFrame:
    """Back-transformed fit with confidence and prediction intervals at x."""
    x = np.asarray(x, dtype=float)
    yhat = intercept + slope * x
    leverage = 1.0 / n + (x - x_mean) ** 2 / sxx
    se_mean = sigma * np.sqrt(leverage)
    se_pred = sigma * np.sqrt(1.0 + leverage)
    return pd.DataFrame({
        "x": x,
        "fit": np.exp(yhat),
        "conf_lwr": np.exp(yhat - q * se_mean),
        "conf_upr": np.exp(yhat + q * se_mean),
        "lwr": np.exp(yhat - q * se_pred),
        "upr": np.exp(yhat + q * se_pred),
    })


def _growth_regime(rate: float, rate_conf: Tuple[float, float]):
    """Return (regime, doubling_time, halving_time, time_conf)."""
    lo, hi = rate_conf
    if rate > 0:
        if math.isnan(lo):
            conf = (float("nan"), float("nan"))
        else:
            conf = (LN2 / hi, LN2 / lo if lo > 0 else math.inf)
        return GROWTH, LN2 / rate, None, conf
    if rate < 0:
        if math.isnan(hi):
            conf = (float("nan"), float("nan"))
        else:
            conf = (LN2 / -lo, LN2 / -hi if hi < 0 else math.inf)
        return DECAY, None, LN2 / -rate, conf
    return STABLE, None, None, None


@dataclass(frozen=True, eq=False)
class FittedModel:
    """A log-linear model fitted to one group over one range of bins.

    Exactly one of ``doubling_time`` and ``halving_time`` is set, matching
    ``regime``; both are None for a flat (stable) fit. ``time_conf`` is the
    confidence interval of whichever one is set. ``predictions`` holds one row
    per bin of ``segment_range``, including bins with zero counts.
    """

    group: Hashable
    segment_range: Tuple[int, int]
    origin: pd.Timestamp
    intercept: float
    rate: float
    intercept_se: float
    rate_se: float
    n_points: int
    r_squared: float
    adj_r_squared: float
    confidence: float
    rate_conf: Tuple[float, float]
    regime: str
    doubling_time: Optional[float]
    halving_time: Optional[float]
    time_conf: Optional[Tuple[float, float]]
    predictions: pd.DataFrame
    interval: Interval
    regular: bool
    x_mean: float
    sxx: float
    sigma: float

    @property
    def df_resid(self) -> int:
        return self.n_points - 2

    @property
    def doubling_or_halving_time(self) -> Optional[float]:
        if self.regime == GROWTH:
            return self.doubling_time
        if self.regime == DECAY:
            return self.halving_time
        return None

    def predict(self, x) -> pd.DataFrame:
        """Fitted counts and intervals at ``x`` days from ``origin``."""
        q = _t_quantile(self.confidence, self.df_resid)
        return _interval_table(
            x, self.intercept, self.rate, self.n_points, self.x_mean, self.sxx, self.sigma, q
        )

    def project(self, n_bins: int) -> pd.DataFrame:
        """Forecast the ``n_bins`` bins following the fitted segment."""
        if not self.regular:
            raise InvalidInput("Cannot project a model fitted on an irregular series")
        if int(n_bins) != n_bins or n_bins < 1:
            raise InvalidInput(f"n_bins must be a positive integer, got {n_bins}")
        anchor = self.predictions["bin_end"].iloc[-1]
        starts = pd.DatetimeIndex([self.interval.shift(anchor, k) for k in range(int(n_bins))])
        ends = pd.DatetimeIndex([self.interval.shift(anchor, k + 1) for k in range(int(n_bins))])
        mids = starts + (ends - starts) / 2
        x = ((mids - self.origin) / pd.Timedelta(days=1)).to_numpy(dtype=float)
        out = self.predict(x)
        out.insert(0, "bin_end", ends)
        out.insert(0, "bin_start", starts)
        return out

    def summary(self) -> Dict[str, object]:
        return {
            "group": self.group,
            "bins": self.segment_range,
            "n_points": self.n_points,
            "regime": self.regime,
            "rate": self.rate,
            "rate_lwr": self.rate_conf[0],
            "rate_upr": self.rate_conf[1],
            "doubling_time": self.doubling_time,
            "halving_time": self.halving_time,
            "time_lwr": None if self.time_conf is None else self.time_conf[0],
            "time_upr": None if self.time_conf is None else self.time_conf[1],
            "r_squared": self.r_squared,
            "adj_r_squared": self.adj_r_squared,
        }


@dataclass(frozen=True)
class FitFailure:
    """Marks a group whose model could not be fitted."""
    group: Hashable
    segment_range: Tuple[int, int]
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)


GroupFit = Union[FittedModel, Dict[Hashable, Union[FittedModel, FitFailure]]]


def _normalise_range(bin_range, n_bins: int) -> Tuple[int, int]:
    if bin_range is None:
        return 0, n_bins
    i, j = bin_range
    i = 0 if i is None else int(i)
    j = n_bins if j is None else int(j)
    if not 0 <= i < j <= n_bins:
        raise InvalidInput(f"Bin range [{i}, {j}) is empty or outside [0, {n_bins})")
    return i, j


def fit_log_linear(
    series: IncidenceSeries,
    group: Optional[Hashable] = None,
    bin_range: Optional[Tuple[Optional[int], Optional[int]]] = None,
    confidence: float = 0.95,
) -> FittedModel:
    """Fit log(count) ~ time for one group over a contiguous range of bins.

    Raises:
        InvalidInput: bad range or confidence, or a cumulative series.
        InsufficientData: fewer than 2 bins with a non-zero count.
        ModelFitFailure: the regression is degenerate.
    """
    confidence = _check_confidence(confidence)
    if series.cumulative:
        raise InvalidInput("Log-linear models need incidence, not cumulative counts")

    counts = series.counts_for(group)
    label = series.groups[0] if group is None else group
    i, j = _normalise_range(bin_range, series.n_bins)

    x_all = series.days_since_start("middle")[i:j]
    c_all = counts[i:j]
    nonzero = c_all > 0
    n = int(nonzero.sum())
    if n < 2:
        raise InsufficientData(
            f"Group {label!r}: {n} non-zero bins in [{i}, {j}), at least 2 needed"
        )
    if n < c_all.size:
        logger.debug("Group %r: %d zero bins ignored for fitting", label, c_all.size - n)

    x = x_all[nonzero]
    y = np.log(c_all[nonzero].astype(float))

    x_mean = float(x.mean())
    dx = x - x_mean
    sxx = float(np.dot(dx, dx))
    if not np.isfinite(sxx) or sxx <= 0.0:
        raise ModelFitFailure(f"Group {label!r}: no variance in time, cannot fit")

    y_mean = float(y.mean())
    rate = float(np.dot(dx, y - y_mean) / sxx)
    intercept = y_mean - rate * x_mean
    if not (np.isfinite(rate) and np.isfinite(intercept)):
        raise ModelFitFailure(f"Group {label!r}: non-finite coefficients")

    resid = y - (intercept + rate * x)
    ssr = float(np.dot(resid, resid))
    sst = float(np.dot(y - y_mean, y - y_mean))
    df = n - 2

    if df > 0:
        sigma = math.sqrt(ssr / df)
        rate_se = sigma / math.sqrt(sxx)
        intercept_se = sigma * math.sqrt(1.0 / n + x_mean ** 2 / sxx)
    else:
        # Two points: the line is exact and there is nothing left to estimate error from
        sigma = rate_se = intercept_se = float("nan")

    r_squared = 1.0 - ssr / sst if sst > 0.0 else 1.0
    adj_r_squared = 1.0 - (1.0 - r_squared) * (n - 1) / df if df > 0 else float("nan")

    q = _t_quantile(confidence, df)
    rate_conf = (rate - q * rate_se, rate + q * rate_se)
    regime, doubling, halving, time_conf = _growth_regime(rate, rate_conf)

    predictions = _interval_table(x_all, intercept, rate, n, x_mean, sxx, sigma, q)
    predictions.insert(0, "count", c_all.astype(int))
    predictions.insert(0, "bin_end", series.ends[i:j])
    predictions.insert(0, "bin_start", series.starts[i:j])

    logger.debug("Group %r bins [%d, %d): rate=%.4g/day, R2=%.3f", label, i, j, rate, r_squared)

    return FittedModel(
        group=label,
        segment_range=(i, j),
        origin=series.starts[0],
        intercept=intercept,
        rate=rate,
        intercept_se=intercept_se,
        rate_se=rate_se,
        n_points=n,
        r_squared=r_squared,
        adj_r_squared=adj_r_squared,
        confidence=confidence,
        rate_conf=rate_conf,
        regime=regime,
        doubling_time=doubling,
        halving_time=halving,
        time_conf=time_conf,
        predictions=predictions,
        interval=series.interval,
        regular=series.regular,
        x_mean=x_mean,
        sxx=sxx,
        sigma=sigma,
    )


def fit_groups(series: IncidenceSeries, bin_range=None, confidence: float = 0.95) -> GroupFit:
    """Fit every group independently.

    A single-group series returns its FittedModel and raises on failure. With
    several groups a dict group -> FittedModel is returned, and groups that
    cannot be fitted get a FitFailure instead of aborting the others.
    """
    if series.n_groups == 1:
        return fit_log_linear(series, None, bin_range, confidence)

    confidence = _check_confidence(confidence)
    rng = _normalise_range(bin_range, series.n_bins)
    results = {}
    for group in series.groups:
        try:
            results[group] = fit_log_linear(series, group, rng, confidence)
        except (InsufficientData, ModelFitFailure) as err:
            logger.warning("Could not fit group %r on bins [%d, %d): %s", group, rng[0], rng[1], err)
            results[group] = FitFailure(group=group, segment_range=rng, error=err)
    return results


def split_index(series: IncidenceSeries, split) -> int:
    """Bin index where the 'after' segment starts.

    An integer is taken as a bin index; a date puts every bin starting on or
    after it in the 'after' segment.
    """
    if isinstance(split, numbers.Integral) and not isinstance(split, bool):
        return int(split)
    if isinstance(split, (bool, numbers.Number)):
        raise InvalidInput(f"split must be a bin index or a date, got {split!r}")
    ts = pd.to_datetime(split, errors="coerce")
    if pd.isna(ts):
        raise InvalidInput(f"split must be a bin index or a date, got {split!r}")
    return int(series.starts.searchsorted(pd.Timestamp(ts).normalize(), side="left"))


def fit(
    series: IncidenceSeries,
    split=None,
    confidence: float = 0.95,
    bin_range: Optional[Tuple[Optional[int], Optional[int]]] = None,
):
    """Fit a log-linear model, or one on each side of ``split``.

    Returns:
        Without split: a FittedModel (or dict per group, see fit_groups).
        With split: a (before, after) tuple of the same shapes.
    """
    if split is None:
        return fit_groups(series, bin_range, confidence)

    i, j = _normalise_range(bin_range, series.n_bins)
    k = split_index(series, split)
    if not i < k < j:
        raise InvalidInput(f"split {split!r} (bin {k}) leaves no bins on one side of [{i}, {j})")
    before = fit_groups(series, (i, k), confidence)
    after = fit_groups(series, (k, j), confidence)
    return before, after

