# src/outbreak_incidence/__init__.py
"""
Incidence curves from case dates, with log-linear growth and decay fits.
"""

from .version_info import VERSION as __version__

from .errors import (
    IncidenceError,
    InsufficientData,
    InvalidInput,
    ModelFitFailure,
    NoValidSplit,
)
from .series.intervals import Interval, parse_interval
from .series.incidence_series import DEFAULT_GROUP, NA_GROUP, IncidenceSeries
from .series.binning import NAPolicy, as_incidence, bin_dates, incidence
from .series.operations import (
    cumulate,
    pool,
    select_stride,
    slice_bins,
    slice_by_date,
    slice_groups,
    slice_series,
    to_table,
)
from .fitting.growth_fit import FitFailure, FittedModel, fit, fit_groups, fit_log_linear
from .fitting.split_optim import SplitResult, fit_optimal_split
