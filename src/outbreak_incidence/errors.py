# src/outbreak_incidence/errors.py
"""
Exceptions raised by the incidence engine.

Every failure is a subclass of IncidenceError so callers can catch the whole
family, or a single condition when they need to react to it.
"""


class IncidenceError(Exception):
    """Base class for all incidence errors."""


class InvalidInput(IncidenceError, ValueError):
    """Malformed parameters: bad interval, mismatched lengths, empty data..."""


class InsufficientData(IncidenceError):
    """Too few non-zero bins to fit a log-linear model."""


class ModelFitFailure(IncidenceError, RuntimeError):
    """The regression is numerically degenerate."""


class NoValidSplit(IncidenceError):
    """No candidate split produced two valid fits."""
