# stockcast/errors.py

"""
Error taxonomy for the forecasting core.

Precondition violations subclass ValueError as well, so callers that only
care about "bad input" can keep catching ValueError.
"""


class StockcastError(Exception):
    """Base class for every error raised by stockcast."""


class EmptySeriesError(StockcastError, ValueError):
    pass


class NoDataError(StockcastError, ValueError):
    pass


class DegenerateSeriesError(StockcastError, ValueError):
    pass


class InsufficientDataError(StockcastError, ValueError):
    pass


class EmptySplitError(StockcastError, ValueError):
    pass


class MissingDataError(StockcastError, ValueError):
    pass


class ModelStateError(StockcastError):
    """Operation not allowed in the model's current lifecycle state."""


class TrainingInProgressError(StockcastError):
    """A training run is already in flight; runs are never queued."""
