"""Exceptions raised by the aggregation engine."""


class AggregationError(Exception):
    """Base class for engine errors."""


class InvalidWeightsError(AggregationError, ValueError):
    """Domain weights are negative or do not sum to 1.0."""


class InvalidPeriodError(AggregationError, ValueError):
    """Fiscal period parts are out of range or ambiguous."""


class AggregationTimeoutError(AggregationError, TimeoutError):
    """The caller's deadline expired before the computation finished."""
