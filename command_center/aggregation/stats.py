"""
Summary statistics over score sets.

Pure Python on top of the stdlib statistics module.
"""

import statistics


def mean(values: list[float]) -> float:
    """Arithmetic mean; 0.0 for an empty list."""
    if not values:
        return 0.0
    return statistics.fmean(values)


def median(values: list[float]) -> float:
    """Median; the average of the two middle values when the count is even."""
    if not values:
        return 0.0
    return statistics.median(values)


def population_std(values: list[float]) -> float:
    """Population standard deviation; 0.0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


def linear_regression(values: list[float]) -> tuple[float, float, float]:
    """
    Least-squares fit of values against their index: y = slope * x + intercept.

    Returns: (slope, intercept, r_squared). R-squared is floored at 0.
    """
    n = len(values)
    if n < 2:
        return (0.0, values[0] if values else 0.0, 0.0)

    x_mean = (n - 1) / 2
    y_mean = mean(values)

    numerator = sum((i - x_mean) * (y - y_mean) for i, y in enumerate(values))
    denominator = sum((i - x_mean) ** 2 for i in range(n))
    slope = numerator / denominator
    intercept = y_mean - slope * x_mean

    ss_total = sum((y - y_mean) ** 2 for y in values)
    if ss_total == 0:
        return (slope, intercept, 0.0)
    ss_residual = sum((y - (intercept + slope * i)) ** 2 for i, y in enumerate(values))
    return (slope, intercept, max(0.0, 1 - ss_residual / ss_total))
