"""Trend computation.

Linear trend analysis for session metrics over time. Callers pass values in
chronological order.
"""

import numpy as np


def _slope(values: list[float]) -> float:
    x = np.arange(len(values), dtype=float)
    y = np.array(values, dtype=float)
    return float(np.polyfit(x, y, 1)[0])


def normalized_trend(values: list[float]) -> float:
    """Least-squares slope per step divided by the mean.

    0.05 means the metric grows by about 5% of its average each session.

    Args:
        values: Metric values over time (chronological order)

    Returns:
        Relative slope, or 0.0 for fewer than two values or a non-positive mean
    """
    if len(values) < 2:
        return 0.0
    mean = float(np.mean(values))
    if mean <= 0:
        return 0.0
    return _slope(values) / mean


def population_std(values: list[float]) -> float:
    if not values:
        return 0.0
    return float(np.std(np.array(values, dtype=float)))
