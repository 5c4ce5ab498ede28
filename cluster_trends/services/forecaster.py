"""
Linear trend forecasting over the aggregate bucket table.

For every cluster the (evaluation_month, avg_income) points are fitted with an
ordinary least-squares line and extrapolated one evaluation interval ahead.
A second, "overall" line is fitted over every pooled point to show the
direction of the whole selection.

Algorithm Overview:
    slope     = (n*Sxy - Sx*Sy) / (n*Sxx - Sx^2)
    intercept = (Sy - slope*Sx) / n

    next_month     = last_month + interval
    interval       = smallest positive gap between consecutive observed
                     months (DEFAULT_INTERVAL when there is none)
    forecast_value = slope*next_month + intercept

Sanity Bounds:
    - Fewer than MIN_POINTS points: no line, no forecast (not an error)
    - Zero denominator (every point in the same month): no line, no forecast
    - forecast_value <= 0: the line is kept, the forecast point is dropped,
      since a non-positive income projection is not meaningful

Output:
    The overall line first (when it exists), then one TrendModel per cluster
    sorted by cluster name. The function is pure: the same buckets always
    produce the same models.

Usage:
    from cluster_trends.services.forecaster import forecast

    trends = forecast(buckets)
    for trend in trends:
        print(trend.series, trend.slope, trend.forecast)
"""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from cluster_trends.models.schemas import AggregateBucket, ForecastPoint, TrendModel


# =============================================================================
# Constants
# =============================================================================

# Series name of the line fitted across every selected cluster
OVERALL_SERIES: str = "overall"

# A line needs at least two points
MIN_POINTS: int = 2

# Fallback evaluation interval in months (quarterly evaluation schedule)
DEFAULT_INTERVAL: int = 3


# =============================================================================
# Least Squares
# =============================================================================


def fit_linear_trend(
    months: Sequence[float],
    values: Sequence[float],
) -> Optional[Tuple[float, float]]:
    """
    Ordinary least-squares fit of `values` against `months`.

    Args:
        months: x values.
        values: y values, same length as `months`.

    Returns:
        (slope, intercept), or None when there are fewer than MIN_POINTS
        points or every x is identical.

    Example:
        >>> fit_linear_trend([1, 2, 3], [10, 20, 30])
        (10.0, 0.0)
    """
    if len(months) < MIN_POINTS or len(months) != len(values):
        return None

    x = np.asarray(months, dtype=np.float64)
    y = np.asarray(values, dtype=np.float64)
    n = float(len(x))

    sum_x = float(np.sum(x))
    sum_y = float(np.sum(y))
    sum_xy = float(np.sum(x * y))
    sum_xx = float(np.sum(x * x))

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return None

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


def forecast_interval(months: Sequence[int]) -> int:
    """Smallest positive gap between consecutive observed months, or DEFAULT_INTERVAL."""
    ordered = sorted(months)
    gaps = [b - a for a, b in zip(ordered, ordered[1:]) if b - a > 0]
    return min(gaps) if gaps else DEFAULT_INTERVAL


# =============================================================================
# Series Models
# =============================================================================


def trend_for_cluster(cluster: str, buckets: Sequence[AggregateBucket]) -> Optional[TrendModel]:
    """
    Fit one cluster's series and project it one interval ahead.

    Returns:
        TrendModel, or None when the series cannot be fitted.
    """
    points = sorted(
        buckets,
        key=lambda b: (b.evaluation_month, b.region, b.district),
    )
    months = [b.evaluation_month for b in points]
    incomes = [b.avg_income for b in points]

    fit = fit_linear_trend(months, incomes)
    if fit is None:
        return None
    slope, intercept = fit

    first_month, last_month = months[0], months[-1]
    next_month = last_month + forecast_interval(months)
    projected = slope * next_month + intercept

    return TrendModel(
        series=cluster,
        slope=slope,
        intercept=intercept,
        start_month=first_month,
        end_month=last_month,
        start_value=slope * first_month + intercept,
        end_value=slope * last_month + intercept,
        point_count=len(points),
        forecast=ForecastPoint(month=next_month, value=projected) if projected > 0 else None,
    )


def overall_trend(buckets: Sequence[AggregateBucket]) -> Optional[TrendModel]:
    """
    Fit one line over every (month, avg_income) point across all clusters.

    The line is reported over the observed month range only; no forecast.
    """
    months = [b.evaluation_month for b in buckets]
    incomes = [b.avg_income for b in buckets]

    fit = fit_linear_trend(months, incomes)
    if fit is None:
        return None
    slope, intercept = fit

    min_month, max_month = min(months), max(months)
    return TrendModel(
        series=OVERALL_SERIES,
        is_overall=True,
        slope=slope,
        intercept=intercept,
        start_month=min_month,
        end_month=max_month,
        start_value=slope * min_month + intercept,
        end_value=slope * max_month + intercept,
        point_count=len(months),
    )


# =============================================================================
# Main Entry Point
# =============================================================================


def forecast(buckets: Sequence[AggregateBucket]) -> List[TrendModel]:
    """
    Build trend models for every cluster plus the overall series.

    Args:
        buckets: Aggregate buckets in any order.

    Returns:
        Overall TrendModel first (if fittable), then per-cluster models in
        cluster-name order. Clusters that cannot be fitted are absent.
    """
    by_cluster: Dict[str, List[AggregateBucket]] = defaultdict(list)
    for bucket in buckets:
        by_cluster[bucket.cluster].append(bucket)

    trends: List[TrendModel] = []

    overall = overall_trend(buckets)
    if overall is not None:
        trends.append(overall)

    for cluster in sorted(by_cluster):
        trend = trend_for_cluster(cluster, by_cluster[cluster])
        if trend is not None:
            trends.append(trend)

    return trends
