"""
AR/I/MA heuristic used whenever the regression model is unavailable.

Not a fitted ARIMA: an autoregressive weighted mean of recent points, plus the
mean one-step moving-average error, plus mean drift scaled by the horizon,
shrunk toward the series mean when the history is shorter than a year.
"""
import logging
import math
import statistics
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# Returned for empty/degenerate history so downstream ratios never divide by 0
SAFE_PLACEHOLDER = 1.0


def _valid_points(series: Sequence[float]) -> List[float]:
    points = []
    for value in series or []:
        if value is None:
            continue
        value = float(value)
        if math.isnan(value) or value == 0:
            continue
        points.append(value)
    return points


def arima_based_prediction(series: Sequence[float], month_offset: int) -> float:
    """
    Predict ``month_offset`` steps past the end of ``series`` (0 = next month).
    Zero and NaN points are ignored.
    """
    points = _valid_points(series)
    if not points:
        return SAFE_PLACEHOLDER

    n = len(points)
    series_mean = statistics.fmean(points)

    try:
        ar_order = min(6, n // 3)
        ar_component = 0.0
        weight_sum = 0.0
        for i in range(1, ar_order + 1):
            weight = (ar_order - i + 1) / ar_order
            ar_component += points[n - i] * weight
            weight_sum += weight
        ar_component = ar_component / weight_sum if weight_sum > 0 else points[-1]

        ma_order = min(3, n // 4)
        if ma_order == 0:
            # fewer than 4 points: no moving-average error can be formed
            return series_mean
        errors = []
        for i in range(ma_order, n):
            predicted = sum(points[i - ma_order:i]) / ma_order
            errors.append(points[i] - predicted)
        ma_component = statistics.fmean(errors) if errors else 0.0

        differenced = [points[i] - points[i - 1] for i in range(1, n)]
        mean_diff = statistics.fmean(differenced) if differenced else 0.0

        prediction = ar_component + ma_component + mean_diff * month_offset

        confidence_factor = min(1.0, n / 12)
        result = prediction * confidence_factor + series_mean * (1 - confidence_factor)
    except (ArithmeticError, ValueError) as e:
        logger.error(f"AR/I/MA prediction failed, using series mean: {e}")
        return series_mean

    if not math.isfinite(result):
        return series_mean
    return result


class StatisticalPredictor:
    """Always-available predictor backed by :func:`arima_based_prediction`."""

    name = "arima"

    def predict(self, series: Sequence[float], horizon: int) -> Optional[float]:
        # horizon is 1-based months ahead; the heuristic's drift term is 0-based
        return arima_based_prediction(series, horizon - 1)
