import math
import statistics
from dataclasses import dataclass
from typing import List, Sequence

OUTLIER_SIGMA = 2.5
MIN_OUTLIER_POINTS = 4


@dataclass(frozen=True)
class NormalizedSeries:
    values: List[float]
    min: float
    max: float

    def denormalize(self, value: float) -> float:
        return value * (self.max - self.min) + self.min


def remove_outliers(series: Sequence[float], sigma: float = OUTLIER_SIGMA) -> List[float]:
    """
    Clip values farther than ``sigma`` population standard deviations from the
    mean back to mean +/- sigma*stdev. Length and order are preserved; series
    shorter than 4 points are returned as-is.
    """
    values = [float(v) for v in series]
    if len(values) < MIN_OUTLIER_POINTS:
        return values

    center = statistics.fmean(values)
    threshold = sigma * statistics.pstdev(values, mu=center)

    return [
        center + math.copysign(threshold, value - center) if abs(value - center) > threshold else value
        for value in values
    ]


def normalize(series: Sequence[float]) -> NormalizedSeries:
    """Min-max scale to [0, 1]; a constant series uses a range of 1."""
    values = [float(v) for v in series]
    low, high = min(values), max(values)
    spread = (high - low) or 1.0
    return NormalizedSeries(values=[(v - low) / spread for v in values], min=low, max=high)


def variability(series: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two points."""
    if len(series) < 2:
        return 0.0
    return statistics.pstdev([float(v) for v in series])


def mean(series: Sequence[float], default: float = 0.0) -> float:
    return statistics.fmean(series) if series else default
