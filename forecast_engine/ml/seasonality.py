"""
Seasonality & Trend
Calendar-month effects, damped trend, and the deterministic per-month variation
"""
import logging
import math
import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Sequence

from forecast_engine.utils.date_utils import add_months

logger = logging.getLogger(__name__)

TREND_LIMIT = 0.3


def _finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def _month_number(month: str) -> str:
    """'2025-03' -> '03'; empty string for malformed keys."""
    parts = month.split("-")
    if len(parts) < 2 or not parts[1].isdigit():
        return ""
    return parts[1]


def seasonality_factor(
    series: Sequence[float],
    month_offset: int,
    dates: Sequence[str],
    now: datetime,
) -> float:
    """
    Relative deviation of the target calendar month from the overall average
    (``monthAvg / overallAvg - 1``). The target month is ``now + month_offset + 1``.
    Without history for that month a sinusoidal estimate is used instead.
    Returns 0 with fewer than 12 points or a flat series.
    """
    if not series or len(series) < 12:
        return 0.0
    if statistics.pstdev(series) == 0:
        return 0.0

    target = add_months(now, month_offset + 1).strftime("%m")

    by_month: Dict[str, List[float]] = defaultdict(list)
    for index, month in enumerate(dates):
        key = _month_number(month)
        if key and index < len(series):
            by_month[key].append(series[index])

    overall = statistics.fmean(series)
    if by_month.get(target) and overall > 0:
        return _finite_or_zero(statistics.fmean(by_month[target]) / overall - 1)

    recent = series[-12:]
    last = series[-1] or 1
    return _finite_or_zero(math.sin(month_offset * math.pi / 6) * (statistics.fmean(recent) / last))


def trend_factor(series: Sequence[float]) -> float:
    """
    Exponentially weighted mean of month-over-month percent change, newer
    changes weighted e^{0.1(i-1)}, clamped to [-0.3, 0.3].
    """
    if not series or len(series) < 3:
        return 0.0

    total = 0.0
    weights = 0.0
    for i in range(1, len(series)):
        previous, current = series[i - 1], series[i]
        if previous == 0 or not (math.isfinite(previous) and math.isfinite(current)):
            continue
        weight = math.exp(0.1 * (i - 1))
        total += (current - previous) / previous * weight
        weights += weight

    trend = total / weights if weights > 0 else 0.0
    return _finite_or_zero(max(-TREND_LIMIT, min(TREND_LIMIT, trend)))


@dataclass(frozen=True)
class MonthPattern:
    expense_factor: float = 1.0
    income_factor: float = 1.0


def extract_monthly_patterns(
    dates: Sequence[str],
    expenses: Sequence[float],
    incomes: Sequence[float],
) -> Dict[int, MonthPattern]:
    """Per calendar month (1-12), that month's average relative to the overall average."""
    expense_by_month: Dict[int, List[float]] = defaultdict(list)
    income_by_month: Dict[int, List[float]] = defaultdict(list)

    for index, month in enumerate(dates):
        key = _month_number(month)
        if not key or not 1 <= int(key) <= 12:
            continue
        if index < len(expenses):
            expense_by_month[int(key)].append(expenses[index])
        if index < len(incomes):
            income_by_month[int(key)].append(incomes[index])

    avg_expense = (statistics.fmean(expenses) if expenses else 0) or 1
    avg_income = (statistics.fmean(incomes) if incomes else 0) or 1

    patterns = {}
    for month in range(1, 13):
        expense_factor = 1.0
        income_factor = 1.0
        if expense_by_month.get(month):
            expense_factor = statistics.fmean(expense_by_month[month]) / avg_expense
        if income_by_month.get(month):
            income_factor = statistics.fmean(income_by_month[month]) / avg_income
        patterns[month] = MonthPattern(expense_factor=expense_factor, income_factor=income_factor)
    return patterns


@dataclass(frozen=True)
class MonthVariation:
    expense: float
    income: float


def variation_seed(month_offset: int, month_number: int) -> int:
    return (month_offset * 7 + month_number * 13) % 100


def month_variation(month_offset: int, month_number: int) -> MonthVariation:
    """
    Deterministic +/-10% perturbation so consecutive forecast months differ even
    on flat history. Income runs 0.2 of a cycle ahead of expense.
    """
    seed = variation_seed(month_offset, month_number) / 100
    return MonthVariation(
        expense=seed * 0.2 - 0.1,
        income=((seed + 0.2) % 1) * 0.2 - 0.1,
    )
