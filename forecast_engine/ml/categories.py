import logging
import math
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, Mapping, Sequence

from forecast_engine.ml.aggregator import CategorySeries
from forecast_engine.ml.arima import arima_based_prediction
from forecast_engine.ml.seasonality import MonthPattern, MonthVariation, seasonality_factor, trend_factor
from forecast_engine.models.forecast import CategoryPrediction
from forecast_engine.models.transaction import Transaction

logger = logging.getLogger(__name__)


def _variation_for(category_type: str, variation: MonthVariation) -> float:
    return variation.expense if category_type == "expense" else variation.income


def _non_negative(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(value, 0.0)


def predict_categories(
    category_data: Mapping[str, CategorySeries],
    month_offset: int,
    dates: Sequence[str],
    now: datetime,
    variation: MonthVariation,
) -> Dict[str, CategoryPrediction]:
    """
    AR/I/MA forecast of each category's monthly vector, scaled by that
    category's seasonality and trend and by the month's deterministic variation.
    """
    predictions: Dict[str, CategoryPrediction] = {}

    for category, data in category_data.items():
        category_type = data.type or "expense"
        try:
            base = arima_based_prediction(data.amounts, month_offset)
            seasonal = seasonality_factor(data.amounts, month_offset, dates, now)
            trend = trend_factor(data.amounts)
            amount = base * (1 + seasonal + trend) * (1 + _variation_for(category_type, variation))
        except (ArithmeticError, ValueError) as e:
            logger.error(f"Error predicting category {category}: {e}")
            amount = 0.0

        predictions[category] = CategoryPrediction(amount=_non_negative(amount), type=category_type)

    return predictions


def predict_categories_from_recent(
    transactions: Iterable[Transaction],
    pattern: MonthPattern,
    variation: MonthVariation,
) -> Dict[str, CategoryPrediction]:
    """Fallback without category history: mean entry amount per category over recent raw ledger entries."""
    totals: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)
    types: Dict[str, str] = {}

    for tx in transactions:
        totals[tx.category] += float(tx.amount)
        counts[tx.category] += 1
        types.setdefault(tx.category, tx.type.value)

    predictions: Dict[str, CategoryPrediction] = {}
    for category, total in totals.items():
        category_type = types[category]
        factor = pattern.expense_factor if category_type == "expense" else pattern.income_factor
        amount = total / counts[category] * factor * (1 + _variation_for(category_type, variation))
        predictions[category] = CategoryPrediction(amount=_non_negative(amount), type=category_type)
    return predictions
