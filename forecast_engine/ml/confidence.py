import math
from typing import List, Sequence

from forecast_engine.models.forecast import Confidence, MonthProjection

MIN_CONFIDENCE = 60
MAX_CONFIDENCE = 95
BLEND_THRESHOLD = 70


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def calculate_confidence(
    prediction: float,
    average: float,
    data_points: int,
    month_offset: int,
    metric: str,
) -> float:
    """Heuristic 60-95 score from history length, horizon and plausibility of the value."""
    data_quality = clamp(data_points / 12, 0.5, 1.0)
    time_decay = max(0.5, 1 - month_offset * 0.03)

    ratio = prediction / (average or 1)
    plausibility = 1.0 if 0.3 < ratio < 3 else 0.7

    base = 80 * data_quality * time_decay * plausibility
    if metric == "income":
        base += 5
    return clamp(base, MIN_CONFIDENCE, MAX_CONFIDENCE)


def adjust_prediction(prediction: float, average: float, confidence: float) -> float:
    """Low-confidence predictions are pulled toward the historical average."""
    if confidence < BLEND_THRESHOLD:
        blend = confidence / 100
        return prediction * blend + average * (1 - blend)
    return prediction


def risk_score(expense: float, income: float, expense_confidence: float, income_confidence: float) -> float:
    balance_ratio = income / (expense or 1)
    base_risk = clamp((1 - balance_ratio) * 100, 0, 100)
    confidence_adjustment = (100 - (expense_confidence + income_confidence) / 2) * 0.3
    volatility_risk = (100 - expense_confidence) * 0.4
    score = min(100.0, base_risk * 0.6 + confidence_adjustment + volatility_risk * 0.3)
    return clamp(score, 0, 100) if math.isfinite(score) else 50.0


def horizon_confidence(expense_confidence: float, income_confidence: float, month_offset: int) -> Confidence:
    balance = clamp((expense_confidence + income_confidence) / 2 - month_offset * 2, MIN_CONFIDENCE, MAX_CONFIDENCE)
    return Confidence(
        expense=max(MIN_CONFIDENCE, expense_confidence - month_offset * 1.5),
        income=max(MIN_CONFIDENCE, income_confidence - month_offset * 1.5),
        balance=balance,
    )


def enforce_decay(forecasts: Sequence[MonthProjection]) -> List[MonthProjection]:
    """Running minimum per confidence field: later months are never more certain."""
    result = []
    floor = None
    for projection in forecasts:
        current = projection.confidence
        if floor is not None:
            current = Confidence(
                expense=min(current.expense, floor.expense),
                income=min(current.income, floor.income),
                balance=min(current.balance, floor.balance),
            )
        floor = current
        result.append(projection.model_copy(update={"confidence": current}))
    return result


def overall_confidence(forecasts: Sequence[MonthProjection]) -> float:
    """Mean of the three confidences over the first three months."""
    if not forecasts:
        return 50.0
    scores = [
        (f.confidence.expense + f.confidence.income + f.confidence.balance) / 3
        for f in forecasts[:3]
    ]
    return sum(scores) / len(scores)
