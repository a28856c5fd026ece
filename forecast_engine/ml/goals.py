from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import List, Optional, Sequence

from forecast_engine.db.stores import GoalStore, LedgerReader
from forecast_engine.ml.preprocess import variability
from forecast_engine.models.forecast import GoalProjection, RiskFactor
from forecast_engine.models.goal import Goal
from forecast_engine.models.transaction import Transaction, TransactionType
from forecast_engine.utils.cache import TTLCache
from forecast_engine.utils.date_utils import add_months

logger = logging.getLogger(__name__)

MAX_GOAL_MONTHS = 120
SAVINGS_DECAY = 0.4
NEGATIVE_MONTH_PENALTY = 8


def monthly_savings_history(transactions: Sequence[Transaction], now: datetime, months: int = 6) -> List[float]:
    """
    Net savings (income - expense) for each trailing month window, most recent
    first: index i covers [now - (i+1) months, now - i months).
    """
    history = []
    for i in range(months):
        start = add_months(now, -i - 1)
        end = add_months(now, -i)
        saving = 0.0
        for tx in transactions:
            if start <= tx.date < end:
                saving += tx.amount if tx.type == TransactionType.INCOME else -tx.amount
        history.append(saving)
    return history


def weighted_savings(history: Sequence[float]) -> float:
    """Exponential decay e^{-0.4 i}: recent months count more."""
    weighted = 0.0
    weight_sum = 0.0
    for i, saving in enumerate(history):
        weight = math.exp(-SAVINGS_DECAY * i)
        weighted += saving * weight
        weight_sum += weight
    return weighted / weight_sum if weight_sum > 0 else 0.0


def _recent_vs_older(history: Sequence[float], split: int = 3):
    recent = sum(history[:split]) / split
    older_part = history[split:]
    older = sum(older_part) / max(1, len(older_part))
    return recent, older


def pessimistic_savings(savings: float, spread: float, history: Sequence[float]) -> float:
    """
    Most conservative applicable estimate: a flat 15% when two or more months
    were net-negative; the lower of worst-quartile and decline-trend estimates
    when variability exceeds the average; otherwise average minus variability.
    """
    standard = max(savings * 0.2, savings - spread)

    ordered = sorted(history)
    worst_quartile = ordered[int(len(ordered) * 0.25)] if ordered else 0
    percentile = max(1.0, worst_quartile or savings * 0.5)

    trend = savings * 0.5
    if len(history) >= 3:
        recent, older = _recent_vs_older(history)
        if recent < older and older > 0:
            decline = (older - recent) / older
            trend = max(savings * 0.3, savings * (1 - decline))

    negative_months = sum(1 for s in history if s <= 0)
    if negative_months >= 2:
        return max(1.0, savings * 0.15)
    if spread > savings:
        return max(1.0, min(percentile, trend))
    return max(1.0, standard)


def goal_probability(
    savings: float,
    remaining: float,
    target: float,
    spread: float,
    history: Sequence[float],
) -> float:
    if remaining <= 0:
        return 100.0
    if savings <= 0:
        return 0.0

    negative_months = sum(1 for s in history if s <= 0)
    positive_months = sum(1 for s in history if s > 0)
    positive_ratio = positive_months / len(history) if history else 0.5

    share_remaining = remaining / (target or 1)
    months_needed = remaining / savings

    achievement = min(
        1.0,
        (1 - share_remaining) * 0.5 + (0.5 if months_needed <= 12 else 0.5 * (12 / months_needed)),
    )
    stability = max(0.3, min(1.0, savings / (spread + 1)))
    consistency = max(0.4, positive_ratio)

    trend = 0.0
    if len(history) >= 3:
        recent, older = _recent_vs_older(history)
        trend = 0.3 if recent >= older else -0.2

    probability = 40 + achievement * 30 + stability * 15 + consistency * 10 + trend * 15
    probability -= negative_months * NEGATIVE_MONTH_PENALTY

    probability = max(0, min(100, round(probability)))
    if probability < 5:
        probability = 5
    return float(probability)


def assess_risk_factors(
    savings: float,
    spread: float,
    remaining: float,
    history: Sequence[float],
) -> List[RiskFactor]:
    risks: List[RiskFactor] = []

    ratio = spread / (savings or 1)
    if ratio > 0.5:
        risks.append(RiskFactor(
            type="high_variability",
            severity=min(100, round(ratio * 100)),
            description="Your monthly savings vary a lot from month to month.",
        ))

    if len(history) >= 4:
        recent = (history[0] + history[1]) / 2
        older = (history[2] + history[3]) / 2
        if recent < older:
            severity = round((older - recent) / (older or 1) * 100)
            risks.append(RiskFactor(
                type="declining_savings",
                severity=max(0, min(100, severity)),
                description="Your recent savings rate is declining.",
            ))

    months_required = remaining / (savings or 1)
    if months_required > 36:
        risks.append(RiskFactor(
            type="ambitious_timeline",
            severity=min(100, round((months_required - 36) * 2)),
            description="Reaching this goal may take a long time.",
        ))

    if history:
        negative = sum(1 for s in history if s < 0)
        if negative > 0:
            risks.append(RiskFactor(
                type="negative_months",
                severity=min(100, round(negative / len(history) * 100)),
                description="Some recent months had negative savings.",
            ))

    return risks


def default_goal_projection(goal: Goal, now: datetime) -> GoalProjection:
    return GoalProjection(
        goal_id=goal.goal_id,
        expected_months_to_goal=12,
        best_case_months_to_goal=6,
        worst_case_months_to_goal=24,
        projected_date=add_months(now, 12),
        monthly_savings=100,
        savings_variability=0,
        probability=50,
        risk_factors=[],
    )


def calculate_goal_forecast(goal: Goal, transactions: Sequence[Transaction], now: datetime, months: int = 6) -> GoalProjection:
    if not transactions:
        return default_goal_projection(goal, now)

    history = monthly_savings_history(transactions, now, months)
    average = round(weighted_savings(history), 2)
    spread = variability(history)
    remaining = goal.target_amount - goal.current_amount

    savings = max(1.0, average)
    optimistic = max(savings, savings + spread * 0.5)
    pessimistic = pessimistic_savings(savings, spread, history)

    best_case = max(1, math.ceil(remaining / optimistic))
    expected = max(1, math.ceil(remaining / savings))

    if remaining <= 0:
        worst_case = 1
    else:
        # fewer positive months -> looser cap, up to 120
        quality = min(1.0, sum(1 for s in history if s > 0) / months)
        cap = round(36 + (1 - quality) * 84)
        worst_case = max(1, min(cap, math.ceil(remaining / pessimistic), MAX_GOAL_MONTHS))

    return GoalProjection(
        goal_id=goal.goal_id,
        expected_months_to_goal=expected,
        best_case_months_to_goal=best_case,
        worst_case_months_to_goal=worst_case,
        projected_date=add_months(now, expected),
        monthly_savings=round(savings, 2),
        savings_variability=round(spread, 2),
        probability=goal_probability(savings, remaining, goal.target_amount, spread, history),
        risk_factors=assess_risk_factors(savings, spread, remaining, history),
    )


class GoalForecastCalculator:
    """Time-to-goal projection for the user's single active goal, cached per user."""

    def __init__(
        self,
        ledger: LedgerReader,
        goals: GoalStore,
        cache: TTLCache,
        window_months: int = 6,
    ) -> None:
        self._ledger = ledger
        self._goals = goals
        self._cache = cache
        self._window_months = window_months

    def calculate(self, user_id: str, now: datetime) -> Optional[GoalProjection]:
        cached = self._cache.get(user_id)
        if cached is not None:
            logger.info(f"Using cached goal forecast for user {user_id}")
            return cached

        goal = self._goals.find_active_goal(user_id)
        if goal is None:
            logger.info(f"No active goal for user {user_id}")
            return None

        transactions = self._ledger.list_transactions(user_id, add_months(now, -self._window_months))
        projection = calculate_goal_forecast(goal, transactions, now, self._window_months)

        self._cache.set(user_id, projection)
        return projection
