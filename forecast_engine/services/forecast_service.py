"""
Forecast Service
Sequences the budget projection and goal calculation for one user, tracks
progress on the persisted record, and always leaves a valid forecast behind.
"""
from __future__ import annotations

import logging
import math
import threading
import time
import weakref
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from forecast_engine.core.config import Settings, settings as default_settings
from forecast_engine.core.exceptions import ForecastEngineError
from forecast_engine.db.stores import ForecastStore, GoalStore, LedgerReader
from forecast_engine.ml.aggregator import MonthlySeries, prepare_forecast_data
from forecast_engine.ml.arima import StatisticalPredictor
from forecast_engine.ml.categories import predict_categories, predict_categories_from_recent
from forecast_engine.ml.confidence import (
    adjust_prediction,
    calculate_confidence,
    clamp,
    enforce_decay,
    horizon_confidence,
    overall_confidence,
    risk_score,
)
from forecast_engine.ml.goals import GoalForecastCalculator
from forecast_engine.ml.model import RegressionPredictor
from forecast_engine.ml.predictors import predict_first_available
from forecast_engine.ml.preprocess import mean, remove_outliers
from forecast_engine.ml.seasonality import MonthPattern, extract_monthly_patterns, month_variation, variation_seed
from forecast_engine.models.forecast import (
    CalculationStatus,
    CategoryPrediction,
    Confidence,
    DataQuality,
    ForecastRecord,
    GoalProjection,
    MonthProjection,
)
from forecast_engine.models.transaction import Transaction
from forecast_engine.utils.cache import TTLCache
from forecast_engine.utils.date_utils import add_months, month_str, months_between, to_naive_utc

logger = logging.getLogger(__name__)

DEFAULT_EXPENSE = 1000.0
DEFAULT_INCOME = 1500.0
DEFAULT_CONFIDENCE = 50.0
DEFAULT_RISK = 50.0
FAILED_CONFIDENCE = 30.0


def _finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def varied_default_month(now: datetime, month_offset: int) -> Dict[str, Any]:
    """Deterministic placeholder month; consecutive months never repeat a value."""
    date = add_months(now, month_offset + 1)
    seed = variation_seed(month_offset, date.month)

    variation_factor = 1 + ((seed / 100) * 0.4 - 0.2)
    expense = DEFAULT_EXPENSE * (1 + ((seed / 100) * 0.3 - 0.15))
    income = DEFAULT_INCOME * (1 + ((((seed + 50) % 100) / 100) * 0.3 - 0.15))
    confidence = max(60, 90 - month_offset * 2)

    return {
        "date": date,
        "month_str": month_str(date),
        "projected_expense": expense,
        "projected_income": income,
        "projected_balance": max(0.0, income - expense),
        "category_predictions": {},
        "confidence": {"expense": confidence, "income": confidence, "balance": confidence},
        "risk_assessment": 50 * variation_factor,
    }


def varied_default_forecast(now: datetime, horizon: int = 12) -> List[Dict[str, Any]]:
    return [varied_default_month(now, i) for i in range(horizon)]


def validate_month(raw: Dict[str, Any], now: datetime) -> MonthProjection:
    """Replace missing/NaN fields with safe defaults and restore the balance invariant."""
    expense = raw.get("projected_expense")
    income = raw.get("projected_income")
    expense = max(0.0, expense) if _finite(expense) else DEFAULT_EXPENSE
    income = max(0.0, income) if _finite(income) else DEFAULT_INCOME

    confidence = raw.get("confidence") or {}
    safe_confidence = Confidence(**{
        key: clamp(confidence.get(key), 0, 100) if _finite(confidence.get(key)) else DEFAULT_CONFIDENCE
        for key in ("expense", "income", "balance")
    })

    categories = {}
    for category, prediction in (raw.get("category_predictions") or {}).items():
        if isinstance(prediction, CategoryPrediction):
            prediction = prediction.model_dump()
        if not isinstance(prediction, dict):
            continue
        amount = prediction.get("amount")
        categories[category] = CategoryPrediction(
            amount=max(0.0, amount) if _finite(amount) else 0.0,
            type=prediction.get("type") or "expense",
        )

    risk = raw.get("risk_assessment")
    date = raw.get("date") or now
    return MonthProjection(
        date=date,
        month_str=raw.get("month_str") or month_str(date),
        projected_expense=expense,
        projected_income=income,
        projected_balance=max(0.0, income - expense),
        category_predictions=categories,
        confidence=safe_confidence,
        risk_assessment=clamp(risk, 0, 100) if _finite(risk) else DEFAULT_RISK,
    )


def validate_forecasts(raw_months: Optional[List[Dict[str, Any]]], now: datetime, horizon: int = 12) -> List[MonthProjection]:
    if not raw_months:
        raw_months = varied_default_forecast(now, horizon)
    return enforce_decay([validate_month(raw, now) for raw in raw_months])


class _ProgressReporter:
    """Writes monotonically increasing progress markers for one run."""

    def __init__(self, store: ForecastStore, user_id: str) -> None:
        self._store = store
        self._user_id = user_id
        self.current = 0

    def report(self, progress: int) -> None:
        if progress <= self.current:
            return
        self.current = progress
        status = CalculationStatus.IN_PROGRESS if progress < 100 else CalculationStatus.COMPLETED
        try:
            self._store.update_progress(self._user_id, progress, status)
        except ForecastEngineError as e:
            logger.error(f"Error updating progress for user {self._user_id}: {e}")


class ForecastService:
    """
    Per-user financial projection. Owns the model, forecast and goal caches;
    construct once per process and share.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        goals: GoalStore,
        forecasts: ForecastStore,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = config or default_settings
        self._ledger = ledger
        self._forecasts = forecasts
        self._clock = clock

        self.model_cache: TTLCache = TTLCache("model", self.settings.MODEL_CACHE_SECONDS, timer)
        self.forecast_cache: TTLCache = TTLCache("forecast", self.settings.FORECAST_CACHE_SECONDS, timer)
        self.goal_cache: TTLCache = TTLCache("goal", self.settings.GOAL_CACHE_SECONDS, timer)

        self.goal_calculator = GoalForecastCalculator(
            ledger, goals, self.goal_cache, window_months=self.settings.GOAL_WINDOW_MONTHS
        )

        # entries disappear once no run holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def invalidate_user(self, user_id: str) -> None:
        """Drop every cached artifact for the user after a balance-changing write.

        Waits for an in-flight run for the same user, so that run cannot
        re-populate the caches with pre-write data afterwards.
        """
        with self._user_lock(user_id):
            self._invalidate(user_id)

    def _invalidate(self, user_id: str) -> None:
        models = self.model_cache.invalidate_where(lambda key: key[0] == user_id)
        self.forecast_cache.invalidate(user_id)
        self.goal_cache.invalidate(user_id)
        logger.info(f"Caches invalidated for user {user_id} ({models} models)")

    def _regression(self, user_id: str, metric: str) -> RegressionPredictor:
        return RegressionPredictor(
            user_id,
            metric,
            self.model_cache,
            min_points=self.settings.REGRESSION_MIN_POINTS,
            hidden_layers=self.settings.REGRESSION_HIDDEN_LAYERS,
            max_iter=self.settings.REGRESSION_MAX_ITER,
            random_state=self.settings.REGRESSION_RANDOM_STATE,
        )

    # ---------- Budget forecast ----------
    def predict_financial_forecast(self, user_id: str, progress: _ProgressReporter, now: datetime) -> List[Dict[str, Any]]:
        cached = self.forecast_cache.get(user_id)
        if cached is not None:
            logger.info(f"Using cached forecast for user {user_id}")
            return cached

        horizon = self.settings.FORECAST_HORIZON_MONTHS
        progress.report(20)

        data = prepare_forecast_data(self._ledger, user_id, now, self.settings.FORECAST_WINDOW_MONTHS)
        if data.is_empty():
            logger.info(f"Insufficient transaction data for user {user_id}, using default forecast")
            return varied_default_forecast(now, horizon)

        progress.report(30)

        cleaned_expenses = remove_outliers(data.expenses)
        cleaned_incomes = remove_outliers(data.incomes)
        progress.report(40)

        expense_model = self._regression(user_id, "expense")
        trained = expense_model.train_or_get(cleaned_expenses)
        logger.info(f"Expense model {'available' if trained else 'unavailable'} for user {user_id}")
        progress.report(50)

        income_model = self._regression(user_id, "income")
        trained = income_model.train_or_get(cleaned_incomes)
        logger.info(f"Income model {'available' if trained else 'unavailable'} for user {user_id}")
        progress.report(60)

        patterns = extract_monthly_patterns(data.dates, cleaned_expenses, cleaned_incomes)
        recent: List[Transaction] = []
        if not data.category_data:
            recent = self._ledger.list_transactions(
                user_id, add_months(now, -self.settings.CATEGORY_FALLBACK_MONTHS)
            )
        progress.report(70)

        fallback = StatisticalPredictor()
        months = []
        for i in range(horizon):
            try:
                months.append(self._project_month(
                    i, now, data, cleaned_expenses, cleaned_incomes, patterns, recent,
                    expense_chain=[expense_model, fallback],
                    income_chain=[income_model, fallback],
                ))
            except (ArithmeticError, ValueError, TypeError) as e:
                logger.error(f"Error predicting month {i + 1} for user {user_id}: {e}", exc_info=True)
                months.append(varied_default_month(now, i))

        progress.report(90)
        self.forecast_cache.set(user_id, months)
        return months

    def _project_month(
        self,
        i: int,
        now: datetime,
        data: MonthlySeries,
        cleaned_expenses: List[float],
        cleaned_incomes: List[float],
        patterns: Dict[int, MonthPattern],
        recent: List[Transaction],
        expense_chain,
        income_chain,
    ) -> Dict[str, Any]:
        date = add_months(now, i + 1)
        pattern = patterns.get(date.month, MonthPattern())
        variation = month_variation(i, date.month)

        if data.category_data:
            categories = predict_categories(data.category_data, i, data.dates, now, variation)
        else:
            categories = predict_categories_from_recent(recent, pattern, variation)

        avg_expense = mean(cleaned_expenses)
        avg_income = mean(cleaned_incomes)

        raw_expense, expense_source = predict_first_available(expense_chain, cleaned_expenses, i + 1)
        raw_income, income_source = predict_first_available(income_chain, cleaned_incomes, i + 1)
        if expense_source != "regression" or income_source != "regression":
            logger.debug(f"Month {i + 1}: expense via {expense_source}, income via {income_source}")

        expense = raw_expense * pattern.expense_factor * (1 + variation.expense)
        income = raw_income * pattern.income_factor * (1 + variation.income)

        expense_confidence = calculate_confidence(expense, avg_expense, len(data.expenses), i, "expense")
        income_confidence = calculate_confidence(income, avg_income, len(data.incomes), i, "income")

        expense = adjust_prediction(expense, avg_expense, expense_confidence)
        income = adjust_prediction(income, avg_income, income_confidence)
        if not math.isfinite(expense):
            expense = avg_expense * (1 + variation.expense)
        if not math.isfinite(income):
            income = avg_income * (1 + variation.income)
        expense = max(expense, 0.0)
        income = max(income, 0.0)

        confidence = horizon_confidence(expense_confidence, income_confidence, i)
        return {
            "date": date,
            "month_str": month_str(date),
            "projected_expense": expense,
            "projected_income": income,
            "projected_balance": max(0.0, income - expense),
            "category_predictions": categories,
            "confidence": confidence.model_dump(),
            "risk_assessment": risk_score(expense, income, expense_confidence, income_confidence),
        }

    # ---------- Data quality ----------
    def _calculate_data_quality(self, user_id: str) -> DataQuality:
        transactions = self._ledger.list_transactions(user_id, None)
        if not transactions:
            return DataQuality(transaction_count=0, months_of_data=1, completeness=0)

        dates = [tx.date for tx in transactions]
        span = max(1, months_between(min(dates), max(dates)) + 1)
        active_months = len({month_str(d) for d in dates})
        return DataQuality(
            transaction_count=len(transactions),
            months_of_data=span,
            completeness=min(100, round(active_months / span * 100)),
        )

    # ---------- Entry points ----------
    def update_forecasts(self, user_id: str, invalidate: bool = False) -> ForecastRecord:
        """
        Full recompute. Always persists a record; at worst the varied default with status failed.
        With ``invalidate`` every cache of the user is dropped first, under the same lock.
        """
        with self._user_lock(user_id):
            if invalidate:
                self._invalidate(user_id)
            return self._update_forecasts(user_id)

    def _update_forecasts(self, user_id: str) -> ForecastRecord:
        started = time.monotonic()
        now = to_naive_utc(self._clock())
        progress = _ProgressReporter(self._forecasts, user_id)
        logger.info(f"Starting forecast update for user {user_id}")

        self.goal_cache.invalidate(user_id)

        try:
            raw_months = self.predict_financial_forecast(user_id, progress, now)

            goal_forecast: Optional[GoalProjection] = None
            try:
                goal_forecast = self.goal_calculator.calculate(user_id, now)
            except Exception as e:
                logger.error(f"Error calculating goal forecast for user {user_id}: {e}", exc_info=True)

            budget_forecasts = validate_forecasts(raw_months, now, self.settings.FORECAST_HORIZON_MONTHS)
            confidence_score = overall_confidence(budget_forecasts)
            if not math.isfinite(confidence_score):
                confidence_score = DEFAULT_CONFIDENCE

            elapsed_ms = int((time.monotonic() - started) * 1000)
            record = ForecastRecord(
                user_id=user_id,
                budget_forecasts=budget_forecasts,
                goal_forecast=goal_forecast,
                calculation_status=CalculationStatus.COMPLETED,
                calculation_progress=100,
                confidence_score=clamp(confidence_score, 0, 100),
                last_updated=now,
                forecast_method=self.settings.FORECAST_METHOD,
                calculation_time=elapsed_ms,
                data_quality=self._calculate_data_quality(user_id),
            )
            logger.info(
                f"Forecast update completed for user {user_id} in {elapsed_ms}ms, "
                f"confidence {record.confidence_score:.1f}"
            )
            return self._forecasts.upsert(user_id, record)
        except Exception as e:
            logger.error(f"Error in forecast update for user {user_id}: {e}", exc_info=True)
            return self._persist_failure(user_id, now, progress.current)

    def _persist_failure(self, user_id: str, now: datetime, progress: int) -> ForecastRecord:
        record = ForecastRecord(
            user_id=user_id,
            budget_forecasts=validate_forecasts(None, now, self.settings.FORECAST_HORIZON_MONTHS),
            goal_forecast=None,
            calculation_status=CalculationStatus.FAILED,
            calculation_progress=progress,
            confidence_score=FAILED_CONFIDENCE,
            last_updated=now,
            forecast_method=self.settings.default_forecast_method,
            data_quality=DataQuality(transaction_count=0, months_of_data=1, completeness=0),
        )
        return self._forecasts.upsert(user_id, record)

    def _fresh_record(self, user_id: str, max_age_seconds: float) -> Optional[ForecastRecord]:
        record = self._forecasts.find_one(user_id)
        if record is None or record.calculation_status != CalculationStatus.COMPLETED:
            return None
        age = (to_naive_utc(self._clock()) - to_naive_utc(record.last_updated)).total_seconds()
        return record if age < max_age_seconds else None

    def get_goal_forecast(self, user_id: str) -> Optional[Dict[str, Any]]:
        record = self._fresh_record(user_id, self.settings.GOAL_CACHE_SECONDS)
        if record is None:
            record = self.update_forecasts(user_id)
        if record.goal_forecast is None:
            return None
        return {"goalForecast": record.goal_forecast, "lastUpdated": record.last_updated}

    def get_category_forecast(self, user_id: str, category: Optional[str] = None) -> Optional[Dict[str, Any]]:
        record = self._fresh_record(user_id, self.settings.FORECAST_CACHE_SECONDS)
        if record is None:
            record = self.update_forecasts(user_id)
        if not record.budget_forecasts:
            return None

        wanted = category.lower() if category else None
        per_category: Dict[str, Dict[str, Any]] = {}
        for month in record.budget_forecasts:
            for name, prediction in month.category_predictions.items():
                if wanted and name.lower() != wanted:
                    continue
                entry = per_category.setdefault(name, {
                    "category": name,
                    "type": prediction.type,
                    "monthlyForecasts": [],
                })
                entry["monthlyForecasts"].append({"monthStr": month.month_str, "amount": round(prediction.amount, 2)})

        categories = []
        for entry in per_category.values():
            amounts = [m["amount"] for m in entry["monthlyForecasts"]]
            entry["totalAmount"] = round(sum(amounts), 2)
            entry["averageAmount"] = round(sum(amounts) / len(amounts), 2)
            categories.append(entry)

        return {"categories": categories, "lastUpdated": record.last_updated}
