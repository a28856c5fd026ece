import math
import threading
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, USER, FakeForecastStore, FakeGoalStore, FakeLedger, monthly_history, tx
from forecast_engine.core.config import settings
from forecast_engine.models.forecast import CalculationStatus
from forecast_engine.models.goal import Goal
from forecast_engine.models.transaction import Transaction
from forecast_engine.services.forecast_service import ForecastService, validate_forecasts, validate_month
from forecast_engine.utils.date_utils import add_months

car_goal = Goal(user_id=USER, title="Car", target_amount=8000, is_active=True)


def assert_valid_forecast(record):
    assert len(record.budget_forecasts) == 12
    previous = None
    for month in record.budget_forecasts:
        for value in (month.projected_expense, month.projected_income, month.projected_balance):
            assert math.isfinite(value) and value >= 0
        assert month.projected_balance == max(0.0, month.projected_income - month.projected_expense)
        if previous is not None:
            assert month.confidence.expense <= previous.confidence.expense
            assert month.confidence.income <= previous.confidence.income
            assert month.confidence.balance <= previous.confidence.balance
        previous = month


def test_new_user_gets_varied_default_forecast(make_service):
    record = make_service([]).update_forecasts(USER)

    assert record.calculation_status == CalculationStatus.COMPLETED
    assert record.calculation_progress == 100
    assert record.data_quality.transaction_count == 0
    assert_valid_forecast(record)
    expenses = [m.projected_expense for m in record.budget_forecasts]
    assert all(a != b for a, b in zip(expenses, expenses[1:]))


def test_ledger_failure_persists_failed_default(make_service, forecast_store):
    record = make_service(ledger=FakeLedger(fail=True)).update_forecasts(USER)

    assert record.calculation_status == CalculationStatus.FAILED
    assert record.confidence_score == 30
    assert record.forecast_method == settings.default_forecast_method
    assert record.goal_forecast is None
    assert_valid_forecast(record)
    assert forecast_store.records[USER] is record


def test_full_history_forecast(make_service, forecast_store):
    record = make_service(monthly_history(12)).update_forecasts(USER)

    assert record.calculation_status == CalculationStatus.COMPLETED
    assert record.forecast_method == settings.FORECAST_METHOD
    assert 0 <= record.confidence_score <= 100
    assert_valid_forecast(record)
    assert record.budget_forecasts[0].month_str == "2026-07"
    assert set(record.budget_forecasts[0].category_predictions) == {"Salary", "Rent", "Food"}
    assert record.data_quality.transaction_count == 36
    assert record.data_quality.months_of_data == 12
    assert record.data_quality.completeness == 100


def test_progress_only_moves_forward(make_service, forecast_store):
    make_service(monthly_history(12)).update_forecasts(USER)

    progress = [p for p, _ in forecast_store.progress_log]
    assert progress == [20, 30, 40, 50, 60, 70, 90]
    assert all(s == CalculationStatus.IN_PROGRESS for _, s in forecast_store.progress_log)


def test_repeated_update_is_idempotent(make_service):
    service = make_service(monthly_history(12))
    first = service.update_forecasts(USER)
    second = service.update_forecasts(USER)

    assert [m.model_dump() for m in first.budget_forecasts] == [m.model_dump() for m in second.budget_forecasts]
    assert first.confidence_score == second.confidence_score


def test_goal_forecast_included(make_service):
    record = make_service(monthly_history(12), goal=car_goal).update_forecasts(USER)
    assert record.goal_forecast.goal_id == car_goal.goal_id
    assert record.goal_forecast.expected_months_to_goal == 16


def test_goal_failure_does_not_fail_the_run(make_service):
    record = make_service(monthly_history(12), goals=FakeGoalStore(fail=True)).update_forecasts(USER)
    assert record.calculation_status == CalculationStatus.COMPLETED
    assert record.goal_forecast is None


def test_invalidate_user_drops_cached_models_and_forecast(make_service):
    service = make_service(monthly_history(12))
    service.update_forecasts(USER)
    assert USER in service.forecast_cache
    assert len(service.model_cache) == 2

    service.invalidate_user(USER)
    assert USER not in service.forecast_cache
    assert len(service.model_cache) == 0


def test_goal_forecast_query(make_service):
    result = make_service(monthly_history(12), goal=car_goal).get_goal_forecast(USER)
    assert result["goalForecast"].goal_id == car_goal.goal_id
    assert result["lastUpdated"] == NOW

    assert make_service(monthly_history(12)).get_goal_forecast("someone-else") is None


def test_category_forecast_filter_is_case_insensitive(make_service):
    result = make_service(monthly_history(12)).get_category_forecast(USER, "rent")

    assert [c["category"] for c in result["categories"]] == ["Rent"]
    rent = result["categories"][0]
    assert rent["type"] == "expense"
    assert len(rent["monthlyForecasts"]) == 12
    amounts = [m["amount"] for m in rent["monthlyForecasts"]]
    assert rent["totalAmount"] == pytest.approx(sum(amounts), abs=0.01)


def test_category_forecast_reuses_fresh_record(make_service, forecast_store):
    service = make_service(monthly_history(12))
    service.get_category_forecast(USER)
    calls = len(forecast_store.progress_log)

    result = service.get_category_forecast(USER, "travel")
    assert result["categories"] == []
    assert len(forecast_store.progress_log) == calls


def test_validate_month_replaces_invalid_fields():
    month = validate_month({
        "projected_expense": float("nan"),
        "projected_income": 2000.0,
        "confidence": {"expense": 150, "income": None},
        "category_predictions": {"Food": {"amount": -5, "type": "expense"}},
    }, NOW)

    assert month.projected_expense == 1000.0
    assert month.projected_balance == 1000.0
    assert month.confidence.expense == 100
    assert month.confidence.income == 50
    assert month.category_predictions["Food"].amount == 0.0
    assert month.risk_assessment == 50


def test_validate_forecasts_without_input_uses_defaults():
    months = validate_forecasts(None, NOW)
    assert len(months) == 12
    assert months[0].month_str == "2026-07"


class PausingLedger(FakeLedger):
    """Holds the first read open, after its rows were selected, until released."""

    def __init__(self, transactions):
        super().__init__(transactions)
        self.read_started = threading.Event()
        self.release = threading.Event()

    def list_transactions(self, user_id, since=None):
        rows = super().list_transactions(user_id, since)
        if not self.read_started.is_set():
            self.read_started.set()
            self.release.wait(10)
        return rows


def start_stale_run(service, ledger):
    """Start a run that has read the ledger before a new Car expense lands."""
    run = threading.Thread(target=service.update_forecasts, args=(USER,))
    run.start()
    assert ledger.read_started.wait(10)
    ledger.transactions.append(tx("expense", 5000.0, "Car", add_months(NOW, -1)))
    return run


def test_invalidation_waits_for_in_flight_run(make_service):
    ledger = PausingLedger(monthly_history(12))
    service = make_service(ledger=ledger)
    stale_run = start_stale_run(service, ledger)

    invalidator = threading.Thread(target=service.invalidate_user, args=(USER,))
    invalidator.start()
    invalidator.join(0.2)
    assert invalidator.is_alive()

    ledger.release.set()
    stale_run.join(10)
    invalidator.join(10)

    record = service.update_forecasts(USER)
    assert "Car" in record.budget_forecasts[0].category_predictions


def test_post_commit_recompute_sees_new_transactions(make_service):
    ledger = PausingLedger(monthly_history(12))
    service = make_service(ledger=ledger)
    stale_run = start_stale_run(service, ledger)

    results = {}
    committed = threading.Thread(
        target=lambda: results.setdefault("record", service.update_forecasts(USER, invalidate=True))
    )
    committed.start()

    # other users are not held up by this user's run
    other = service.update_forecasts("user-2")
    assert other.calculation_status == CalculationStatus.COMPLETED
    assert committed.is_alive()

    ledger.release.set()
    stale_run.join(10)
    committed.join(10)

    assert "Car" in results["record"].budget_forecasts[0].category_predictions


def test_user_locks_are_released_after_runs(make_service):
    service = make_service(monthly_history(12))
    service.update_forecasts(USER)
    service.invalidate_user(USER)
    assert USER not in service._locks


def test_offset_timestamps_still_get_goal_forecast(make_service):
    transactions = []
    for k in range(1, 7):
        stamp = add_months(NOW, -k).strftime("%Y-%m-%dT%H:%M:%SZ")
        transactions.append(Transaction(type="income", amount=1500, category="Salary", date=stamp))
        transactions.append(Transaction(type="expense", amount=1000, category="Rent", date=stamp))

    record = make_service(transactions, goal=car_goal).update_forecasts(USER)
    assert record.calculation_status == CalculationStatus.COMPLETED
    assert record.goal_forecast is not None
    assert record.goal_forecast.expected_months_to_goal == 16


def test_transaction_dates_are_converted_to_utc():
    entry = Transaction(type="expense", amount=10, category="Food", date="2026-05-15T14:00:00+02:00")
    assert entry.date == datetime(2026, 5, 15, 12, 0)
    assert entry.date.tzinfo is None


def test_aware_clock_is_accepted():
    aware_now = NOW.replace(tzinfo=timezone(timedelta(hours=2))) + timedelta(hours=2)
    service = ForecastService(
        ledger=FakeLedger(monthly_history(6)),
        goals=FakeGoalStore(car_goal),
        forecasts=FakeForecastStore(),
        clock=lambda: aware_now,
    )
    record = service.update_forecasts(USER)
    assert record.last_updated == NOW
    assert record.goal_forecast.expected_months_to_goal == 16
    assert service.get_goal_forecast(USER)["lastUpdated"] == NOW


def test_goal_query_without_goal_reuses_fresh_record(make_service):
    ledger = FakeLedger(monthly_history(12))
    service = make_service(ledger=ledger)
    service.update_forecasts(USER)
    reads = ledger.calls

    assert service.get_goal_forecast(USER) is None
    assert ledger.calls == reads
