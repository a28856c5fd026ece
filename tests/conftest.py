from datetime import datetime
from typing import Dict, List, Optional

import pytest

from forecast_engine.core.exceptions import StoreError
from forecast_engine.models.forecast import CalculationStatus, ForecastRecord
from forecast_engine.models.goal import Goal
from forecast_engine.models.transaction import Transaction, TransactionType
from forecast_engine.services.forecast_service import ForecastService
from forecast_engine.utils.date_utils import add_months

NOW = datetime(2026, 6, 15, 12, 0, 0)
USER = "user-1"


def tx(kind: str, amount: float, category: str, date: datetime) -> Transaction:
    return Transaction(type=TransactionType(kind), amount=amount, category=category, date=date)


def monthly_history(months: int, expense: float = 1000.0, income: float = 1500.0) -> List[Transaction]:
    """One income and two expense entries per month for the trailing ``months`` months."""
    transactions = []
    for k in range(1, months + 1):
        date = add_months(NOW, -k)
        transactions.append(tx("income", income, "Salary", date))
        transactions.append(tx("expense", expense * 0.8, "Rent", date))
        transactions.append(tx("expense", expense * 0.2, "Food", date))
    return transactions


class FakeLedger:
    def __init__(self, transactions: Optional[List[Transaction]] = None, fail: bool = False):
        self.transactions = list(transactions or [])
        self.fail = fail
        self.calls = 0

    def list_transactions(self, user_id: str, since: Optional[datetime] = None) -> List[Transaction]:
        self.calls += 1
        if self.fail:
            raise StoreError("list_transactions", "ledger unreachable")
        selected = [t for t in self.transactions if since is None or t.date >= since]
        return sorted(selected, key=lambda t: t.date)


class FakeGoalStore:
    def __init__(self, goal: Optional[Goal] = None, fail: bool = False):
        self.goal = goal
        self.fail = fail

    def find_active_goal(self, user_id: str) -> Optional[Goal]:
        if self.fail:
            raise StoreError("find_active_goal", "goal store unreachable")
        return self.goal if self.goal and self.goal.is_active else None


class FakeForecastStore:
    def __init__(self):
        self.records: Dict[str, ForecastRecord] = {}
        self.progress_log: List[tuple] = []

    def upsert(self, user_id: str, record: ForecastRecord) -> ForecastRecord:
        self.records[user_id] = record
        return record

    def find_one(self, user_id: str) -> Optional[ForecastRecord]:
        return self.records.get(user_id)

    def update_progress(self, user_id: str, progress: int, status: CalculationStatus) -> None:
        self.progress_log.append((progress, status))


@pytest.fixture
def forecast_store():
    return FakeForecastStore()


@pytest.fixture
def make_service(forecast_store):
    def _make(transactions=None, goal=None, ledger=None, goals=None):
        return ForecastService(
            ledger=ledger or FakeLedger(transactions),
            goals=goals or FakeGoalStore(goal),
            forecasts=forecast_store,
            clock=lambda: NOW,
        )
    return _make
