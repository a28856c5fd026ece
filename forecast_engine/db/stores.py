"""
Store Interfaces
Collaborators the forecasting engine reads from and writes to
"""
from datetime import datetime
from typing import List, Optional, Protocol

from forecast_engine.models.forecast import CalculationStatus, ForecastRecord
from forecast_engine.models.goal import Goal
from forecast_engine.models.transaction import Transaction


class LedgerReader(Protocol):
    def list_transactions(self, user_id: str, since: Optional[datetime] = None) -> List[Transaction]:
        """Entries with date >= since (all entries when since is None), date ascending."""
        ...


class GoalStore(Protocol):
    def find_active_goal(self, user_id: str) -> Optional[Goal]:
        ...


class ForecastStore(Protocol):
    def upsert(self, user_id: str, record: ForecastRecord) -> ForecastRecord:
        ...

    def find_one(self, user_id: str) -> Optional[ForecastRecord]:
        ...

    def update_progress(self, user_id: str, progress: int, status: CalculationStatus) -> None:
        ...
