"""
Unit of Work
Groups one user's ledger and goal writes into a single DynamoDB transaction.
Forecasts are recomputed only after a successful commit.
"""
import logging
from typing import Any, Dict, List, Optional

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from forecast_engine.core.config import Settings
from forecast_engine.core.exceptions import StoreError
from forecast_engine.db.dynamo import _convert_for_dynamo
from forecast_engine.models.forecast import ForecastRecord
from forecast_engine.models.goal import Goal
from forecast_engine.models.transaction import TransactionInDB, TransactionType

logger = logging.getLogger(__name__)

_serializer = TypeSerializer()


def _serialize(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serializer.serialize(v) for k, v in _convert_for_dynamo(item).items()}


def apply_goal_progress(goal: Goal, balance_change: float) -> Goal:
    """
    New goal state after a balance change. Gains are capped at the target and
    raise the high-water mark (an achieved goal is deactivated); losses only
    reduce the saved amount while it stays below that high-water mark.
    """
    if balance_change > 0:
        new_amount = min(goal.current_amount + balance_change, goal.target_amount)
        return goal.model_copy(update={
            "current_amount": new_amount,
            "highest_amount": max(new_amount, goal.highest_amount),
            "is_active": new_amount < goal.target_amount,
        })

    potential = goal.current_amount + balance_change
    if potential < goal.highest_amount:
        return goal.model_copy(update={"current_amount": max(0.0, potential)})
    return goal


class DynamoUnitOfWork:
    """
    Usage::

        with DynamoUnitOfWork(client, settings, service, user_id) as uow:
            uow.add_transaction(tx)
            uow.commit()
        uow.forecast  # recomputed record
    """

    def __init__(self, client, config: Settings, forecast_service, user_id: str) -> None:
        self._client = client
        self._settings = config
        self._service = forecast_service
        self.user_id = user_id
        self._items: List[Dict[str, Any]] = []
        self.committed = False
        self.forecast: Optional[ForecastRecord] = None

    def __enter__(self) -> "DynamoUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None or not self.committed:
            self.rollback()

    def add_transaction(self, transaction: TransactionInDB) -> float:
        """Queue a ledger write; returns the resulting balance change."""
        if transaction.user_id != self.user_id:
            raise ValueError("transaction belongs to a different user")
        self._items.append({
            "Put": {
                "TableName": self._settings.DYNAMO_TRANSACTIONS_TABLE,
                "Item": _serialize(transaction.model_dump(mode="json")),
            }
        })
        return transaction.amount if transaction.type == TransactionType.INCOME else -transaction.amount

    def update_goal(self, goal: Goal) -> None:
        self._items.append({
            "Put": {
                "TableName": self._settings.DYNAMO_GOALS_TABLE,
                "Item": _serialize(goal.model_dump(mode="json")),
            }
        })

    def rollback(self) -> None:
        if self._items:
            logger.info(f"Discarding {len(self._items)} pending writes for user {self.user_id}")
        self._items.clear()

    def commit(self) -> Optional[ForecastRecord]:
        if self._items:
            try:
                self._client.transact_write_items(TransactItems=self._items)
            except ClientError as e:
                self.rollback()
                raise StoreError("transact_write_items", e.response.get("Error", {}).get("Message", str(e))) from e
            logger.info(f"Committed {len(self._items)} writes for user {self.user_id}")
            self._items.clear()

        self.committed = True
        self.forecast = self._service.update_forecasts(self.user_id, invalidate=True)
        return self.forecast
