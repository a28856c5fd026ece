import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from forecast_engine.core.config import Settings
from forecast_engine.core.exceptions import StoreError
from forecast_engine.models.forecast import CalculationStatus, ForecastRecord
from forecast_engine.models.goal import Goal
from forecast_engine.models.transaction import Transaction

logger = logging.getLogger(__name__)


def get_dynamodb_resource(config: Settings):
    """DynamoDB resource for the configured region (and local endpoint, if any)."""
    kwargs = {"region_name": config.DYNAMO_REGION}
    if config.DYNAMO_ENDPOINT_URL:
        kwargs["endpoint_url"] = config.DYNAMO_ENDPOINT_URL
    return boto3.resource("dynamodb", **kwargs)


def _error_message(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Message", str(e))


def _query_all(table, **kwargs) -> List[Dict[str, Any]]:
    """Run a query, following LastEvaluatedKey until every page is read."""
    items: List[Dict[str, Any]] = []
    while True:
        response = table.query(**kwargs)
        items.extend(response.get("Items", []))
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


class DynamoLedger:
    """Read side of the transactions table (PK user_id, SK transaction_id = ISO date prefix)."""

    def __init__(self, table) -> None:
        self.table = table

    def list_transactions(self, user_id: str, since: Optional[datetime] = None) -> List[Transaction]:
        condition = Key("user_id").eq(user_id)
        if since is not None:
            condition = condition & Key("transaction_id").gte(since.isoformat())
        try:
            items = _query_all(self.table, KeyConditionExpression=condition)
        except ClientError as e:
            logger.error(f"list_transactions failed for user {user_id}: {_error_message(e)}")
            raise StoreError("list_transactions", _error_message(e)) from e

        transactions = [Transaction(**_from_dynamo(item)) for item in items]
        transactions.sort(key=lambda tx: tx.date)
        return transactions


class DynamoGoalStore:
    def __init__(self, table) -> None:
        self.table = table

    def find_active_goal(self, user_id: str) -> Optional[Goal]:
        try:
            items = _query_all(
                self.table,
                KeyConditionExpression=Key("user_id").eq(user_id),
                FilterExpression=Attr("is_active").eq(True),
            )
        except ClientError as e:
            logger.error(f"find_active_goal failed for user {user_id}: {_error_message(e)}")
            raise StoreError("find_active_goal", _error_message(e)) from e

        if not items:
            return None
        if len(items) > 1:
            logger.warning(f"User {user_id} has {len(items)} active goals, using the first")
        return Goal(**_from_dynamo(items[0]))


class DynamoForecastStore:
    """One forecast document per user, stored with camelCase attribute names."""

    def __init__(self, table) -> None:
        self.table = table

    def upsert(self, user_id: str, record: ForecastRecord) -> ForecastRecord:
        item = record.to_document()
        item["user_id"] = user_id
        try:
            self.table.put_item(Item=_convert_for_dynamo(item))
        except ClientError as e:
            logger.error(f"upsert forecast failed for user {user_id}: {_error_message(e)}")
            raise StoreError("upsert_forecast", _error_message(e)) from e
        return record

    def find_one(self, user_id: str) -> Optional[ForecastRecord]:
        try:
            response = self.table.get_item(Key={"user_id": user_id})
        except ClientError as e:
            logger.error(f"find_one forecast failed for user {user_id}: {_error_message(e)}")
            raise StoreError("find_forecast", _error_message(e)) from e

        item = response.get("Item")
        if not item:
            return None
        data = _from_dynamo(item)
        data.setdefault("userId", data.pop("user_id", user_id))
        return ForecastRecord.model_validate(data)

    def update_progress(self, user_id: str, progress: int, status: CalculationStatus) -> None:
        try:
            self.table.update_item(
                Key={"user_id": user_id},
                UpdateExpression="SET #p = :p, #s = :s",
                ExpressionAttributeNames={"#p": "calculationProgress", "#s": "calculationStatus"},
                ExpressionAttributeValues={":p": progress, ":s": status.value},
            )
        except ClientError as e:
            raise StoreError("update_progress", _error_message(e)) from e


def _convert_for_dynamo(obj: Any):
    """
    Recursively convert floats to Decimal and datetimes to ISO strings for DynamoDB.
    """
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {k: _convert_for_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_convert_for_dynamo(v) for v in obj]
    return obj


def _from_dynamo(obj: Any):
    """
    Recursively convert Decimal instances back to native Python numeric types.
    """
    if isinstance(obj, list):
        return [_from_dynamo(item) for item in obj]
    if isinstance(obj, dict):
        return {k: _from_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    return obj
