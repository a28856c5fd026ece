from datetime import datetime
from decimal import Decimal

import boto3
import pytest
from botocore.stub import Stubber

from forecast_engine.core.exceptions import StoreError
from forecast_engine.db.dynamo import (
    DynamoForecastStore,
    DynamoGoalStore,
    DynamoLedger,
    _convert_for_dynamo,
    _from_dynamo,
)
from forecast_engine.models.forecast import CalculationStatus, ForecastRecord


def make_table(name):
    session = boto3.session.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="eu-west-1",
    )
    table = session.resource("dynamodb").Table(name)
    return table, Stubber(table.meta.client)


def transaction_item(transaction_id, kind, amount, category):
    return {
        "user_id": {"S": "user-1"},
        "transaction_id": {"S": transaction_id},
        "type": {"S": kind},
        "amount": {"N": amount},
        "category": {"S": category},
        "date": {"S": transaction_id.split("#")[0]},
    }


def test_ledger_follows_pagination_and_sorts_by_date():
    table, stubber = make_table("transactions")
    stubber.add_response("query", {
        "Items": [transaction_item("2026-05-20T09:00:00#b", "expense", "120.5", "Food")],
        "LastEvaluatedKey": {"user_id": {"S": "user-1"}, "transaction_id": {"S": "2026-05-20T09:00:00#b"}},
    })
    stubber.add_response("query", {
        "Items": [transaction_item("2026-05-01T09:00:00#a", "income", "1500", "Salary")],
    })

    with stubber:
        transactions = DynamoLedger(table).list_transactions("user-1", datetime(2026, 1, 1))

    assert [t.category for t in transactions] == ["Salary", "Food"]
    assert transactions[1].amount == 120.5
    assert transactions[0].type.value == "income"


def test_ledger_errors_become_store_errors():
    table, stubber = make_table("transactions")
    stubber.add_client_error("query", service_error_code="ProvisionedThroughputExceededException", service_message="slow down")

    with stubber, pytest.raises(StoreError) as excinfo:
        DynamoLedger(table).list_transactions("user-1")
    assert excinfo.value.operation == "list_transactions"


def test_goal_store_without_active_goal():
    table, stubber = make_table("goals")
    stubber.add_response("query", {"Items": []})

    with stubber:
        assert DynamoGoalStore(table).find_active_goal("user-1") is None


def test_forecast_store_reads_camel_case_document():
    table, stubber = make_table("forecasts")
    stubber.add_response("get_item", {"Item": {
        "user_id": {"S": "user-1"},
        "userId": {"S": "user-1"},
        "budgetForecasts": {"L": []},
        "goalForecast": {"NULL": True},
        "calculationStatus": {"S": "completed"},
        "calculationProgress": {"N": "100"},
        "confidenceScore": {"N": "72.5"},
        "lastUpdated": {"S": "2026-06-15T12:00:00"},
        "forecastMethod": {"S": "mlp-arima-hybrid-v1"},
    }})

    with stubber:
        record = DynamoForecastStore(table).find_one("user-1")

    assert record.user_id == "user-1"
    assert record.calculation_status == CalculationStatus.COMPLETED
    assert record.confidence_score == 72.5
    assert record.goal_forecast is None


def test_forecast_store_upsert_and_progress():
    table, stubber = make_table("forecasts")
    stubber.add_response("put_item", {})
    stubber.add_response("update_item", {})

    store = DynamoForecastStore(table)
    record = ForecastRecord(user_id="user-1", confidence_score=61.5, last_updated=datetime(2026, 6, 15))
    with stubber:
        assert store.upsert("user-1", record) is record
        store.update_progress("user-1", 40, CalculationStatus.IN_PROGRESS)
    stubber.assert_no_pending_responses()


def test_dynamo_converters():
    converted = _convert_for_dynamo({"amount": 12.5, "flag": True, "when": datetime(2026, 1, 2), "sizes": (16, 8)})
    assert converted == {"amount": Decimal("12.5"), "flag": True, "when": "2026-01-02T00:00:00", "sizes": [16, 8]}
    assert _from_dynamo({"a": Decimal("3"), "b": [Decimal("2.5")]}) == {"a": 3, "b": [2.5]}
