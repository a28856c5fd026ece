from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException, status

from forecast_engine.core.config import settings
from forecast_engine.db.dynamo import DynamoForecastStore, DynamoGoalStore, DynamoLedger, get_dynamodb_resource
from forecast_engine.services.forecast_service import ForecastService


@lru_cache(maxsize=1)
def get_forecast_service() -> ForecastService:
    """One service (and therefore one set of caches) per process."""
    dynamodb = get_dynamodb_resource(settings)
    return ForecastService(
        ledger=DynamoLedger(dynamodb.Table(settings.DYNAMO_TRANSACTIONS_TABLE)),
        goals=DynamoGoalStore(dynamodb.Table(settings.DYNAMO_GOALS_TABLE)),
        forecasts=DynamoForecastStore(dynamodb.Table(settings.DYNAMO_FORECASTS_TABLE)),
        config=settings,
    )


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """User id forwarded by the authenticating gateway"""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User id required")
    return x_user_id
