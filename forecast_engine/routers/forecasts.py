import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder

from forecast_engine.core.deps import get_current_user_id, get_forecast_service
from forecast_engine.core.exceptions import ForecastEngineError
from forecast_engine.services.forecast_service import ForecastService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/")
def get_forecasts(
    user_id: str = Depends(get_current_user_id),
    service: ForecastService = Depends(get_forecast_service),
) -> Dict:
    """
    Recompute and return the user's 12-month forecast.
    """
    try:
        record = service.update_forecasts(user_id)
    except ForecastEngineError as e:
        logger.error(f"Failed to generate forecasts for user {user_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Failed to generate forecasts")

    return {
        "data": record.to_document(),
        "meta": {
            "forecastMethod": record.forecast_method,
            "confidence": record.confidence_score,
            "lastUpdated": record.last_updated.isoformat(),
        },
    }


@router.get("/goal")
def get_goal_forecast(
    user_id: str = Depends(get_current_user_id),
    service: ForecastService = Depends(get_forecast_service),
) -> Dict:
    try:
        result = service.get_goal_forecast(user_id)
    except ForecastEngineError as e:
        logger.error(f"Failed to generate goal forecast for user {user_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Failed to generate goal forecast")

    if not result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active goal forecasts found")
    return {"data": jsonable_encoder(result), "meta": {"lastUpdated": result["lastUpdated"].isoformat()}}


@router.get("/categories")
def get_category_forecast(
    category: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    service: ForecastService = Depends(get_forecast_service),
) -> Dict:
    try:
        result = service.get_category_forecast(user_id, category)
    except ForecastEngineError as e:
        logger.error(f"Failed to generate category forecasts for user {user_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Failed to generate category forecasts")

    if not result or not result["categories"]:
        detail = f'No forecasts found for category "{category}"' if category else "No category forecasts found"
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return {"data": jsonable_encoder(result), "meta": {"lastUpdated": result["lastUpdated"].isoformat()}}
