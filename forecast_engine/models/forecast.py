from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from forecast_engine.utils.date_utils import to_naive_utc


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase in the persisted document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class CalculationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class CategoryPrediction(CamelModel):
    amount: float = Field(default=0, ge=0)
    type: str = "expense"


class Confidence(CamelModel):
    expense: float = Field(default=50, ge=0, le=100)
    income: float = Field(default=50, ge=0, le=100)
    balance: float = Field(default=50, ge=0, le=100)


class MonthProjection(CamelModel):
    date: datetime
    month_str: str
    projected_expense: float = Field(..., ge=0)
    projected_income: float = Field(..., ge=0)
    projected_balance: float = Field(..., ge=0)
    category_predictions: Dict[str, CategoryPrediction] = Field(default_factory=dict)
    confidence: Confidence = Field(default_factory=Confidence)
    risk_assessment: float = Field(default=50, ge=0, le=100)


class RiskFactor(CamelModel):
    type: str
    severity: float = Field(default=50, ge=0, le=100)
    description: str = "Risk factor"


class GoalProjection(CamelModel):
    goal_id: str
    expected_months_to_goal: int = Field(..., ge=1)
    best_case_months_to_goal: int = Field(..., ge=1)
    worst_case_months_to_goal: int = Field(..., ge=1, le=120)
    projected_date: datetime
    monthly_savings: float = Field(..., ge=0)
    savings_variability: float = Field(..., ge=0)
    probability: float = Field(..., ge=0, le=100)
    risk_factors: List[RiskFactor] = Field(default_factory=list)


class DataQuality(CamelModel):
    transaction_count: int = 0
    months_of_data: int = 1
    completeness: float = 0


class ForecastRecord(CamelModel):
    user_id: str
    budget_forecasts: List[MonthProjection] = Field(default_factory=list)
    goal_forecast: Optional[GoalProjection] = None
    calculation_status: CalculationStatus = CalculationStatus.PENDING
    calculation_progress: int = Field(default=0, ge=0, le=100)
    confidence_score: float = Field(default=50, ge=0, le=100)
    last_updated: datetime = Field(default_factory=datetime.utcnow)
    forecast_method: str = ""
    calculation_time: int = 0
    data_quality: DataQuality = Field(default_factory=DataQuality)

    @field_validator("last_updated")
    @classmethod
    def _utc_last_updated(cls, value: datetime) -> datetime:
        return to_naive_utc(value)
