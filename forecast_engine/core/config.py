from typing import Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # App settings
    PROJECT_NAME: str = "SmartForecastEngine"
    API_PREFIX: str = "/api"
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")

    # DynamoDB
    DYNAMO_REGION: str = Field(default="eu-west-1")
    DYNAMO_ENDPOINT_URL: Optional[str] = Field(default=None)
    DYNAMO_TRANSACTIONS_TABLE: str = Field(default="smart-finance-transactions")
    DYNAMO_GOALS_TABLE: str = Field(default="smart-finance-goals")
    DYNAMO_FORECASTS_TABLE: str = Field(default="smart-finance-forecasts")

    # Ledger windows (months)
    FORECAST_WINDOW_MONTHS: int = 36
    GOAL_WINDOW_MONTHS: int = 6
    CATEGORY_FALLBACK_MONTHS: int = 3
    FORECAST_HORIZON_MONTHS: int = 12

    # Cache durations (seconds)
    MODEL_CACHE_SECONDS: int = 2 * 60 * 60
    FORECAST_CACHE_SECONDS: int = 2 * 60 * 60
    GOAL_CACHE_SECONDS: int = 60 * 60

    # Regression model
    REGRESSION_MIN_POINTS: int = 6
    REGRESSION_HIDDEN_LAYERS: Tuple[int, ...] = (16, 8)
    REGRESSION_MAX_ITER: int = 500
    REGRESSION_RANDOM_STATE: int = 42

    FORECAST_METHOD: str = "mlp-arima-hybrid-v1"

    @field_validator("MODEL_CACHE_SECONDS", "FORECAST_CACHE_SECONDS")
    @classmethod
    def _within_cache_band(cls, value: int) -> int:
        if not 2 * 60 * 60 <= value <= 6 * 60 * 60:
            raise ValueError("cache duration must be between 2 and 6 hours")
        return value

    @model_validator(mode="after")
    def _goal_cache_shorter(self) -> "Settings":
        if self.GOAL_CACHE_SECONDS >= self.FORECAST_CACHE_SECONDS:
            raise ValueError("GOAL_CACHE_SECONDS must be shorter than FORECAST_CACHE_SECONDS")
        return self

    @property
    def default_forecast_method(self) -> str:
        return f"{self.FORECAST_METHOD}-default"


settings = Settings()
