from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from forecast_engine.utils.date_utils import to_naive_utc


class Goal(BaseModel):
    goal_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    title: str = ""
    target_amount: float = Field(..., ge=0)
    current_amount: float = Field(default=0, ge=0)
    deadline: Optional[datetime] = None
    is_active: bool = False
    highest_amount: float = 0

    @field_validator("deadline")
    @classmethod
    def _utc_deadline(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    @property
    def remaining(self) -> float:
        return self.target_amount - self.current_amount
