from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from forecast_engine.utils.date_utils import to_naive_utc


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class Transaction(BaseModel):
    """A single ledger entry as the forecasting engine reads it."""

    type: TransactionType
    amount: float = Field(..., gt=0)
    category: str
    date: datetime = Field(default_factory=datetime.utcnow)
    description: Optional[str] = ""

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: datetime) -> datetime:
        # ledger timestamps may carry an offset ("...Z"); the engine works in naive UTC
        return to_naive_utc(value)


class TransactionInDB(Transaction):
    user_id: str
    # ISO timestamp prefix keeps the sort key range-queryable by date
    transaction_id: str = ""

    def model_post_init(self, __context) -> None:
        if not self.transaction_id:
            self.transaction_id = f"{self.date.isoformat()}#{uuid4().hex[:8]}"
