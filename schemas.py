from datetime import datetime

from pydantic import BaseModel, ConfigDict


class TransactionIn(BaseModel):
    amount: float
    occurred_at: datetime
    category: str
    location: str
    description: str = ""


class TransactionRecord(TransactionIn):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
