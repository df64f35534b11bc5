from __future__ import annotations
from pydantic import BaseModel
from datetime import datetime

class BalancePublic(BaseModel):
    address: str
    amount: int
    decimals: int
    ui_amount: float
    tier: str
    status: str
    fetched_at: datetime
