from __future__ import annotations
from pydantic import BaseModel
from typing import Literal
from uuid import UUID
from datetime import datetime

ClaimKind = Literal["PAYOUT", "REFUND"]

class ClaimPublic(BaseModel):
    claim_id: UUID
    entry_id: UUID
    kind: ClaimKind
    amount: int
    destination: str
    tx_id: str
    resumed: bool = False

class ClaimRecord(BaseModel):
    id: UUID
    entry_id: UUID
    kind: ClaimKind
    amount: int
    destination: str
    status: Literal["PENDING", "CONFIRMED"]
    tx_id: str | None = None
    created_at: datetime
    confirmed_at: datetime | None = None
