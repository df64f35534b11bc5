from __future__ import annotations
from pydantic import BaseModel, Field, model_validator
from typing import Literal
from uuid import UUID
from datetime import datetime

RoundStatus = Literal["OPEN", "CLOSED", "SETTLED", "VOID"]

class CreateRoundRequest(BaseModel):
    ticket_price: int = Field(gt=0)
    max_entries: int = Field(ge=1)
    duration_seconds: int | None = Field(default=None, gt=0)
    deadline: datetime | None = None
    fee_bps: int | None = Field(default=None, ge=0, lt=10_000)
    min_entries: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _one_deadline(self):
        if (self.duration_seconds is None) == (self.deadline is None):
            raise ValueError("give exactly one of duration_seconds or deadline")
        return self

class JoinRequest(BaseModel):
    stake: int = Field(gt=0)
    tickets: int | None = Field(default=None, ge=1)

class EntryPublic(BaseModel):
    id: UUID
    round_id: UUID
    position: int
    identity_id: str
    wallet: str
    stake: int
    tickets: int
    claimed: bool
    created_at: datetime

class RoundPublic(BaseModel):
    id: UUID
    authority: str
    status: RoundStatus
    ticket_price: int
    fee_bps: int
    max_entries: int
    min_entries: int
    pot_total: int
    entry_count: int
    ticket_count: int
    created_at: datetime
    closes_at: datetime
    closed_at: datetime | None = None
    close_reason: str | None = None
    settled_at: datetime | None = None
    voided_at: datetime | None = None
    winner_identity_id: str | None = None
    winning_entry_id: UUID | None = None
    payout_amount: int | None = None
    house_fee: int | None = None

class RoundDetail(RoundPublic):
    entries: list[EntryPublic]

class SettlementPublic(BaseModel):
    round_id: UUID
    winning_entry_id: UUID
    winner_identity_id: str
    winner_wallet: str
    winning_ticket: int
    pot_total: int
    payout: int
    house_fee: int

class LedgerSnapshot(BaseModel):
    round_id: UUID
    status: RoundStatus
    pot_total: int
    entry_sum: int
    entry_count: int
    ticket_count: int
    paid_out: int
    consistent: bool
    entries: list[EntryPublic]
