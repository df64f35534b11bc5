from __future__ import annotations
from pydantic import BaseModel, Field
from datetime import datetime

class WebIdentityRequest(BaseModel):
    username: str | None = Field(default=None, max_length=64)

class TelegramIdentityRequest(BaseModel):
    telegram_id: int = Field(gt=0)
    username: str | None = Field(default=None, max_length=64)

class IdentityPublic(BaseModel):
    id: str
    wallet: str | None = None
    telegram_id: str | None = None
    username: str | None = None
    created_at: datetime
