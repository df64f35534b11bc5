from __future__ import annotations
from pydantic import BaseModel, Field

class StartLinkRequest(BaseModel):
    identity_id: str = Field(min_length=1, max_length=64)
    wallet: str | None = Field(default=None, description="Optional wallet the signature must come from")

class StartLinkResponse(BaseModel):
    identity_id: str
    message: str
    expires_in: int

class FinishLinkRequest(BaseModel):
    identity_id: str = Field(min_length=1, max_length=64)
    address: str
    signature: str = Field(description="Ed25519 signature of the challenge message, base58 or base64")

class FinishLinkResponse(BaseModel):
    identity_id: str
    wallet: str
    access: str
