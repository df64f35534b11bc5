from __future__ import annotations
from fastapi import APIRouter, Depends
from lotto.auth_deps import get_context, get_current_identity
from lotto.context import LottoContext
from lotto.models.identity import Identity
from lotto.schemas.identity import WebIdentityRequest, TelegramIdentityRequest, IdentityPublic
from lotto.services.identity import create_web_identity, get_or_create_telegram_identity

router = APIRouter(prefix="/identities", tags=["identities"])

def _public(ident: Identity) -> IdentityPublic:
    return IdentityPublic(
        id=ident.id, wallet=ident.wallet, telegram_id=ident.telegram_id,
        username=ident.username, created_at=ident.created_at,
    )

@router.post("/web", status_code=201, response_model=IdentityPublic)
async def new_web_identity(payload: WebIdentityRequest, ctx: LottoContext = Depends(get_context)):
    return _public(await create_web_identity(ctx, payload.username))

@router.post("/telegram", response_model=IdentityPublic)
async def telegram_identity(payload: TelegramIdentityRequest, ctx: LottoContext = Depends(get_context)):
    """Idempotent: returns the existing tg_<id> identity on repeat calls."""
    return _public(await get_or_create_telegram_identity(ctx, payload.telegram_id, payload.username))

@router.get("/me", response_model=IdentityPublic)
async def me(ident: Identity = Depends(get_current_identity)):
    return _public(ident)
