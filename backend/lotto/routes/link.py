from __future__ import annotations
from fastapi import APIRouter, Depends
from lotto.auth_deps import get_context, get_optional_identity
from lotto.context import LottoContext
from lotto.models.identity import Identity
from lotto.schemas.link import StartLinkRequest, StartLinkResponse, FinishLinkRequest, FinishLinkResponse
from lotto.security import make_access_token
from lotto.services.wallet_link import start_link, finish_link

router = APIRouter(prefix="/link", tags=["link"])

def _caller_id(caller: Identity | None) -> str | None:
    return caller.id if caller else None

@router.post("/start", response_model=StartLinkResponse)
async def link_start(
    payload: StartLinkRequest,
    ctx: LottoContext = Depends(get_context),
    caller: Identity | None = Depends(get_optional_identity),
):
    """Relinking an identity that already has a wallet needs that identity's bearer token."""
    message = await start_link(
        ctx, payload.identity_id, payload.wallet,
        caller_id=_caller_id(caller), verify_owner=True,
    )
    return StartLinkResponse(
        identity_id=payload.identity_id, message=message,
        expires_in=ctx.settings.link_challenge_ttl_seconds,
    )

@router.post("/finish", response_model=FinishLinkResponse)
async def link_finish(
    payload: FinishLinkRequest,
    ctx: LottoContext = Depends(get_context),
    caller: Identity | None = Depends(get_optional_identity),
):
    """Verify the signed challenge; a linked identity gets an access token."""
    wallet = await finish_link(
        ctx, payload.identity_id, payload.address, payload.signature,
        caller_id=_caller_id(caller), verify_owner=True,
    )
    return FinishLinkResponse(
        identity_id=payload.identity_id, wallet=wallet,
        access=make_access_token(payload.identity_id, ctx.settings),
    )
