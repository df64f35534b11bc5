from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends
from lotto.auth_deps import get_context, get_current_identity
from lotto.context import LottoContext
from lotto.errors import WalletNotLinked
from lotto.models.identity import Identity
from lotto.schemas.claim import ClaimPublic, ClaimRecord
from lotto.services.settlement import ClaimResult, claim_for_entry, claim_payout, claim_refund, entry_claims

router = APIRouter(prefix="/entries", tags=["claims"])

def _caller_wallet(ident: Identity) -> str:
    if not ident.wallet:
        raise WalletNotLinked(identity_id=ident.id)
    return ident.wallet

def _public(res: ClaimResult) -> ClaimPublic:
    return ClaimPublic(
        claim_id=res.claim_id, entry_id=res.entry_id, kind=res.kind, amount=res.amount,
        destination=res.destination, tx_id=res.tx_id, resumed=res.resumed,
    )

@router.post("/{entry_id}/claim", response_model=ClaimPublic)
async def claim(entry_id: UUID, ctx: LottoContext = Depends(get_context), ident: Identity = Depends(get_current_identity)):
    """Payout for the winner of a settled round, refund for entries of a void round."""
    return _public(await claim_for_entry(ctx, entry_id, _caller_wallet(ident)))

@router.post("/{entry_id}/claim/payout", response_model=ClaimPublic)
async def payout(entry_id: UUID, ctx: LottoContext = Depends(get_context), ident: Identity = Depends(get_current_identity)):
    return _public(await claim_payout(ctx, entry_id, _caller_wallet(ident)))

@router.post("/{entry_id}/claim/refund", response_model=ClaimPublic)
async def refund(entry_id: UUID, ctx: LottoContext = Depends(get_context), ident: Identity = Depends(get_current_identity)):
    return _public(await claim_refund(ctx, entry_id, _caller_wallet(ident)))

@router.get("/{entry_id}/claims", response_model=list[ClaimRecord])
async def claims(entry_id: UUID, ctx: LottoContext = Depends(get_context)):
    rows = await entry_claims(ctx, entry_id)
    return [
        ClaimRecord(
            id=c.id, entry_id=c.entry_id, kind=c.kind, amount=int(c.amount), destination=c.destination,
            status=c.status, tx_id=c.tx_id, created_at=c.created_at, confirmed_at=c.confirmed_at,
        ) for c in rows
    ]
