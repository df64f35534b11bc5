from __future__ import annotations
from datetime import timedelta
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException
from lotto.auth_deps import get_context, get_current_identity, authority_key
from lotto.context import LottoContext
from lotto.models.identity import Identity
from lotto.models.round import Round, Entry
from lotto.schemas.round import (
    CreateRoundRequest, JoinRequest, RoundPublic, RoundDetail, EntryPublic, SettlementPublic, LedgerSnapshot,
)
from lotto.services.rounds import (
    create_round, join_round, close_round, void_round, current_round, round_detail, REASON_ADMIN,
)
from lotto.services.settlement import settle_round

router = APIRouter(prefix="/rounds", tags=["rounds"])

def _round(rnd: Round) -> RoundPublic:
    return RoundPublic.model_validate(rnd, from_attributes=True)

def _entry(e: Entry) -> EntryPublic:
    return EntryPublic(
        id=e.id, round_id=e.round_id, position=e.position, identity_id=e.identity_id, wallet=e.wallet,
        stake=int(e.stake), tickets=int(e.tickets), claimed=e.claimed, created_at=e.created_at,
    )

@router.post("", status_code=201, response_model=RoundPublic)
async def new_round(payload: CreateRoundRequest, ctx: LottoContext = Depends(get_context), key: str | None = Depends(authority_key)):
    rnd = await create_round(
        ctx, key,
        ticket_price=payload.ticket_price,
        max_entries=payload.max_entries,
        duration=timedelta(seconds=payload.duration_seconds) if payload.duration_seconds else None,
        deadline=payload.deadline,
        fee_bps=payload.fee_bps,
        min_entries=payload.min_entries,
    )
    return _round(rnd)

@router.get("/current", response_model=RoundPublic)
async def get_current(ctx: LottoContext = Depends(get_context)):
    rnd = await current_round(ctx)
    if rnd is None:
        raise HTTPException(status_code=404, detail="No open round")
    return _round(rnd)

@router.get("/{round_id}", response_model=RoundDetail)
async def get_one(round_id: UUID, ctx: LottoContext = Depends(get_context)):
    rnd, entries, _snap = await round_detail(ctx, round_id)
    return RoundDetail(**_round(rnd).model_dump(), entries=[_entry(e) for e in entries])

@router.post("/{round_id}/join", status_code=201, response_model=EntryPublic)
async def join(round_id: UUID, payload: JoinRequest, ctx: LottoContext = Depends(get_context), ident: Identity = Depends(get_current_identity)):
    entry = await join_round(ctx, round_id, ident.id, payload.stake, payload.tickets)
    return _entry(entry)

@router.post("/{round_id}/close", response_model=RoundPublic)
async def close(round_id: UUID, ctx: LottoContext = Depends(get_context), key: str | None = Depends(authority_key)):
    """Admin close. A round below its minimum entry count comes back VOID."""
    return _round(await close_round(ctx, round_id, REASON_ADMIN, key))

@router.post("/{round_id}/void", response_model=RoundPublic)
async def void(round_id: UUID, ctx: LottoContext = Depends(get_context), key: str | None = Depends(authority_key)):
    return _round(await void_round(ctx, round_id, key))

@router.post("/{round_id}/settle", response_model=SettlementPublic)
async def settle(round_id: UUID, ctx: LottoContext = Depends(get_context), key: str | None = Depends(authority_key)):
    res = await settle_round(ctx, round_id, key)
    return SettlementPublic(
        round_id=res.round_id, winning_entry_id=res.winning_entry_id, winner_identity_id=res.winner_identity_id,
        winner_wallet=res.winner_wallet, winning_ticket=res.winning_ticket, pot_total=res.pot_total,
        payout=res.payout, house_fee=res.house_fee,
    )

@router.get("/{round_id}/ledger", response_model=LedgerSnapshot)
async def ledger(round_id: UUID, ctx: LottoContext = Depends(get_context)):
    rnd, entries, snap = await round_detail(ctx, round_id)
    return LedgerSnapshot(
        round_id=rnd.id, status=rnd.status, pot_total=snap.pot_total, entry_sum=snap.entry_sum,
        entry_count=snap.entry_count, ticket_count=snap.ticket_count, paid_out=snap.paid_out,
        consistent=snap.consistent, entries=[_entry(e) for e in entries],
    )
