from __future__ import annotations
import asyncio
import random
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from lotto.clock import as_utc
from lotto.context import LottoContext
from lotto.errors import (
    AlreadyClaimed, AlreadySettled, EntryNotFound, InvalidFee, NoEntries, NotWinner,
    RefundUnavailable, RoundNotClosed, RoundVoided, TransferFailed, WalletMismatch,
)
from lotto.models.claim import Claim, PAYOUT, REFUND, PENDING, CONFIRMED
from lotto.models.round import Round, Entry, CLOSED, SETTLED, VOID
from lotto.security import check_authority
from lotto.services.ledger import assert_pot_consistent, list_entries
from lotto.services.rounds import BPS_DIVISOR, REASON_EXPIRED, void_in_session, load_round

log = structlog.get_logger()

# ---------- pure helpers ----------

def split_pot(pot: int, fee_bps: int) -> tuple[int, int]:
    """(payout, house_fee). Floor division; the remainder stays with the house."""
    if not 0 <= fee_bps < BPS_DIVISOR:
        raise InvalidFee(fee_bps=fee_bps)
    payout = pot * (BPS_DIVISOR - fee_bps) // BPS_DIVISOR
    return payout, pot - payout


def draw_winner(entries: Sequence[Entry], rng: random.Random) -> tuple[Entry, int]:
    """
    Uniform per ticket: draw k in [0, total tickets) and walk the entries in
    order until the cumulative ticket count passes k. An entry holding N
    tickets is N times as likely to win as a 1-ticket entry.
    Returns (winning entry, winning ticket number).
    """
    total = sum(int(e.tickets) for e in entries)
    if total <= 0:
        raise NoEntries()
    k = rng.randrange(total)
    acc = 0
    for e in entries:
        acc += int(e.tickets)
        if k < acc:
            return e, k
    raise NoEntries()  # unreachable with total > 0


@dataclass(frozen=True)
class SettlementResult:
    round_id: UUID
    winning_entry_id: UUID
    winner_identity_id: str
    winner_wallet: str
    winning_ticket: int
    pot_total: int
    payout: int
    house_fee: int


@dataclass(frozen=True)
class ClaimResult:
    claim_id: UUID
    entry_id: UUID
    kind: str
    amount: int
    destination: str
    tx_id: str
    resumed: bool  # a PENDING claim from an earlier attempt was completed

# ---------- settle ----------

async def settle_round(
    ctx: LottoContext,
    round_id: UUID,
    credential: str | None,
    rng: random.Random | None = None,
) -> SettlementResult:
    """
    CLOSED -> SETTLED, once. Picks the winner and fixes the payout / fee split.
    A closed round below its minimum entry count is voided instead (RoundVoided).
    """
    check_authority(credential, ctx.settings)

    voided = False
    result: SettlementResult | None = None
    async with ctx.locks.hold(f"round:{round_id}"):
        async with ctx.sessions() as session:
            async with session.begin():
                rnd = await load_round(session, round_id, for_update=True)
                if rnd.status == SETTLED:
                    raise AlreadySettled(round_id=str(round_id))
                if rnd.status != CLOSED:
                    raise RoundNotClosed(round_id=str(round_id), status=rnd.status)
                now = ctx.now()
                if rnd.close_reason == REASON_EXPIRED and now < as_utc(rnd.closes_at):
                    raise RoundNotClosed("deadline has not elapsed", round_id=str(round_id))
                if rnd.entry_count == 0:
                    raise NoEntries(round_id=str(round_id))

                if rnd.entry_count < rnd.min_entries:
                    await void_in_session(session, rnd, now)
                    voided = True
                else:
                    await assert_pot_consistent(session, rnd)
                    entries = await list_entries(session, rnd.id)
                    winner, ticket = draw_winner(entries, rng or ctx.rng)
                    payout, fee = split_pot(int(rnd.pot_total), int(rnd.fee_bps))

                    res = await session.execute(
                        update(Round)
                        .where(Round.id == rnd.id, Round.status == CLOSED, Round.winning_entry_id.is_(None))
                        .values(
                            status=SETTLED,
                            settled_at=now,
                            winner_identity_id=winner.identity_id,
                            winning_entry_id=winner.id,
                            payout_amount=payout,
                            house_fee=fee,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount != 1:
                        raise AlreadySettled(round_id=str(round_id))
                    await session.refresh(rnd)

                    result = SettlementResult(
                        round_id=rnd.id,
                        winning_entry_id=winner.id,
                        winner_identity_id=winner.identity_id,
                        winner_wallet=winner.wallet,
                        winning_ticket=ticket,
                        pot_total=int(rnd.pot_total),
                        payout=payout,
                        house_fee=fee,
                    )

    if voided:
        raise RoundVoided(round_id=str(round_id))
    log.info(
        "round_settled", round_id=str(round_id), winning_entry_id=str(result.winning_entry_id),
        winner=result.winner_identity_id, pot_total=result.pot_total, payout=result.payout, house_fee=result.house_fee,
    )
    return result

# ---------- claims ----------

def idempotency_key(kind: str, entry_id: UUID) -> str:
    return f"{kind.lower()}:{entry_id}"


async def _open_claim(ctx: LottoContext, entry_id: UUID, caller_address: str, kind: str) -> tuple[Claim, bool]:
    """Phase 1: validate and persist a PENDING claim (or pick up the one a failed attempt left behind)."""
    async with ctx.sessions() as session:
        async with session.begin():
            entry = await session.scalar(select(Entry).where(Entry.id == entry_id).with_for_update())
            if entry is None:
                raise EntryNotFound(entry_id=str(entry_id))
            rnd = await session.get(Round, entry.round_id)

            if kind == PAYOUT:
                if rnd.status != SETTLED or rnd.winning_entry_id != entry.id:
                    raise NotWinner(entry_id=str(entry_id), round_status=rnd.status)
                amount = int(rnd.payout_amount or 0)
            else:
                if rnd.status != VOID:
                    raise RefundUnavailable(entry_id=str(entry_id), round_status=rnd.status)
                amount = int(entry.stake)

            if entry.claimed:
                raise AlreadyClaimed(entry_id=str(entry_id))
            if caller_address != entry.wallet:
                raise WalletMismatch("caller wallet is not the entry's wallet", entry_id=str(entry_id))

            key = idempotency_key(kind, entry.id)
            claim = await session.scalar(select(Claim).where(Claim.idempotency_key == key))
            if claim is not None:
                if claim.status == CONFIRMED:
                    raise AlreadyClaimed(entry_id=str(entry_id))
                return claim, True

            claim = Claim(
                entry_id=entry.id,
                kind=kind,
                amount=amount,
                destination=entry.wallet,
                idempotency_key=key,
                status=PENDING,
                created_at=ctx.now(),
            )
            session.add(claim)
            await session.flush()
    return claim, False


async def _claim(ctx: LottoContext, entry_id: UUID, caller_address: str, kind: str) -> ClaimResult:
    async with ctx.locks.hold(f"entry:{entry_id}"):
        try:
            claim, resumed = await _open_claim(ctx, entry_id, caller_address, kind)
        except IntegrityError:
            # another process inserted the same idempotency key first; continue its claim
            claim, resumed = await _open_claim(ctx, entry_id, caller_address, kind)

        # Phase 2: move the money. Same key on every retry, so the sink pays once.
        try:
            tx_id = await asyncio.wait_for(
                ctx.transfers.transfer(claim.destination, claim.amount, claim.idempotency_key),
                ctx.settings.external_timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.warning("transfer_failed", claim_id=str(claim.id), entry_id=str(entry_id), error="timeout")
            raise TransferFailed("payout transfer timed out, retry the claim", idempotency_key=claim.idempotency_key)
        except TransferFailed as e:
            log.warning("transfer_failed", claim_id=str(claim.id), entry_id=str(entry_id), error=e.message)
            raise

        # Phase 3: flip the flag only now that funds moved
        now = ctx.now()
        async with ctx.sessions() as session:
            async with session.begin():
                res = await session.execute(
                    update(Entry)
                    .where(Entry.id == entry_id, Entry.claimed.is_(False))
                    .values(claimed=True)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    raise AlreadyClaimed(entry_id=str(entry_id))
                await session.execute(
                    update(Claim)
                    .where(Claim.id == claim.id, Claim.status == PENDING)
                    .values(status=CONFIRMED, tx_id=tx_id, confirmed_at=now)
                    .execution_options(synchronize_session=False)
                )

    log.info(
        "claim_confirmed", claim_id=str(claim.id), entry_id=str(entry_id), kind=kind,
        amount=claim.amount, destination=claim.destination, tx_id=tx_id, resumed=resumed,
    )
    return ClaimResult(
        claim_id=claim.id, entry_id=entry_id, kind=kind, amount=claim.amount,
        destination=claim.destination, tx_id=tx_id, resumed=resumed,
    )


async def claim_payout(ctx: LottoContext, entry_id: UUID, caller_address: str) -> ClaimResult:
    """Winner collects pot * (10000 - fee_bps) // 10000. Safe to retry after a crash or TransferFailed."""
    return await _claim(ctx, entry_id, caller_address, PAYOUT)


async def claim_refund(ctx: LottoContext, entry_id: UUID, caller_address: str) -> ClaimResult:
    """Entry of a VOID round gets its stake back, fee-free."""
    return await _claim(ctx, entry_id, caller_address, REFUND)


async def claim_for_entry(ctx: LottoContext, entry_id: UUID, caller_address: str) -> ClaimResult:
    """Single claim entry point: refund for void rounds, payout otherwise."""
    async with ctx.sessions() as session:
        entry = await session.get(Entry, entry_id)
        if entry is None:
            raise EntryNotFound(entry_id=str(entry_id))
        rnd = await session.get(Round, entry.round_id)
        status = rnd.status
    if status == VOID:
        return await claim_refund(ctx, entry_id, caller_address)
    return await claim_payout(ctx, entry_id, caller_address)


async def entry_claims(ctx: LottoContext, entry_id: UUID) -> list[Claim]:
    async with ctx.sessions() as session:
        return list((await session.execute(
            select(Claim).where(Claim.entry_id == entry_id).order_by(Claim.created_at.asc())
        )).scalars().all())
