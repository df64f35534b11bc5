from __future__ import annotations
from datetime import datetime, timedelta
from uuid import UUID
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lotto.clock import as_utc
from lotto.context import LottoContext
from lotto.errors import (
    BalanceUnavailable, InsufficientBalance, InvalidFee, InvalidRoundConfig, InvalidTicketPrice,
    RoundAlreadyOpen, RoundNotFound, RoundNotOpen, RoundNotVoidable, WalletNotLinked,
)
from lotto.models.round import Round, Entry, OPEN, CLOSED, VOID
from lotto.security import check_authority
from lotto.services.identity import require_identity
from lotto.services.ledger import add_entry, list_entries, pot_snapshot, PotSnapshot

log = structlog.get_logger()

BPS_DIVISOR = 10_000

REASON_EXPIRED = "expired"
REASON_FULL = "full"
REASON_ADMIN = "admin"
CLOSE_REASONS = (REASON_EXPIRED, REASON_FULL, REASON_ADMIN)

# ---------- lookups ----------

async def load_round(session: AsyncSession, round_id: UUID, *, for_update: bool = False) -> Round:
    q = select(Round).where(Round.id == round_id)
    if for_update:
        q = q.with_for_update()
    rnd = await session.scalar(q)
    if rnd is None:
        raise RoundNotFound(round_id=str(round_id))
    return rnd


async def get_round(ctx: LottoContext, round_id: UUID) -> Round:
    async with ctx.sessions() as session:
        return await load_round(session, round_id)


async def current_round(ctx: LottoContext, authority: str | None = None) -> Round | None:
    """Newest OPEN round of the authority (there is at most one)."""
    async with ctx.sessions() as session:
        return await session.scalar(
            select(Round)
            .where(Round.status == OPEN, Round.authority == (authority or ctx.settings.lotto_authority))
            .order_by(Round.created_at.desc())
            .limit(1)
        )


async def round_detail(ctx: LottoContext, round_id: UUID) -> tuple[Round, list[Entry], PotSnapshot]:
    async with ctx.sessions() as session:
        rnd = await load_round(session, round_id)
        entries = await list_entries(session, rnd.id)
        snap = await pot_snapshot(session, rnd)
        return rnd, entries, snap

# ---------- transitions (caller owns the transaction) ----------

async def void_in_session(session: AsyncSession, rnd: Round, now: datetime) -> Round:
    res = await session.execute(
        update(Round)
        .where(Round.id == rnd.id, Round.status.in_((OPEN, CLOSED)))
        .values(status=VOID, voided_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.refresh(rnd)
    if res.rowcount != 1:
        raise RoundNotVoidable(round_id=str(rnd.id), status=rnd.status)
    log.info("round_voided", round_id=str(rnd.id), entry_count=rnd.entry_count, pot_total=int(rnd.pot_total))
    return rnd


async def close_in_session(session: AsyncSession, rnd: Round, reason: str, now: datetime) -> Round:
    """OPEN -> CLOSED; straight on to VOID when the round is below its minimum entry count."""
    res = await session.execute(
        update(Round)
        .where(Round.id == rnd.id, Round.status == OPEN)
        .values(status=CLOSED, closed_at=now, close_reason=reason)
        .execution_options(synchronize_session=False)
    )
    await session.refresh(rnd)
    if res.rowcount != 1:
        raise RoundNotOpen(round_id=str(rnd.id), status=rnd.status)
    log.info("round_closed", round_id=str(rnd.id), reason=reason, entry_count=rnd.entry_count, pot_total=int(rnd.pot_total))
    if rnd.entry_count < rnd.min_entries:
        await void_in_session(session, rnd, now)
    return rnd

# ---------- operations ----------

async def create_round(
    ctx: LottoContext,
    credential: str | None,
    *,
    ticket_price: int,
    max_entries: int,
    duration: timedelta | None = None,
    deadline: datetime | None = None,
    fee_bps: int | None = None,
    min_entries: int | None = None,
) -> Round:
    cfg = ctx.settings
    check_authority(credential, cfg)

    fee = cfg.default_fee_bps if fee_bps is None else int(fee_bps)
    min_n = cfg.min_entries_to_settle if min_entries is None else int(min_entries)
    if ticket_price <= 0:
        raise InvalidTicketPrice(ticket_price=int(ticket_price))
    if not 0 <= fee < BPS_DIVISOR:
        raise InvalidFee(fee_bps=fee)
    if max_entries < 1:
        raise InvalidRoundConfig("max_entries must be >= 1")
    if min_n < 1:
        raise InvalidRoundConfig("min_entries must be >= 1")
    if (duration is None) == (deadline is None):
        raise InvalidRoundConfig("give exactly one of duration or deadline")

    now = ctx.now()
    closes_at = now + duration if duration is not None else as_utc(deadline)
    if closes_at <= now:
        raise InvalidRoundConfig("deadline must be in the future")

    authority = cfg.lotto_authority
    async with ctx.locks.hold(f"authority:{authority}"):
        async with ctx.sessions() as session:
            async with session.begin():
                prior = await session.scalar(select(Round).where(Round.authority == authority, Round.status == OPEN))
                if prior is not None:
                    if now < as_utc(prior.closes_at):
                        raise RoundAlreadyOpen(round_id=str(prior.id))
                    # stale OPEN round whose deadline passed and nobody swept yet
                    await close_in_session(session, prior, REASON_EXPIRED, now)

                rnd = Round(
                    authority=authority,
                    status=OPEN,
                    ticket_price=int(ticket_price),
                    fee_bps=fee,
                    max_entries=int(max_entries),
                    min_entries=min_n,
                    pot_total=0,
                    entry_count=0,
                    ticket_count=0,
                    created_at=now,
                    closes_at=closes_at,
                )
                session.add(rnd)
                try:
                    await session.flush()
                except IntegrityError:
                    # uq_rounds_one_open_per_authority
                    raise RoundAlreadyOpen()

    log.info(
        "round_created", round_id=str(rnd.id), authority=authority, ticket_price=int(ticket_price),
        max_entries=int(max_entries), fee_bps=fee, closes_at=closes_at.isoformat(),
    )
    return rnd


async def join_round(
    ctx: LottoContext,
    round_id: UUID,
    identity_id: str,
    stake: int,
    tickets: int | None = None,
) -> Entry:
    """Add the identity's entry with its linked wallet. Closes the round when the deadline passed or it fills up."""
    async with ctx.sessions() as session:
        ident = await require_identity(session, identity_id)
        wallet = ident.wallet
    if not wallet:
        raise WalletNotLinked(identity_id=identity_id)

    if ctx.settings.join_requires_balance:
        quote = await ctx.balances.get_balance(wallet)
        if not quote.confirmed:
            # fail closed: never let a failed lookup pass as enough balance
            raise BalanceUnavailable(address=wallet)
        if quote.amount < stake:
            raise InsufficientBalance(balance=quote.amount, stake=int(stake))

    expired = False
    entry: Entry | None = None
    async with ctx.locks.hold(f"round:{round_id}"):
        async with ctx.sessions() as session:
            async with session.begin():
                rnd = await load_round(session, round_id, for_update=True)
                now = ctx.now()
                if rnd.status == OPEN and now >= as_utc(rnd.closes_at):
                    await close_in_session(session, rnd, REASON_EXPIRED, now)
                    expired = True
                else:
                    entry = await add_entry(
                        session, rnd, identity_id, wallet, stake, tickets,
                        now=now, allow_multiple=ctx.settings.allow_multiple_entries,
                    )
                    if rnd.entry_count >= rnd.max_entries:
                        await close_in_session(session, rnd, REASON_FULL, now)

    if expired:
        raise RoundNotOpen("round deadline passed", round_id=str(round_id))
    return entry


async def close_round(
    ctx: LottoContext,
    round_id: UUID,
    reason: str = REASON_ADMIN,
    credential: str | None = None,
) -> Round:
    """Authority close, or an automatic trigger (expired/full) which needs no credential."""
    if reason not in CLOSE_REASONS:
        raise InvalidRoundConfig(f"unknown close reason {reason!r}")
    if reason == REASON_ADMIN:
        check_authority(credential, ctx.settings)

    async with ctx.locks.hold(f"round:{round_id}"):
        async with ctx.sessions() as session:
            async with session.begin():
                rnd = await load_round(session, round_id, for_update=True)
                if rnd.status != OPEN:
                    raise RoundNotOpen(round_id=str(round_id), status=rnd.status)
                if reason == REASON_EXPIRED and ctx.now() < as_utc(rnd.closes_at):
                    raise RoundNotOpen("deadline has not passed", round_id=str(round_id))
                await close_in_session(session, rnd, reason, ctx.now())
    return rnd


async def void_round(ctx: LottoContext, round_id: UUID, credential: str | None) -> Round:
    check_authority(credential, ctx.settings)
    async with ctx.locks.hold(f"round:{round_id}"):
        async with ctx.sessions() as session:
            async with session.begin():
                rnd = await load_round(session, round_id, for_update=True)
                if rnd.status not in (OPEN, CLOSED):
                    raise RoundNotVoidable(round_id=str(round_id), status=rnd.status)
                await void_in_session(session, rnd, ctx.now())
    return rnd


async def close_due_rounds(ctx: LottoContext) -> list[UUID]:
    """Close every OPEN round whose deadline passed. Sweeper entry point."""
    now = ctx.now()
    async with ctx.sessions() as session:
        due = list((await session.execute(
            select(Round.id).where(Round.status == OPEN, Round.closes_at <= now)
        )).scalars().all())

    closed: list[UUID] = []
    for rid in due:
        try:
            await close_round(ctx, rid, REASON_EXPIRED)
        except RoundNotOpen:
            # closed concurrently (join past deadline, admin)
            continue
        closed.append(rid)
    return closed
