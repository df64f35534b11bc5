from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID
import structlog
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lotto.errors import AlreadyEntered, InvalidStake, LedgerCorrupted, RoundFull, RoundNotOpen, StakeTooLow
from lotto.models.claim import Claim, CONFIRMED
from lotto.models.round import Round, Entry, OPEN

log = structlog.get_logger()

# ---------- helpers: stakes / tickets ----------

def tickets_for_stake(ticket_price: int, stake: int, tickets: int | None = None) -> int:
    """stake must be ticket_price * tickets; when tickets is omitted it is derived from the stake."""
    if stake < ticket_price:
        raise StakeTooLow(stake=int(stake), ticket_price=int(ticket_price))
    if tickets is None:
        tickets, rem = divmod(stake, ticket_price)
        if rem:
            raise InvalidStake("stake must be a whole number of tickets", stake=int(stake), ticket_price=int(ticket_price))
        return int(tickets)
    if tickets < 1 or stake != ticket_price * tickets:
        raise InvalidStake(stake=int(stake), ticket_price=int(ticket_price), tickets=int(tickets))
    return int(tickets)


async def list_entries(session: AsyncSession, round_id: UUID) -> list[Entry]:
    """Entries in join order (the order the winner draw walks them in)."""
    return list((await session.execute(
        select(Entry).where(Entry.round_id == round_id).order_by(Entry.position.asc())
    )).scalars().all())

# ---------- the only writer of pot_total / entry_count ----------

async def add_entry(
    session: AsyncSession,
    rnd: Round,
    identity_id: str,
    wallet: str,
    stake: int,
    tickets: int | None = None,
    *,
    now: datetime,
    allow_multiple: bool = False,
) -> Entry:
    """
    Insert the entry and bump the round's counters in the caller's transaction.
    Checks, in order: round OPEN, not already entered, not full, stake.

    The counter bump is a conditional UPDATE (still OPEN, still below capacity)
    and runs before the insert. It row-locks the round until commit, so writers
    are serialized and the bumped entry_count gives each entry a unique
    position. The caller must roll back on any exception; nothing here commits.
    """
    if rnd.status != OPEN:
        raise RoundNotOpen(round_id=str(rnd.id), status=rnd.status)

    if not allow_multiple:
        prior = await session.scalar(
            select(func.count()).select_from(Entry).where(Entry.round_id == rnd.id, Entry.identity_id == identity_id)
        )
        if prior:
            raise AlreadyEntered(round_id=str(rnd.id), identity_id=identity_id)

    if rnd.entry_count >= rnd.max_entries:
        raise RoundFull(round_id=str(rnd.id), max_entries=rnd.max_entries)

    n_tickets = tickets_for_stake(rnd.ticket_price, int(stake), tickets)

    res = await session.execute(
        update(Round)
        .where(Round.id == rnd.id, Round.status == OPEN, Round.entry_count < Round.max_entries)
        .values(
            pot_total=Round.pot_total + int(stake),
            entry_count=Round.entry_count + 1,
            ticket_count=Round.ticket_count + n_tickets,
        )
        .execution_options(synchronize_session=False)
    )
    await session.refresh(rnd)
    if res.rowcount != 1:
        if rnd.status != OPEN:
            raise RoundNotOpen(round_id=str(rnd.id), status=rnd.status)
        raise RoundFull(round_id=str(rnd.id), max_entries=rnd.max_entries)

    position = rnd.entry_count - 1
    entry = Entry(
        round_id=rnd.id,
        identity_id=identity_id,
        position=position,
        entry_seq=position if allow_multiple else 0,
        wallet=wallet,
        stake=int(stake),
        tickets=n_tickets,
        claimed=False,
        created_at=now,
    )
    session.add(entry)
    try:
        await session.flush()
    except IntegrityError:
        if allow_multiple:
            raise
        # uq_entries_identity_once: a concurrent join by the same identity won
        raise AlreadyEntered(round_id=str(rnd.id), identity_id=identity_id)

    log.info(
        "entry_added", round_id=str(rnd.id), entry_id=str(entry.id), identity_id=identity_id,
        position=position, stake=int(stake), tickets=n_tickets, pot_total=int(rnd.pot_total),
        entry_count=rnd.entry_count,
    )
    return entry

# ---------- compute: pot & audit ----------

@dataclass(frozen=True)
class PotSnapshot:
    round_id: UUID
    pot_total: int
    entry_count: int
    ticket_count: int
    entry_sum: int  # sum(entry.stake) recomputed from rows
    entries_found: int
    tickets_found: int
    paid_out: int  # confirmed claims

    @property
    def consistent(self) -> bool:
        return (
            self.pot_total == self.entry_sum
            and self.entry_count == self.entries_found
            and self.ticket_count == self.tickets_found
        )


async def pot_snapshot(session: AsyncSession, rnd: Round) -> PotSnapshot:
    entry_sum, entries_found, tickets_found = (await session.execute(
        select(
            func.coalesce(func.sum(Entry.stake), 0),
            func.count(Entry.id),
            func.coalesce(func.sum(Entry.tickets), 0),
        ).where(Entry.round_id == rnd.id)
    )).one()
    paid_out = await session.scalar(
        select(func.coalesce(func.sum(Claim.amount), 0))
        .join(Entry, Entry.id == Claim.entry_id)
        .where(Entry.round_id == rnd.id, Claim.status == CONFIRMED)
    )
    return PotSnapshot(
        round_id=rnd.id,
        pot_total=int(rnd.pot_total),
        entry_count=int(rnd.entry_count),
        ticket_count=int(rnd.ticket_count),
        entry_sum=int(entry_sum or 0),
        entries_found=int(entries_found or 0),
        tickets_found=int(tickets_found or 0),
        paid_out=int(paid_out or 0),
    )


async def assert_pot_consistent(session: AsyncSession, rnd: Round) -> PotSnapshot:
    snap = await pot_snapshot(session, rnd)
    if not snap.consistent:
        log.error("pot_inconsistent", round_id=str(rnd.id), pot_total=snap.pot_total, entry_sum=snap.entry_sum)
        raise LedgerCorrupted(round_id=str(rnd.id), pot_total=snap.pot_total, entry_sum=snap.entry_sum)
    return snap
