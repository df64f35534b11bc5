from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    String, Integer, BigInteger, Boolean, DateTime, ForeignKey, UniqueConstraint,
    CheckConstraint, Index, Uuid, text,
)
from lotto.db import Base

OPEN = "OPEN"
CLOSED = "CLOSED"
SETTLED = "SETTLED"
VOID = "VOID"

class Round(Base):
    """
    One lotto round.
    Lifecycle: OPEN -> CLOSED -> SETTLED, or OPEN|CLOSED -> VOID. Never back to OPEN.

    pot_total / entry_count / ticket_count are written only by the entry ledger,
    always together with the entry insert:
      pot_total == sum(entry.stake) == ticket_price * ticket_count
    """
    __tablename__ = "rounds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    authority: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=OPEN)  # OPEN|CLOSED|SETTLED|VOID

    ticket_price: Mapped[int] = mapped_column(BigInteger, nullable=False)  # lamports
    fee_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    max_entries: Mapped[int] = mapped_column(Integer, nullable=False)
    min_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    pot_total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ticket_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closes_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # deadline
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    close_reason: Mapped[str | None] = mapped_column(String(16), nullable=True)  # expired|full|admin

    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    winner_identity_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("identities.id"), nullable=True)
    # NOTE: plain column, entries -> rounds already holds the FK
    winning_entry_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    payout_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    house_fee: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("fee_bps >= 0 AND fee_bps < 10000", name="ck_rounds_fee_bps"),
        CheckConstraint("entry_count <= max_entries", name="ck_rounds_capacity"),
        CheckConstraint("pot_total >= 0", name="ck_rounds_pot_non_negative"),
        Index("ix_rounds_status_closes_at", "status", "closes_at"),
        # one OPEN round per authority
        Index(
            "uq_rounds_one_open_per_authority", "authority", unique=True,
            postgresql_where=text("status = 'OPEN'"), sqlite_where=text("status = 'OPEN'"),
        ),
    )

class Entry(Base):
    """
    A participant's stake in a round. Immutable except `claimed` (false -> true, once).
    `position` is the 0-based join order within the round; the draw walks entries by it.
    entry_seq is 0 unless the deployment allows repeated entries (then it equals
    position), so uq_entries_identity_once is the one-entry-per-identity rule.
    """
    __tablename__ = "entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    round_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("rounds.id", ondelete="CASCADE"), index=True, nullable=False)
    identity_id: Mapped[str] = mapped_column(String(64), ForeignKey("identities.id"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    wallet: Mapped[str] = mapped_column(String(64), nullable=False)  # wallet at time of entry
    stake: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tickets: Mapped[int] = mapped_column(Integer, nullable=False)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("round_id", "identity_id", "entry_seq", name="uq_entries_identity_once"),
        UniqueConstraint("round_id", "position", name="uq_entries_round_position"),
        CheckConstraint("stake > 0 AND tickets > 0", name="ck_entries_positive"),
    )
