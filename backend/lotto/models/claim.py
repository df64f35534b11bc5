from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, BigInteger, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Uuid
from lotto.db import Base

PAYOUT = "PAYOUT"
REFUND = "REFUND"

PENDING = "PENDING"
CONFIRMED = "CONFIRMED"

class Claim(Base):
    """
    Two-phase record of money leaving the pot.
      PENDING   => claim accepted, transfer requested (or about to be)
      CONFIRMED => transfer sink returned a tx id; entry.claimed flipped in the same commit
    Idempotency: idempotency_key = "<kind>:<entry id>", passed to the transfer sink,
    so a retried claim never pays twice.
    """
    __tablename__ = "claims"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("entries.id", ondelete="CASCADE"), index=True, nullable=False)

    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # PAYOUT | REFUND
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    destination: Mapped[str] = mapped_column(String(64), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(80), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PENDING)
    tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_claims_idempotency_key"),
        CheckConstraint("amount >= 0", name="ck_claims_amount_non_negative"),
    )
