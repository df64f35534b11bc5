from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime
from lotto.clock import utcnow
from lotto.db import Base

class Identity(Base):
    """
    A participant. Keyed by a string id:
      - "tg_<telegram user id>" for identities first seen through the bot
      - random hex for web identities
    `wallet` changes only through a verified link; rows are never deleted.
    """
    __tablename__ = "identities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet: Mapped[str | None] = mapped_column(String(64), unique=True, index=True, nullable=True)  # base58 ed25519 pubkey
    telegram_id: Mapped[str | None] = mapped_column(String(32), unique=True, index=True, nullable=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
