from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, DateTime
from lotto.db import Base

class PendingLinkChallenge(Base):
    """
    One active wallet-link challenge per identity (identity_id is the PK, a new
    challenge overwrites the old one). Consumed on successful verification,
    dropped on expiry.
    """
    __tablename__ = "link_challenges"

    # NOTE: no FK, the identity row may not exist until the link succeeds
    identity_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text(), nullable=False)  # exact bytes the wallet signs (utf-8)
    wallet: Mapped[str | None] = mapped_column(String(64), nullable=True)  # claimed address, if given up front
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)
