from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "identities",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("wallet", sa.String(length=64), nullable=True),
        sa.Column("telegram_id", sa.String(length=32), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_identities_wallet", "identities", ["wallet"], unique=True)
    op.create_index("ix_identities_telegram_id", "identities", ["telegram_id"], unique=True)

    op.create_table(
        "link_challenges",
        sa.Column("identity_id", sa.String(length=64), primary_key=True),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("wallet", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    # sweeper evicts by age
    op.create_index("ix_link_challenges_created_at", "link_challenges", ["created_at"])

    op.create_table(
        "rounds",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("authority", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("ticket_price", sa.BigInteger(), nullable=False),
        sa.Column("fee_bps", sa.Integer(), nullable=False),
        sa.Column("max_entries", sa.Integer(), nullable=False),
        sa.Column("min_entries", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("pot_total", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("entry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ticket_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closes_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("close_reason", sa.String(length=16), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("winner_identity_id", sa.String(length=64), sa.ForeignKey("identities.id"), nullable=True),
        sa.Column("winning_entry_id", sa.Uuid(), nullable=True),
        sa.Column("payout_amount", sa.BigInteger(), nullable=True),
        sa.Column("house_fee", sa.BigInteger(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("fee_bps >= 0 AND fee_bps < 10000", name="ck_rounds_fee_bps"),
        sa.CheckConstraint("entry_count <= max_entries", name="ck_rounds_capacity"),
        sa.CheckConstraint("pot_total >= 0", name="ck_rounds_pot_non_negative"),
    )
    op.create_index("ix_rounds_authority", "rounds", ["authority"])
    op.create_index(
        "uq_rounds_one_open_per_authority", "rounds", ["authority"], unique=True,
        postgresql_where=sa.text("status = 'OPEN'"), sqlite_where=sa.text("status = 'OPEN'"),
    )
    op.create_index("ix_rounds_status_closes_at", "rounds", ["status", "closes_at"])

    op.create_table(
        "entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("round_id", sa.Uuid(), sa.ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False),
        sa.Column("identity_id", sa.String(length=64), sa.ForeignKey("identities.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("entry_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wallet", sa.String(length=64), nullable=False),
        sa.Column("stake", sa.BigInteger(), nullable=False),
        sa.Column("tickets", sa.Integer(), nullable=False),
        sa.Column("claimed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("round_id", "identity_id", "entry_seq", name="uq_entries_identity_once"),
        sa.UniqueConstraint("round_id", "position", name="uq_entries_round_position"),
        sa.CheckConstraint("stake > 0 AND tickets > 0", name="ck_entries_positive"),
    )
    op.create_index("ix_entries_round_id", "entries", ["round_id"])
    op.create_index("ix_entries_identity_id", "entries", ["identity_id"])

    op.create_table(
        "claims",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("entry_id", sa.Uuid(), sa.ForeignKey("entries.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("destination", sa.String(length=64), nullable=False),
        sa.Column("idempotency_key", sa.String(length=80), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("tx_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("idempotency_key", name="uq_claims_idempotency_key"),
        sa.CheckConstraint("amount >= 0", name="ck_claims_amount_non_negative"),
    )
    op.create_index("ix_claims_entry_id", "claims", ["entry_id"])

def downgrade() -> None:
    op.drop_index("ix_claims_entry_id", table_name="claims")
    op.drop_table("claims")
    op.drop_index("ix_entries_identity_id", table_name="entries")
    op.drop_index("ix_entries_round_id", table_name="entries")
    op.drop_table("entries")
    op.drop_index("ix_rounds_status_closes_at", table_name="rounds")
    op.drop_index("uq_rounds_one_open_per_authority", table_name="rounds")
    op.drop_index("ix_rounds_authority", table_name="rounds")
    op.drop_table("rounds")
    op.drop_index("ix_link_challenges_created_at", table_name="link_challenges")
    op.drop_table("link_challenges")
    op.drop_index("ix_identities_telegram_id", table_name="identities")
    op.drop_index("ix_identities_wallet", table_name="identities")
    op.drop_table("identities")
