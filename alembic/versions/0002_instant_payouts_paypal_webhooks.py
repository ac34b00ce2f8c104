"""instant payouts, paypal webhook log, payouts no longer unique per batch

Revision ID: 0002_instant_payouts
Revises: 0001_initial
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = "0002_instant_payouts"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade():
    # a mid-period run and the scheduled run can both pay one professional in the same batch
    op.drop_constraint("uq_payouts_batch_professional", "payouts", type_="unique")

    op.create_table(
        "payout_transfers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("professional_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("payout_type", sa.String(length=20), nullable=False, server_default="instant"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("gross_amount", sa.Integer(), nullable=False),
        sa.Column("fee_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fee_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="processing"),
        sa.Column("stripe_payout_id", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payout_transfers_professional_id", "payout_transfers", ["professional_id"])
    op.create_index("ix_payout_transfers_status", "payout_transfers", ["status"])
    op.create_index("ix_payout_transfers_requested_at", "payout_transfers", ["requested_at"])

    op.create_table(
        "payment_webhook_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("event_id", sa.String(length=80), nullable=False),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="processing"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("provider", "event_id", name="uq_payment_webhook_events_provider_event"),
    )


def downgrade():
    op.drop_table("payment_webhook_events")
    op.drop_table("payout_transfers")
    op.create_unique_constraint("uq_payouts_batch_professional", "payouts", ["batch_id", "professional_id", "currency"])
