"""initial marketplace schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("country", sa.String(length=2), nullable=False, server_default="CO"),
        sa.Column("locale", sa.String(length=10), nullable=False, server_default="es"),
        sa.Column("stripe_customer_id", sa.String(length=64), nullable=True),
        sa.Column("push_token", sa.String(length=255), nullable=True),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "professional_profiles",
        sa.Column("profile_id", sa.String(length=36), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("slug", sa.String(length=80), nullable=True, unique=True),
        sa.Column("hourly_rate", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="COP"),
        sa.Column("stripe_account_id", sa.String(length=64), nullable=True),
        sa.Column("available_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_balance", sa.Integer(), nullable=False, server_default="0"),
        _ts("last_balance_update"),
        _ts("created_at", nullable=False),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("professional_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        _ts("scheduled_start"),
        _ts("scheduled_end"),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="COP"),
        sa.Column("amount_estimated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_authorized", sa.Integer(), nullable=True),
        sa.Column("amount_captured", sa.Integer(), nullable=True),
        sa.Column("refund_amount", sa.Integer(), nullable=True),
        sa.Column("service_name", sa.String(length=200), nullable=True),
        sa.Column("service_hourly_rate", sa.Integer(), nullable=True),
        sa.Column("address", sa.JSON(), nullable=True),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending_payment"),
        sa.Column("payment_provider", sa.String(length=12), nullable=False, server_default="stripe"),
        sa.Column("stripe_payment_intent_id", sa.String(length=64), nullable=True),
        sa.Column("stripe_payment_status", sa.String(length=40), nullable=True),
        sa.Column("paypal_order_id", sa.String(length=64), nullable=True),
        sa.Column("paypal_capture_id", sa.String(length=64), nullable=True),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="unpaid"),
        _ts("checked_in_at"),
        sa.Column("check_in_latitude", sa.Float(), nullable=True),
        sa.Column("check_in_longitude", sa.Float(), nullable=True),
        sa.Column("check_in_gps_status", sa.String(length=12), nullable=True),
        _ts("checked_out_at"),
        sa.Column("check_out_latitude", sa.Float(), nullable=True),
        sa.Column("check_out_longitude", sa.Float(), nullable=True),
        sa.Column("check_out_gps_status", sa.String(length=12), nullable=True),
        sa.Column("actual_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("decline_reason", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        _ts("canceled_at"),
        sa.Column("rebooked_from_id", sa.String(length=36), nullable=True),
        sa.Column("included_in_payout_id", sa.String(length=36), nullable=True),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_professional_id", "bookings", ["professional_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_stripe_payment_intent_id", "bookings", ["stripe_payment_intent_id"])
    op.create_index("ix_bookings_paypal_order_id", "bookings", ["paypal_order_id"])
    op.create_index("ix_bookings_included_in_payout_id", "bookings", ["included_in_payout_id"])

    op.create_table(
        "payouts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("batch_id", sa.String(length=40), nullable=False),
        sa.Column("professional_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        _ts("period_start", nullable=False),
        _ts("period_end", nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("gross_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commission_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commission_rate", sa.Float(), nullable=False, server_default="0.15"),
        sa.Column("booking_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("stripe_transfer_id", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("batch_id", "professional_id", "currency", name="uq_payouts_batch_professional"),
    )
    op.create_index("ix_payouts_batch_id", "payouts", ["batch_id"])
    op.create_index("ix_payouts_professional_id", "payouts", ["professional_id"])

    op.create_table(
        "balance_clearances",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("professional_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        _ts("completed_at", nullable=False),
        _ts("clearance_at", nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        _ts("cleared_at"),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("booking_id", name="uq_balance_clearances_booking"),
    )
    op.create_index("ix_balance_clearances_professional_id", "balance_clearances", ["professional_id"])
    op.create_index("ix_balance_clearances_clearance_at", "balance_clearances", ["clearance_at"])
    op.create_index("ix_balance_clearances_status", "balance_clearances", ["status"])

    op.create_table(
        "user_suspensions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("suspended_by", sa.String(length=36), nullable=False),
        sa.Column("suspension_type", sa.String(length=20), nullable=False, server_default="temporary"),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        _ts("expires_at"),
        _ts("lifted_at"),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_user_suspensions_user_id", "user_suspensions", ["user_id"])

    op.create_table(
        "moderation_flags",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("flag_type", sa.String(length=30), nullable=False),
        sa.Column("severity", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("created_by", sa.String(length=36), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_moderation_flags_user_id", "moderation_flags", ["user_id"])

    op.create_table(
        "disputes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("opened_by_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("against_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(length=80), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("resolution_type", sa.String(length=20), nullable=True),
        sa.Column("resolution_action", sa.Text(), nullable=True),
        sa.Column("refund_amount", sa.Integer(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("resolved_by_id", sa.String(length=36), nullable=True),
        _ts("resolved_at"),
        sa.Column("suspension_id", sa.String(length=36), sa.ForeignKey("user_suspensions.id"), nullable=True),
        sa.Column("moderation_flag_id", sa.String(length=36), sa.ForeignKey("moderation_flags.id"), nullable=True),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_disputes_booking_id", "disputes", ["booking_id"])
    op.create_index("ix_disputes_status", "disputes", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _ts("created_at", nullable=False),
        _ts("sent_at"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_status", "notifications", ["status"])

    op.create_table(
        "email_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("to_email", sa.String(length=320), nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("related_booking_id", sa.String(length=36), nullable=True),
        _ts("created_at", nullable=False),
        _ts("sent_at"),
    )
    op.create_index("ix_email_logs_to_email", "email_logs", ["to_email"])
    op.create_index("ix_email_logs_status", "email_logs", ["status"])
    op.create_index("ix_email_logs_related_booking_id", "email_logs", ["related_booking_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor_user_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])

    op.create_table(
        "cms_webhook_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("document_id", sa.String(length=120), nullable=False),
        sa.Column("revision", sa.String(length=64), nullable=False),
        sa.Column("document_type", sa.String(length=60), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="received"),
        sa.Column("error", sa.Text(), nullable=True),
        _ts("created_at", nullable=False),
        _ts("processed_at"),
        sa.UniqueConstraint("document_id", "revision", name="uq_cms_webhook_events_doc_rev"),
    )
    op.create_index("ix_cms_webhook_events_document_id", "cms_webhook_events", ["document_id"])


def downgrade() -> None:
    for table in (
        "cms_webhook_events",
        "audit_logs",
        "email_logs",
        "notifications",
        "disputes",
        "moderation_flags",
        "user_suspensions",
        "balance_clearances",
        "payouts",
        "bookings",
        "professional_profiles",
        "users",
    ):
        op.drop_table(table)
