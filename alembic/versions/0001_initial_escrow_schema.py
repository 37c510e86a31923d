"""initial escrow schema

Revision ID: 0001_initial_escrow_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_escrow_schema"
down_revision = None
branch_labels = None
depends_on = None

PAYMENT_STATUSES = (
    "PENDING",
    "ESCROWED",
    "RELEASED",
    "REFUNDING",
    "REFUNDED",
    "PARTIALLY_REFUNDED",
    "FAILED",
    "DISPUTED",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        *_timestamps(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.Enum("customer", "handyman", "admin", name="userrole"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("stripe_account_id", sa.String(length=64), nullable=True),
        sa.Column("stripe_onboarding_complete", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("stripe_account_id"),
    )

    op.create_table(
        "jobs",
        *_timestamps(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column(
            "status",
            sa.Enum("OPEN", "ACCEPTED", "COMPLETED", "CANCELLED", "ARCHIVED", name="jobstatus"),
            nullable=False,
        ),
        sa.Column("payment_status", sa.String(length=32), nullable=False),
        sa.Column("posted_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("accepted_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("budget_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_posted_by", "jobs", ["posted_by"])
    op.create_index("ix_jobs_accepted_by", "jobs", ["accepted_by"])

    op.create_table(
        "payments",
        *_timestamps(),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("handyman_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("job_amount", sa.Integer(), nullable=False),
        sa.Column("customer_fee", sa.Integer(), nullable=False),
        sa.Column("handyman_fee", sa.Integer(), nullable=False),
        sa.Column("total_charged", sa.Integer(), nullable=False),
        sa.Column("handyman_payout", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.Enum(*PAYMENT_STATUSES, name="paymentstatus"), nullable=False),
        sa.Column("external_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("external_transfer_id", sa.String(length=255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("job_amount > 0", name="ck_payment_positive_job_amount"),
        sa.CheckConstraint("total_charged = job_amount + customer_fee", name="ck_payment_total_charged"),
        sa.CheckConstraint("handyman_payout = job_amount - handyman_fee", name="ck_payment_handyman_payout"),
        sa.UniqueConstraint("external_payment_intent_id"),
    )
    op.create_index("ix_payments_created_at", "payments", ["created_at"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_customer_id", "payments", ["customer_id"])
    op.create_index("ix_payments_handyman_id", "payments", ["handyman_id"])
    # at most one non-failed payment per job
    op.create_index(
        "uq_payments_active_job",
        "payments",
        ["job_id"],
        unique=True,
        sqlite_where=sa.text("status != 'FAILED'"),
        postgresql_where=sa.text("status != 'FAILED'"),
    )

    op.create_table(
        "refunds",
        *_timestamps(),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("requested_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "refund_type",
            sa.Enum("CANCELLATION", "NO_SHOW", "PARTIAL", "QUALITY", name="refundtype"),
            nullable=False,
        ),
        sa.Column("refund_reason", sa.Text(), nullable=False),
        sa.Column("original_amount", sa.Integer(), nullable=False),
        sa.Column("requested_amount", sa.Integer(), nullable=False),
        sa.Column("approved_amount", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("PENDING", "APPROVED", "COMPLETED", "REJECTED", name="refundstatus"),
            nullable=False,
        ),
        sa.Column("external_refund_id", sa.String(length=255), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("payment_id", name="uq_refunds_payment_id"),
        sa.CheckConstraint("requested_amount > 0", name="ck_refund_positive_requested_amount"),
        sa.CheckConstraint("requested_amount <= original_amount", name="ck_refund_requested_within_original"),
    )
    op.create_index("ix_refunds_requested_by", "refunds", ["requested_by"])
    op.create_index("ix_refunds_status", "refunds", ["status"])

    op.create_table(
        "support_tickets",
        *_timestamps(),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=True),
        sa.Column("reported_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("problem_type", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED", name="ticketstatus"),
            nullable=False,
        ),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_support_tickets_status", "support_tickets", ["status"])
    op.create_index("ix_support_tickets_job_id", "support_tickets", ["job_id"])

    op.create_table(
        "webhook_events",
        *_timestamps(),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("event_id", sa.String(length=100), nullable=False),
        sa.Column("kind", sa.String(length=100), nullable=False),
        sa.Column("psp_ref", sa.String(length=255), nullable=True),
        sa.Column("raw_json", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event_id"),
    )
    op.create_index("ix_webhook_events_received", "webhook_events", ["received_at"])
    op.create_index("ix_webhook_events_kind", "webhook_events", ["kind"])

    op.create_table(
        "audit_logs",
        *_timestamps(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])

    op.create_table(
        "api_keys",
        *_timestamps(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False),
        sa.Column("scope", sa.Enum("customer", "handyman", "admin", name="apiscope"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("name"),
        sa.UniqueConstraint("key_hash", name="uq_api_keys_key_hash"),
    )
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_api_keys_user_id", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_webhook_events_kind", table_name="webhook_events")
    op.drop_index("ix_webhook_events_received", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("ix_support_tickets_job_id", table_name="support_tickets")
    op.drop_index("ix_support_tickets_status", table_name="support_tickets")
    op.drop_table("support_tickets")
    op.drop_index("ix_refunds_status", table_name="refunds")
    op.drop_index("ix_refunds_requested_by", table_name="refunds")
    op.drop_table("refunds")
    op.drop_index("uq_payments_active_job", table_name="payments")
    op.drop_index("ix_payments_handyman_id", table_name="payments")
    op.drop_index("ix_payments_customer_id", table_name="payments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_created_at", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_jobs_accepted_by", table_name="jobs")
    op.drop_index("ix_jobs_posted_by", table_name="jobs")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("users")
    for enum_name in ("apiscope", "ticketstatus", "refundstatus", "refundtype", "paymentstatus", "jobstatus", "userrole"):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
