"""initial schema: users, jobs, proposals, progress, notifications

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

from app.database.enums import (
    JobStatus,
    JobUrgency,
    PaymentMethod,
    PaymentStatus,
    ProgressStage,
    ProposalStatus,
    RefundStatus,
    TransferStatus,
    UserRole,
)

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

TZ = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("role", sa.Enum(UserRole), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("mpesa_number", sa.String(20), nullable=True),
        sa.Column("payout_recipient_code", sa.String(100), nullable=True),
        sa.Column("completed_jobs", sa.Integer(), nullable=False),
        sa.Column("created_at", TZ, nullable=False),
        sa.Column("updated_at", TZ, nullable=False),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("fundi_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("sub_service", sa.String(100), nullable=True),
        sa.Column("urgency", sa.Enum(JobUrgency), nullable=False),
        sa.Column("budget_min", sa.Integer(), nullable=False),
        sa.Column("budget_max", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("county", sa.String(100), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("area", sa.String(100), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("preferred_date", TZ, nullable=True),
        sa.Column("status", sa.Enum(JobStatus), nullable=False),
        sa.Column("agreed_price", sa.Integer(), nullable=True),
        sa.Column("actual_price", sa.Integer(), nullable=True),
        sa.Column("payment_method", sa.Enum(PaymentMethod), nullable=False),
        sa.Column("payment_status", sa.Enum(PaymentStatus), nullable=False),
        sa.Column("payment_provider", sa.String(50), nullable=True),
        sa.Column("platform_fee_percentage", sa.Float(), nullable=False),
        sa.Column("platform_fee", sa.Integer(), nullable=True),
        sa.Column("escrow_reference", sa.String(100), nullable=True),
        sa.Column("access_code", sa.String(100), nullable=True),
        sa.Column("authorization_url", sa.String(500), nullable=True),
        sa.Column("escrow_amount", sa.Integer(), nullable=True),
        sa.Column("escrow_transaction_id", sa.String(100), nullable=True),
        sa.Column("escrow_date", TZ, nullable=True),
        sa.Column("release_reference", sa.String(100), nullable=True),
        sa.Column("release_amount", sa.Integer(), nullable=True),
        sa.Column("release_transaction_id", sa.String(100), nullable=True),
        sa.Column("release_date", TZ, nullable=True),
        sa.Column("transfer_status", sa.Enum(TransferStatus), nullable=True),
        sa.Column("transfer_completed_date", TZ, nullable=True),
        sa.Column("transfer_failure_reason", sa.Text(), nullable=True),
        sa.Column("refund_reference", sa.String(100), nullable=True),
        sa.Column("refund_amount", sa.Integer(), nullable=True),
        sa.Column("refund_date", TZ, nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("refund_status", sa.Enum(RefundStatus), nullable=True),
        sa.Column("reconciliation_required", sa.Boolean(), nullable=False),
        sa.Column("reconciliation_note", sa.Text(), nullable=True),
        sa.Column("started_at", TZ, nullable=True),
        sa.Column("completed_at", TZ, nullable=True),
        sa.Column("completion_images", sa.JSON(), nullable=False),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("customer_approved", sa.Boolean(), nullable=False),
        sa.Column("approved_at", TZ, nullable=True),
        sa.Column("cancelled_at", TZ, nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.Uuid(), nullable=True),
        sa.Column("disputed_at", TZ, nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", TZ, nullable=False),
        sa.Column("updated_at", TZ, nullable=False),
    )
    for column in (
        "customer_id",
        "fundi_id",
        "category",
        "status",
        "escrow_reference",
        "release_reference",
        "reconciliation_required",
    ):
        op.create_index(f"ix_jobs_{column}", "jobs", [column])

    op.create_table(
        "job_proposals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("fundi_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("proposed_price", sa.Integer(), nullable=False),
        sa.Column("estimated_duration", sa.Integer(), nullable=True),
        sa.Column("proposal", sa.Text(), nullable=True),
        sa.Column("status", sa.Enum(ProposalStatus), nullable=False),
        sa.Column("applied_at", TZ, nullable=False),
        sa.UniqueConstraint("job_id", "fundi_id", name="uq_job_proposals_job_fundi"),
    )
    op.create_index("ix_job_proposals_job_id", "job_proposals", ["job_id"])

    op.create_table(
        "job_progress_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("update_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("stage", sa.Enum(ProgressStage), nullable=False),
        sa.Column("created_at", TZ, nullable=False),
    )
    op.create_index("ix_job_progress_entries_job_id", "job_progress_entries", ["job_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("created_at", TZ, nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("job_progress_entries")
    op.drop_table("job_proposals")
    op.drop_table("jobs")
    op.drop_table("users")
    for enum_name in (
        "refundstatus",
        "transferstatus",
        "paymentstatus",
        "paymentmethod",
        "jobstatus",
        "joburgency",
        "proposalstatus",
        "progressstage",
        "userrole",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
