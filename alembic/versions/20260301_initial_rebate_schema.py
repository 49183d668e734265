"""initial rebate payout schema

Revision ID: 20260301_initial
Revises:
Create Date: 2026-03-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260301_initial"
down_revision = None
branch_labels = None
depends_on = None

SUBMISSION_STATUS = sa.Enum("pending", "approved", "rejected", "paid", name="submissionstatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "scan_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(length=100), nullable=False, unique=True),
        sa.Column("detected_brand", sa.String(length=100), nullable=True),
        sa.Column("confidence", sa.Numeric(3, 2), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_scan_sessions_ip_scanned", "scan_sessions", ["ip_address", "scanned_at"])

    op.create_table(
        "submissions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "session_id",
            sa.String(length=100),
            sa.ForeignKey("scan_sessions.session_id"),
            nullable=False,
        ),
        sa.Column("status", SUBMISSION_STATUS, nullable=False, server_default="pending"),
        sa.Column("confidence_score", sa.Numeric(5, 4), nullable=True),
        sa.Column("auto_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_reason", sa.Text(), nullable=True),
        sa.Column("payout_reference", sa.String(length=128), nullable=True, unique=True),
        sa.Column("payout_batch_id", sa.String(length=128), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payout_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payee_address", sa.String(length=255), nullable=False),
        sa.Column("image_hash", sa.String(length=128), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("payout_amount > 0", name="ck_submission_positive_amount"),
        sa.CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_submission_confidence_range",
        ),
    )
    op.create_index("ix_submissions_session_id", "submissions", ["session_id"])
    op.create_index("ix_submissions_image_hash", "submissions", ["image_hash"])
    op.create_index("ix_submissions_status_created", "submissions", ["status", "created_at"])
    op.create_index("ix_submissions_payee_paid", "submissions", ["payee_address", "paid_at"])

    op.create_table(
        "submission_audit_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("submission_id", sa.String(length=36), sa.ForeignKey("submissions.id"), nullable=False),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_submission_audit_entries_submission_id",
        "submission_audit_entries",
        ["submission_id"],
    )

    op.create_table(
        "daily_approval_counters",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("day", sa.String(length=10), nullable=False, unique=True),
        sa.Column("count", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("count >= 0", name="ck_daily_counter_non_negative"),
    )

    op.create_table(
        "psp_webhook_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(length=50), nullable=False, server_default="paypal"),
        sa.Column("event_id", sa.String(length=100), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("psp_ref", sa.String(length=128), nullable=True),
        sa.Column("outcome", sa.String(length=30), nullable=True),
        sa.Column("raw_json", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "event_id", name="uq_psp_webhook_events_provider_event_id"),
    )
    op.create_index("ix_psp_webhook_events_received", "psp_webhook_events", ["received_at"])
    op.create_index("ix_psp_webhook_events_psp_ref", "psp_webhook_events", ["psp_ref"])


def downgrade() -> None:
    op.drop_index("ix_psp_webhook_events_psp_ref", table_name="psp_webhook_events")
    op.drop_index("ix_psp_webhook_events_received", table_name="psp_webhook_events")
    op.drop_table("psp_webhook_events")
    op.drop_table("daily_approval_counters")
    op.drop_index("ix_submission_audit_entries_submission_id", table_name="submission_audit_entries")
    op.drop_table("submission_audit_entries")
    op.drop_index("ix_submissions_payee_paid", table_name="submissions")
    op.drop_index("ix_submissions_status_created", table_name="submissions")
    op.drop_index("ix_submissions_image_hash", table_name="submissions")
    op.drop_index("ix_submissions_session_id", table_name="submissions")
    op.drop_table("submissions")
    SUBMISSION_STATUS.drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_scan_sessions_ip_scanned", table_name="scan_sessions")
    op.drop_table("scan_sessions")
