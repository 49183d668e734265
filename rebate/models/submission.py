"""Submission model and lifecycle definitions."""
import enum
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class SubmissionStatus(str, enum.Enum):
    """Possible statuses for a proof-of-purchase submission."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


# paid -> approved is reserved for payout invalidation reported by the processor.
ALLOWED_TRANSITIONS: dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    SubmissionStatus.PENDING: frozenset({SubmissionStatus.APPROVED, SubmissionStatus.REJECTED}),
    SubmissionStatus.APPROVED: frozenset({SubmissionStatus.PAID}),
    SubmissionStatus.PAID: frozenset({SubmissionStatus.APPROVED}),
    SubmissionStatus.REJECTED: frozenset(),
}


def can_transition(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    """Return True when ``current -> target`` is a legal lifecycle edge."""

    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _new_submission_id() -> str:
    return str(uuid4())


class Submission(Base):
    """Represents one uploaded proof of purchase and its payout lifecycle."""

    __tablename__ = "submissions"
    __table_args__ = (
        CheckConstraint("payout_amount > 0", name="ck_submission_positive_amount"),
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_submission_confidence_range",
        ),
        Index("ix_submissions_status_created", "status", "created_at"),
        Index("ix_submissions_payee_paid", "payee_address", "paid_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_submission_id)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("scan_sessions.session_id"), nullable=False, index=True
    )
    status: Mapped[SubmissionStatus] = mapped_column(
        SqlEnum(SubmissionStatus, values_callable=lambda enum_cls: [m.value for m in enum_cls]),
        nullable=False,
        default=SubmissionStatus.PENDING,
    )
    confidence_score: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 4, asdecimal=True), nullable=True
    )
    auto_approved: Mapped[bool] = mapped_column(default=False, nullable=False)
    auto_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    payout_reference: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    payout_batch_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payee_address: Mapped[str] = mapped_column(String(255), nullable=False)
    image_hash: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    scan_session = relationship("ScanSession", back_populates="submissions")
    audit_log = relationship(
        "SubmissionAuditEntry",
        back_populates="submission",
        order_by="SubmissionAuditEntry.id",
        cascade="save-update, merge",
        passive_deletes="all",
    )
