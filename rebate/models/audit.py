"""Append-only submission audit log."""
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, JSON, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class SubmissionAuditEntry(Base):
    """A timestamped note attached to a submission; never rewritten."""

    __tablename__ = "submission_audit_entries"

    submission_id: Mapped[str] = mapped_column(
        ForeignKey("submissions.id"), nullable=False, index=True
    )
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    data_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    submission = relationship("Submission", back_populates="audit_log")

    def as_line(self) -> str:
        return f"[{self.at.isoformat()}] {self.note}"


@event.listens_for(SubmissionAuditEntry, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise ValueError("Audit entries are append-only and cannot be updated.")


@event.listens_for(SubmissionAuditEntry, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise ValueError("Audit entries are append-only and cannot be deleted.")
