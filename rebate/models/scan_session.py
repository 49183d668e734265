"""Bottle scan session model."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rebate.utils.time import utcnow

from .base import Base


class ScanSession(Base):
    """Server-side record of the bottle scan a submission originates from."""

    __tablename__ = "scan_sessions"
    __table_args__ = (Index("ix_scan_sessions_ip_scanned", "ip_address", "scanned_at"),)

    session_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    detected_brand: Mapped[str | None] = mapped_column(String(100), nullable=True)
    confidence: Mapped[Decimal | None] = mapped_column(Numeric(3, 2, asdecimal=True), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    submissions = relationship("Submission", back_populates="scan_session")
