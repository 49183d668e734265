"""Day-bucketed counter shared by every instance."""
from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class DailyApprovalCounter(Base):
    """Number of automatic approval slots reserved on a calendar day (UTC)."""

    __tablename__ = "daily_approval_counters"
    __table_args__ = (CheckConstraint("count >= 0", name="ck_daily_counter_non_negative"),)

    day: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    count: Mapped[int] = mapped_column(nullable=False, default=0)
