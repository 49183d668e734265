"""Declarative base shared by the rebate tables."""
from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rebate.utils.time import utcnow


class Base(DeclarativeBase):
    """Surrogate integer key plus row bookkeeping timestamps.

    Submissions override ``id`` with the UUID exposed to clients and PayPal.
    """

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"
