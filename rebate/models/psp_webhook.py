"""Receipt log of PayPal webhook deliveries."""
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, JSON, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PSPWebhookEvent(Base):
    """One verified delivery, keyed by the processor's event id.

    A second delivery with the same ``(provider, event_id)`` is a duplicate and
    is never applied again. ``outcome`` records what reconciliation did with it.
    """

    __tablename__ = "psp_webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_psp_webhook_events_provider_event_id"),
        Index("ix_psp_webhook_events_received", "received_at"),
        Index("ix_psp_webhook_events_psp_ref", "psp_ref"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="paypal")
    event_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    # payout_item_id from the event resource
    psp_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(30), nullable=True)
    raw_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
