"""Schemas for submissions and their audit trail."""
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_serializer

from rebate.models.submission import SubmissionStatus
from rebate.utils.audit import mask_address


class SubmissionCreate(BaseModel):
    session_id: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )
    payout_amount: Decimal = Field(
        gt=0,
        max_digits=10,
        decimal_places=2,
        validation_alias=AliasChoices("payout_amount", "payoutAmount"),
    )
    payee_address: EmailStr = Field(
        validation_alias=AliasChoices("payee_address", "payeeAddress", "paypal_email", "paypalEmail"),
    )
    image_hash: str | None = Field(
        default=None,
        max_length=128,
        validation_alias=AliasChoices("image_hash", "imageHash"),
    )


class AuditEntryRead(BaseModel):
    at: datetime
    actor: str
    action: str
    note: str

    model_config = ConfigDict(from_attributes=True)


class SubmissionRead(BaseModel):
    id: str
    session_id: str
    status: SubmissionStatus
    confidence_score: Decimal | None
    auto_approved: bool
    auto_approved_at: datetime | None
    decided_at: datetime | None
    review_reason: str | None
    payout_reference: str | None
    paid_at: datetime | None
    payout_amount: Decimal
    payee_address: str
    created_at: datetime
    updated_at: datetime
    audit_log: list[AuditEntryRead] = []

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("confidence_score", when_used="json")
    def _serialize_score(self, value: Decimal | None):
        return float(value) if value is not None else None

    # Reads are unauthenticated; only the payee's domain is shown.
    @field_serializer("payee_address")
    def _mask_payee(self, value: str) -> str:
        return mask_address(value)
