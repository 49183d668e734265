"""Schemas for approval decisions, payouts and manual review."""
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_serializer

from rebate.models.submission import SubmissionStatus

# Client field names accepted for each verdict, mapped to the scoring names.
VALIDATION_FIELDS = {
    "has_brand_keyword": ("has_brand_keyword", "hasBrandKeyword", "has_keepers_heart", "hasKeepersHeart"),
    "has_receipt_keywords": ("has_receipt_keywords", "hasReceiptKeywords"),
    "detected_text": ("detected_text", "detectedText"),
    "matched_keywords": ("matched_keywords", "matchedKeywords"),
    "errors": ("errors",),
}
FRAUD_CHECK_FIELDS = {
    "is_likely_real_photo": ("is_likely_real_photo", "isLikelyRealPhoto"),
    "warnings": ("warnings",),
}


def _pick(source: dict[str, Any] | None, fields: dict[str, tuple[str, ...]]) -> dict[str, Any]:
    if not source:
        return {}
    picked: dict[str, Any] = {}
    for name, aliases in fields.items():
        for alias in aliases:
            if alias in source:
                picked[name] = source[alias]
                break
    return picked


class AutoApproveRequest(BaseModel):
    """Verdicts produced upstream; every field is untrusted and optional."""

    validation: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("validation", "validationData", "validation_data"),
    )
    fraud_check: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("fraud_check", "fraudCheckData", "fraudCheck", "fraud_check_data"),
    )

    def validation_signals(self) -> dict[str, Any]:
        return _pick(self.validation, VALIDATION_FIELDS)

    def fraud_check_signals(self) -> dict[str, Any]:
        return _pick(self.fraud_check, FRAUD_CHECK_FIELDS)


class PayoutResult(BaseModel):
    submission_id: str
    success: bool
    status: SubmissionStatus
    payout_reference: str | None = None
    payout_batch_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    error: str | None = None

    @field_serializer("amount", when_used="json")
    def _serialize_amount(self, value: Decimal | None):
        return str(value) if value is not None else None


class DecisionResult(BaseModel):
    submission_id: str
    status: SubmissionStatus
    auto_approved: bool
    confidence_score: Decimal | None = None
    review_reason: str | None = None
    payout_attempted: bool = False
    payout_success: bool | None = None
    payout_reference: str | None = None
    payout_error: str | None = None

    @field_serializer("confidence_score", when_used="json")
    def _serialize_score(self, value: Decimal | None):
        return float(value) if value is not None else None


class ReviewDecision(BaseModel):
    decision: str = Field(
        pattern="^(approve|approved|reject|rejected)$",
        description="Decision outcome",
    )
    note: str | None = Field(default=None, max_length=1000)

    @property
    def approve(self) -> bool:
        return self.decision.startswith("approve")


class ReviewResult(BaseModel):
    submission_id: str
    status: SubmissionStatus
    review_reason: str | None = None
    payout: PayoutResult | None = None
