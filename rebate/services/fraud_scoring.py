"""Fraud scoring for automatic receipt approval.

The score is a weighted sum of independent signals clipped to [0, 1]. A receipt
is auto-approved only when no disqualifying signal fired and the score reaches
the configured threshold. Everything here is pure: the same bundle and policy
always produce the same :class:`FraudScore`, which is what makes a decision
reproducible when it is audited later.

Missing or malformed inputs never raise. Each one is read as the least
favourable value for its signal (no credit for positive signals, a warning for
negative ones).
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

ZERO = Decimal("0")
ONE = Decimal("1")
SCORE_QUANTUM = Decimal("0.0001")

REASON_FRAUD_WARNING = "Fraud warnings: {warnings}"
REASON_INAUTHENTIC_PHOTO = "Photo failed authenticity check - possible screenshot or edited image"
REASON_VALIDATION_ERRORS = "Validation errors: {errors}"
REASON_LOW_BOTTLE_CONFIDENCE = "Low bottle detection confidence - unclear bottle scan"
REASON_MISSING_BRAND = "Required brand not found on receipt"
REASON_MISSING_RECEIPT_KEYWORDS = "Receipt keywords missing - may not be a complete receipt"
REASON_SCORE_TOO_LOW = "Overall confidence too low ({score:.1f}% < {threshold:.1f}%)"


@dataclass(frozen=True)
class ScoringPolicy:
    """Weights and thresholds of the scoring formula."""

    threshold: Decimal = Decimal("0.85")
    brand_keyword_weight: Decimal = Decimal("0.35")
    receipt_keywords_weight: Decimal = Decimal("0.20")
    bottle_high_threshold: Decimal = Decimal("0.85")
    bottle_high_weight: Decimal = Decimal("0.15")
    bottle_medium_threshold: Decimal = Decimal("0.70")
    bottle_medium_weight: Decimal = Decimal("0.075")
    authentic_photo_weight: Decimal = Decimal("0.15")
    text_length_weight: Decimal = Decimal("0.10")
    # (minimum characters, share of text_length_weight), longest first
    text_length_tiers: tuple[tuple[int, Decimal], ...] = (
        (200, Decimal("1.0")),
        (150, Decimal("0.8")),
        (100, Decimal("0.5")),
        (50, Decimal("0.3")),
        (1, Decimal("0.1")),
    )
    keyword_bonus_max: Decimal = Decimal("0.10")
    keyword_bonus_cap: int = 9
    competitor_brand_weight: Decimal = Decimal("0.05")
    expected_competitor_brand: str | None = "jameson"
    disqualifier_penalty: Decimal = Decimal("0.50")

    @classmethod
    def from_settings(cls, settings: Any) -> "ScoringPolicy":
        return replace(
            cls(),
            threshold=Decimal(str(settings.AUTO_APPROVAL_CONFIDENCE_MIN)),
            expected_competitor_brand=settings.EXPECTED_COMPETITOR_BRAND or None,
        )


@dataclass(frozen=True)
class FraudSignalBundle:
    """Client-reported and server-known signals for one submission."""

    has_brand_keyword: bool = False
    has_receipt_keywords: bool = False
    detected_text: str = ""
    matched_keywords: tuple[str, ...] = ()
    validation_errors: tuple[str, ...] = ()
    is_likely_real_photo: bool = False
    fraud_warnings: tuple[str, ...] = ()
    bottle_confidence: Decimal = ZERO
    detected_brand: str | None = None
    ip_address: str | None = None

    @classmethod
    def from_sources(
        cls,
        *,
        validation: Mapping[str, Any] | None,
        fraud_check: Mapping[str, Any] | None,
        bottle_confidence: Any = None,
        detected_brand: Any = None,
        ip_address: str | None = None,
        server_warnings: Iterable[str] = (),
    ) -> "FraudSignalBundle":
        """Build a bundle from untrusted payload fragments plus server context."""

        validation = validation if isinstance(validation, Mapping) else {}
        fraud_check = fraud_check if isinstance(fraud_check, Mapping) else {}
        warnings = _as_reasons(fraud_check.get("warnings"), "fraud warnings") + tuple(
            str(item) for item in server_warnings if item
        )
        return cls(
            has_brand_keyword=validation.get("has_brand_keyword") is True,
            has_receipt_keywords=validation.get("has_receipt_keywords") is True,
            detected_text=_as_text(validation.get("detected_text")),
            matched_keywords=_as_keywords(validation.get("matched_keywords")),
            validation_errors=_as_reasons(validation.get("errors"), "validation errors"),
            is_likely_real_photo=fraud_check.get("is_likely_real_photo") is True,
            fraud_warnings=warnings,
            bottle_confidence=as_confidence(bottle_confidence),
            detected_brand=_as_text(detected_brand) or None,
            ip_address=ip_address,
        )


@dataclass(frozen=True)
class FraudScore:
    score: Decimal
    auto_approve: bool
    review_reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def as_audit_payload(self) -> dict[str, Any]:
        return {
            "score": str(self.score),
            "auto_approve": self.auto_approve,
            "review_reason": self.review_reason,
            "details": self.details,
        }


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_keywords(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(item.strip().lower() for item in value if isinstance(item, str) and item.strip())


def _as_reasons(value: Any, label: str) -> tuple[str, ...]:
    """Normalise a negative-signal list; anything unreadable counts as a hit."""

    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value if item not in (None, ""))
    return (f"unreadable {label}",)


def as_confidence(value: Any) -> Decimal:
    """Coerce a confidence value into [0, 1]; unreadable values become 0."""

    if value is None or isinstance(value, bool):
        return ZERO
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    if not number.is_finite():
        return ZERO
    return min(max(number, ZERO), ONE)


def _bottle_component(confidence: Decimal, policy: ScoringPolicy) -> Decimal:
    if confidence >= policy.bottle_high_threshold:
        return policy.bottle_high_weight
    if confidence >= policy.bottle_medium_threshold:
        return policy.bottle_medium_weight
    return ZERO


def _text_length_component(text: str, policy: ScoringPolicy) -> Decimal:
    length = len(text)
    for minimum, share in policy.text_length_tiers:
        if length >= minimum:
            return policy.text_length_weight * share
    return ZERO


def _keyword_bonus(keywords: tuple[str, ...], policy: ScoringPolicy) -> Decimal:
    count = min(len(set(keywords)), policy.keyword_bonus_cap)
    if count <= 0:
        return ZERO
    return policy.keyword_bonus_max * (ONE - Decimal("0.5") ** count)


def _brand_matches(detected: str | None, expected: str | None) -> bool:
    if not detected or not expected:
        return False
    return detected.strip().casefold() == expected.strip().casefold()


def _disqualifiers(signals: FraudSignalBundle) -> list[str]:
    found: list[str] = []
    if signals.fraud_warnings:
        found.append("fraud_warning")
    if not signals.is_likely_real_photo:
        found.append("inauthentic_photo")
    if signals.validation_errors:
        found.append("validation_error")
    return found


def _review_reason(
    signals: FraudSignalBundle, disqualifiers: list[str], score: Decimal, policy: ScoringPolicy
) -> str:
    # Fixed priority; exactly one reason is ever reported.
    if "fraud_warning" in disqualifiers:
        return REASON_FRAUD_WARNING.format(warnings="; ".join(signals.fraud_warnings))
    if "inauthentic_photo" in disqualifiers:
        return REASON_INAUTHENTIC_PHOTO
    if "validation_error" in disqualifiers:
        return REASON_VALIDATION_ERRORS.format(errors="; ".join(signals.validation_errors))
    if signals.bottle_confidence < policy.bottle_high_threshold:
        return REASON_LOW_BOTTLE_CONFIDENCE
    if not signals.has_brand_keyword:
        return REASON_MISSING_BRAND
    if not signals.has_receipt_keywords:
        return REASON_MISSING_RECEIPT_KEYWORDS
    return REASON_SCORE_TOO_LOW.format(
        score=float(score * 100), threshold=float(policy.threshold * 100)
    )


def score(signals: FraudSignalBundle, policy: ScoringPolicy | None = None) -> FraudScore:
    """Score a signal bundle and decide whether it may be auto-approved."""

    policy = policy or ScoringPolicy()
    components = {
        "brand_keyword": policy.brand_keyword_weight if signals.has_brand_keyword else ZERO,
        "receipt_keywords": policy.receipt_keywords_weight if signals.has_receipt_keywords else ZERO,
        "bottle_confidence": _bottle_component(signals.bottle_confidence, policy),
        "authentic_photo": policy.authentic_photo_weight if signals.is_likely_real_photo else ZERO,
        "keyword_bonus": _keyword_bonus(signals.matched_keywords, policy),
        "text_length": _text_length_component(signals.detected_text, policy),
        "competitor_brand": (
            policy.competitor_brand_weight
            if _brand_matches(signals.detected_brand, policy.expected_competitor_brand)
            else ZERO
        ),
    }
    disqualifiers = _disqualifiers(signals)
    penalty = policy.disqualifier_penalty * len(disqualifiers)

    raw = sum(components.values(), ZERO) - penalty
    total = min(max(raw, ZERO), ONE).quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP)

    auto_approve = not disqualifiers and total >= policy.threshold
    reason = None if auto_approve else _review_reason(signals, disqualifiers, total, policy)

    details = {
        "components": {name: str(value) for name, value in components.items()},
        "penalty": str(penalty),
        "disqualifiers": disqualifiers,
        "threshold": str(policy.threshold),
        "matched_keyword_count": len(set(signals.matched_keywords)),
        "detected_text_length": len(signals.detected_text),
    }
    return FraudScore(score=total, auto_approve=auto_approve, review_reason=reason, details=details)


__all__ = [
    "FraudSignalBundle",
    "FraudScore",
    "ScoringPolicy",
    "as_confidence",
    "score",
]
