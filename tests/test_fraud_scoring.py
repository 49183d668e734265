"""Tests for the fraud scoring engine."""
from dataclasses import replace
from decimal import Decimal

import pytest

from rebate.schemas.decision import AutoApproveRequest
from rebate.services.fraud_scoring import (
    REASON_INAUTHENTIC_PHOTO,
    REASON_LOW_BOTTLE_CONFIDENCE,
    REASON_MISSING_BRAND,
    REASON_MISSING_RECEIPT_KEYWORDS,
    FraudSignalBundle,
    ScoringPolicy,
    as_confidence,
    score,
)

RECEIPT_TEXT = "KEEPERS HEART IRISH WHISKEY 750ML 34.99 " * 5

CLEAN = FraudSignalBundle(
    has_brand_keyword=True,
    has_receipt_keywords=True,
    detected_text=RECEIPT_TEXT,
    is_likely_real_photo=True,
    bottle_confidence=Decimal("0.90"),
)


def test_clean_bundle_is_auto_approved():
    result = score(CLEAN)

    assert result.score == Decimal("0.9500")
    assert result.auto_approve is True
    assert result.review_reason is None
    assert result.details["disqualifiers"] == []


@pytest.mark.parametrize(
    ("overrides", "expected_reason", "expected_score"),
    [
        ({"fraud_warnings": ("Screenshot detected",)}, "Fraud warnings: Screenshot detected", Decimal("0.4500")),
        ({"validation_errors": ("Date unreadable",)}, "Validation errors: Date unreadable", Decimal("0.4500")),
        ({"is_likely_real_photo": False}, REASON_INAUTHENTIC_PHOTO, Decimal("0.3000")),
    ],
)
def test_disqualifier_forces_review(overrides, expected_reason, expected_score):
    # Extra positive signals must not rescue a disqualified bundle.
    bundle = replace(CLEAN, matched_keywords=("total", "whiskey", "receipt"), detected_brand="jameson", **overrides)

    result = score(bundle)

    assert result.auto_approve is False
    assert result.review_reason == expected_reason
    assert result.score < score(replace(CLEAN, matched_keywords=("total", "whiskey", "receipt"))).score
    assert result.score == expected_score + Decimal("0.0875") + Decimal("0.05")


def test_review_reason_follows_priority():
    bundle = replace(
        CLEAN,
        fraud_warnings=("Duplicate image",),
        validation_errors=("No total",),
        is_likely_real_photo=False,
        has_brand_keyword=False,
    )

    result = score(bundle)

    assert result.score == Decimal("0.0000")
    assert result.review_reason == "Fraud warnings: Duplicate image"
    assert result.details["disqualifiers"] == ["fraud_warning", "inauthentic_photo", "validation_error"]


def test_threshold_boundary_is_exact():
    # 0.35 + 0.20 + 0.15 (photo) + 0.10 (text) + 0.05 (competitor) == 0.85
    bundle = replace(CLEAN, bottle_confidence=Decimal("0.50"), detected_brand="jameson")

    at_threshold = score(bundle)
    below = score(bundle, replace(ScoringPolicy(), threshold=Decimal("0.8501")))

    assert at_threshold.score == Decimal("0.8500")
    assert at_threshold.auto_approve is True
    assert below.auto_approve is False
    assert below.review_reason == REASON_LOW_BOTTLE_CONFIDENCE


def test_scoring_is_deterministic():
    bundle = replace(CLEAN, matched_keywords=("total", "keepers heart"), fraud_warnings=("odd lighting",))

    results = {(r.score, r.auto_approve, r.review_reason) for r in (score(bundle) for _ in range(5))}

    assert len(results) == 1


def test_missing_inputs_take_least_favourable_value():
    bundle = FraudSignalBundle.from_sources(validation=None, fraud_check=None)

    result = score(bundle)

    assert result.score == Decimal("0.0000")
    assert result.auto_approve is False
    assert result.review_reason == REASON_INAUTHENTIC_PHOTO


def test_unreadable_warnings_count_as_a_warning():
    bundle = FraudSignalBundle.from_sources(
        validation={"has_brand_keyword": True, "has_receipt_keywords": True, "errors": []},
        fraud_check={"is_likely_real_photo": True, "warnings": 42},
        bottle_confidence="0.95",
    )

    result = score(bundle)

    assert bundle.fraud_warnings == ("unreadable fraud warnings",)
    assert result.auto_approve is False


def test_truthy_strings_are_not_trusted_as_booleans():
    bundle = FraudSignalBundle.from_sources(
        validation={"has_brand_keyword": "yes", "has_receipt_keywords": 1},
        fraud_check={"is_likely_real_photo": "true"},
        bottle_confidence=0.9,
    )

    assert bundle.has_brand_keyword is False
    assert bundle.has_receipt_keywords is False
    assert bundle.is_likely_real_photo is False


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("0.9", Decimal("0.9")),
        ("abc", Decimal("0")),
        ("1.7", Decimal("1")),
        (-0.2, Decimal("0")),
        ("NaN", Decimal("0")),
        (True, Decimal("0")),
        (None, Decimal("0")),
    ],
)
def test_as_confidence_clamps_and_rejects_garbage(raw, expected):
    assert as_confidence(raw) == expected


def test_keyword_bonus_has_diminishing_returns():
    base = replace(CLEAN, bottle_confidence=Decimal("0.50"))  # 0.80 before bonus

    three = score(replace(base, matched_keywords=("a", "b", "c")))
    duplicates = score(replace(base, matched_keywords=("a", "a", "b")))
    many = score(replace(base, matched_keywords=tuple(f"kw{i}" for i in range(20))))

    assert three.score == Decimal("0.8875")
    assert duplicates.score == Decimal("0.8750")
    assert many.score == Decimal("0.8998")


def test_competitor_brand_match_is_case_insensitive():
    base = replace(CLEAN, bottle_confidence=Decimal("0.50"))

    assert score(replace(base, detected_brand="JAMESON")).score == Decimal("0.8500")
    assert score(replace(base, detected_brand="bushmills")).score == Decimal("0.8000")
    no_expected = ScoringPolicy.from_settings(
        type("S", (), {"AUTO_APPROVAL_CONFIDENCE_MIN": Decimal("0.85"), "EXPECTED_COMPETITOR_BRAND": ""})()
    )
    assert score(replace(base, detected_brand="jameson"), no_expected).score == Decimal("0.8000")


def test_non_disqualified_reasons():
    assert score(replace(CLEAN, has_brand_keyword=False)).review_reason == REASON_MISSING_BRAND
    assert score(replace(CLEAN, has_receipt_keywords=False)).review_reason == REASON_MISSING_RECEIPT_KEYWORDS

    strict = replace(ScoringPolicy(), threshold=Decimal("0.99"))
    assert score(CLEAN, strict).review_reason == "Overall confidence too low (95.0% < 99.0%)"


def test_client_field_names_are_accepted():
    request = AutoApproveRequest.model_validate(
        {
            "validationData": {
                "hasKeepersHeart": True,
                "hasReceiptKeywords": True,
                "detectedText": "KEEPERS HEART TOTAL",
                "matchedKeywords": ["Keepers Heart", "total"],
                "errors": [],
            },
            "fraudCheckData": {"isLikelyRealPhoto": True, "warnings": []},
        }
    )

    bundle = FraudSignalBundle.from_sources(
        validation=request.validation_signals(),
        fraud_check=request.fraud_check_signals(),
        bottle_confidence=Decimal("0.9"),
    )

    assert bundle.has_brand_keyword is True
    assert bundle.matched_keywords == ("keepers heart", "total")
    assert score(bundle).auto_approve is True


@pytest.mark.parametrize(
    ("length", "expected"),
    [
        (0, Decimal("0.8500")),
        (49, Decimal("0.8600")),
        (50, Decimal("0.8800")),
        (100, Decimal("0.9000")),
        (150, Decimal("0.9300")),
        (200, Decimal("0.9500")),
        (800, Decimal("0.9500")),
    ],
)
def test_receipt_text_length_earns_tiered_credit(length, expected):
    result = score(replace(CLEAN, detected_text="x" * length))

    assert result.score == expected
    assert result.details["detected_text_length"] == length


def test_text_length_weight_is_configurable():
    strict = replace(ScoringPolicy(), text_length_weight=Decimal("0.20"))
    bundle = replace(CLEAN, bottle_confidence=Decimal("0.75"), detected_text="TOTAL 34.99")

    result = score(bundle, strict)

    assert result.details["components"]["text_length"] == "0.020"
    assert result.score == Decimal("0.7950")
    assert result.auto_approve is False
