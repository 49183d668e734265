"""Reconciliation of PayPal payout webhook deliveries."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rebate.config import Settings, get_settings
from rebate.models import PSPWebhookEvent, Submission, SubmissionStatus
from rebate.services import submissions as submissions_service
from rebate.services.paypal import TRANSMISSION_HEADERS, PayPalClient
from rebate.utils.audit import append_audit
from rebate.utils.errors import DomainError, SignatureInvalid
from rebate.utils.time import utcnow

logger = logging.getLogger(__name__)

PROVIDER = "paypal"
EVENT_PREFIX = "PAYMENT.PAYOUTS-ITEM."

# Event suffix -> whether the payout is invalidated (paid -> approved).
EVENT_EFFECTS: dict[str, bool] = {
    "SUCCEEDED": False,
    "FAILED": True,
    "BLOCKED": True,
    "DENIED": True,
    "HELD": False,
    "UNCLAIMED": False,
    "CANCELED": True,
    "RETURNED": True,
    "REFUNDED": True,
}

OUTCOME_VERIFICATION_FAILED = "verification_failed"
OUTCOME_MALFORMED = "malformed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_UNMATCHED = "unmatched"
OUTCOME_APPLIED = "applied"
OUTCOME_ERROR = "error"


@dataclass(frozen=True)
class WebhookOutcome:
    outcome: str
    event_id: str | None = None
    event_type: str | None = None
    submission_id: str | None = None
    status_changed: bool = False

    def as_response(self) -> dict[str, Any]:
        return {
            "received": True,
            "outcome": self.outcome,
            "event_id": self.event_id,
            "event_type": self.event_type,
        }


def verification_bypassed(settings: Settings) -> bool:
    """True only for the explicit sandbox test mode without a webhook id."""

    return (
        settings.PAYPAL_WEBHOOK_INSECURE_TEST_MODE
        and settings.PAYPAL_ENVIRONMENT == "sandbox"
        and not settings.is_production
    )


def _verify(raw_body: bytes, headers: Mapping[str, str], settings: Settings, client: PayPalClient | None) -> None:
    if not settings.PAYPAL_WEBHOOK_ID:
        if verification_bypassed(settings):
            logger.warning("PayPal webhook accepted without signature verification (test mode)")
            return
        raise SignatureInvalid("PAYPAL_WEBHOOK_ID is not configured.", code="WEBHOOK_NOT_CONFIGURED")

    lowered = {key.lower(): value for key, value in headers.items()}
    transmission = {name: lowered.get(header) for name, header in TRANSMISSION_HEADERS.items()}
    missing = sorted(name for name, value in transmission.items() if not value)
    if missing:
        raise SignatureInvalid("Missing PayPal transmission headers.", details={"missing": missing})

    own_client = client is None
    paypal = client or PayPalClient(settings)
    try:
        verified = paypal.verify_webhook_signature(
            raw_body=raw_body,
            transmission=transmission,
            webhook_id=settings.PAYPAL_WEBHOOK_ID,
        )
    except DomainError as exc:
        raise SignatureInvalid("Signature verification could not be completed.", details={"cause": exc.code}) from exc
    finally:
        if own_client:
            paypal.close()
    if not verified:
        raise SignatureInvalid("PayPal reported the webhook signature as invalid.")


def _parse(raw_body: bytes) -> dict[str, Any] | None:
    try:
        event = json.loads(raw_body)
    except ValueError:
        return None
    return event if isinstance(event, dict) else None


def _note_for(event_type: str, suffix: str | None, resource: Mapping[str, Any]) -> str:
    if suffix == "SUCCEEDED":
        return "PayPal payout succeeded"
    if suffix == "FAILED":
        errors = resource.get("errors")
        message = errors.get("message") if isinstance(errors, Mapping) else None
        return f"PayPal payout failed: {message or 'Unknown error'}"
    if suffix is not None:
        return f"PayPal payout {suffix.lower()}"
    return f"PayPal webhook: {event_type}"


def _apply(db: Session, submission: Submission, event: Mapping[str, Any], payout_item_id: str) -> bool:
    """Fold one event into the submission; returns whether status changed."""

    event_type = event["event_type"]
    resource = event.get("resource") or {}
    suffix = event_type[len(EVENT_PREFIX):] if event_type.startswith(EVENT_PREFIX) else None
    if suffix not in EVENT_EFFECTS:
        suffix = None
    note = _note_for(event_type, suffix, resource)

    changed = False
    if suffix is not None and EVENT_EFFECTS[suffix]:
        changed = submissions_service.transition(
            db,
            submission.id,
            expected=SubmissionStatus.PAID,
            target=SubmissionStatus.APPROVED,
            conditions=(Submission.payout_reference == payout_item_id,),
            payout_reference=None,
            paid_at=None,
        )
        if changed:
            note = f"{note}; payout reference cleared for retry"
        else:
            note = f"{note}; no status change (submission was {submission.status.value})"

    append_audit(
        db,
        submission.id,
        action=f"PAYPAL_{suffix or 'EVENT'}",
        note=note,
        actor=PROVIDER,
        data={
            "event_id": event.get("id"),
            "event_type": event_type,
            "psp_ref": payout_item_id,
            "transaction_status": resource.get("transaction_status"),
        },
    )
    return changed


def _reconcile(db: Session, event: dict[str, Any]) -> WebhookOutcome:
    event_id = event.get("id")
    event_type = event.get("event_type")
    resource = event.get("resource")
    payout_item_id = resource.get("payout_item_id") if isinstance(resource, Mapping) else None
    if not (isinstance(event_id, str) and event_id and isinstance(event_type, str) and event_type):
        logger.warning("PayPal webhook missing id or event type")
        return WebhookOutcome(OUTCOME_MALFORMED)
    if not isinstance(payout_item_id, str) or not payout_item_id:
        logger.warning("PayPal webhook missing payout item id", extra={"event_id": event_id})
        return WebhookOutcome(OUTCOME_MALFORMED, event_id=event_id, event_type=event_type)

    existing = db.scalar(
        select(PSPWebhookEvent).where(
            PSPWebhookEvent.provider == PROVIDER,
            PSPWebhookEvent.event_id == event_id,
        )
    )
    if existing is not None:
        logger.info("Duplicate PayPal webhook ignored", extra={"event_id": event_id})
        return WebhookOutcome(OUTCOME_DUPLICATE, event_id=event_id, event_type=event_type)

    record = PSPWebhookEvent(
        provider=PROVIDER,
        event_id=event_id,
        event_type=event_type,
        psp_ref=payout_item_id,
        raw_json=event,
    )
    db.add(record)

    submission = db.scalar(
        select(Submission)
        .where(Submission.payout_reference == payout_item_id)
        .execution_options(populate_existing=True)
    )
    if submission is None:
        record.outcome = OUTCOME_UNMATCHED
        record.processed_at = utcnow()
        db.commit()
        logger.info(
            "PayPal webhook matched no submission",
            extra={"event_id": event_id, "event_type": event_type},
        )
        return WebhookOutcome(OUTCOME_UNMATCHED, event_id=event_id, event_type=event_type)

    changed = _apply(db, submission, event, payout_item_id)
    record.outcome = OUTCOME_APPLIED
    record.processed_at = utcnow()
    db.commit()
    db.refresh(submission)
    logger.info(
        "PayPal webhook applied",
        extra={
            "event_id": event_id,
            "event_type": event_type,
            "submission_id": submission.id,
            "status": submission.status.value,
            "status_changed": changed,
        },
    )
    return WebhookOutcome(
        OUTCOME_APPLIED,
        event_id=event_id,
        event_type=event_type,
        submission_id=submission.id,
        status_changed=changed,
    )


def handle_event(
    db: Session,
    raw_body: bytes,
    headers: Mapping[str, str],
    *,
    client: PayPalClient | None = None,
) -> WebhookOutcome:
    """Verify and reconcile one delivery. Never raises; the outcome says what happened."""

    settings = get_settings()
    event = _parse(raw_body)
    if event is None:
        logger.warning("PayPal webhook body is not a JSON object")
        return WebhookOutcome(OUTCOME_MALFORMED)

    try:
        _verify(raw_body, headers, settings, client)
    except SignatureInvalid as exc:
        logger.warning(
            "PayPal webhook signature rejected",
            extra={"code": exc.code, "event_id": event.get("id"), "reason": exc.message},
        )
        return WebhookOutcome(OUTCOME_VERIFICATION_FAILED, event_id=event.get("id"))
    except Exception:
        # Fail closed: an unverifiable delivery is never applied.
        logger.exception("PayPal webhook verification errored", extra={"event_id": event.get("id")})
        return WebhookOutcome(OUTCOME_VERIFICATION_FAILED, event_id=event.get("id"))

    try:
        return _reconcile(db, event)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("PayPal webhook could not be persisted", extra={"event_id": event.get("id")})
    except Exception:
        db.rollback()
        logger.exception("PayPal webhook processing failed", extra={"event_id": event.get("id")})
    return WebhookOutcome(OUTCOME_ERROR, event_id=event.get("id"), event_type=event.get("event_type"))


__all__ = [
    "EVENT_EFFECTS",
    "WebhookOutcome",
    "handle_event",
    "verification_bypassed",
]
