"""Payout initiation against the payment processor."""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rebate.config import Settings, get_settings
from rebate.models import Submission, SubmissionStatus
from rebate.schemas.decision import PayoutResult
from rebate.services import submissions as submissions_service
from rebate.services.paypal import PayoutReceipt, PayPalClient
from rebate.utils.audit import append_audit
from rebate.utils.errors import (
    NotEligible,
    PayeeCooldownActive,
    PersistenceFailure,
    UpstreamAuthFailure,
    UpstreamRejected,
)
from rebate.utils.time import epoch_millis, utcnow

logger = logging.getLogger(__name__)


def _batch_id(submission_id: str) -> str:
    return f"BATCH-{epoch_millis()}-{submission_id[:8]}"


def _check_eligible(submission: Submission | None, submission_id: str) -> Submission:
    if submission is None:
        raise NotEligible(
            "Submission is not eligible for payout.",
            details={"submission_id": submission_id, "reason": "not_found"},
        )
    if submission.status != SubmissionStatus.APPROVED:
        raise NotEligible(
            "Submission is not eligible for payout.",
            details={
                "submission_id": submission_id,
                "reason": "not_approved",
                "status": submission.status.value,
            },
        )
    if submission.payout_reference:
        raise NotEligible(
            "Submission is not eligible for payout.",
            details={"submission_id": submission_id, "reason": "already_paid"},
        )
    return submission


def _recent_payee_payout(db: Session, submission: Submission, settings: Settings) -> Submission | None:
    since = utcnow() - timedelta(days=settings.PAYEE_COOLDOWN_DAYS)
    stmt = (
        select(Submission)
        .where(
            Submission.payee_address == submission.payee_address,
            Submission.id != submission.id,
            Submission.status == SubmissionStatus.PAID,
            Submission.paid_at >= since,
        )
        .limit(1)
    )
    return db.scalars(stmt).first()


def _enforce_payee_cooldown(db: Session, submission: Submission, settings: Settings) -> None:
    if not settings.PAYEE_COOLDOWN_ENABLED or settings.PAYEE_COOLDOWN_DAYS <= 0:
        return
    try:
        previous = _recent_payee_payout(db, submission, settings)
    except SQLAlchemyError:
        # Best effort: a failed lookup never blocks the payout.
        db.rollback()
        logger.warning(
            "Payee cooldown lookup failed; continuing",
            extra={"submission_id": submission.id},
            exc_info=True,
        )
        return
    if previous is None:
        return

    append_audit(
        db,
        submission.id,
        action="PAYOUT_BLOCKED_COOLDOWN",
        note=f"Payout blocked: payee already paid within the last {settings.PAYEE_COOLDOWN_DAYS} days",
        data={"payee_address": submission.payee_address, "previous_submission_id": previous.id},
    )
    submissions_service.commit_or_fail(db, submission.id)
    logger.info(
        "Payee cooldown active",
        extra={"submission_id": submission.id, "previous_submission_id": previous.id},
    )
    raise PayeeCooldownActive(
        "This payee already received a payout recently.",
        details={"submission_id": submission.id, "cooldown_days": settings.PAYEE_COOLDOWN_DAYS},
    )


def _payout_amount(submission: Submission, settings: Settings) -> Decimal:
    if settings.TEST_PAYOUT_AMOUNT is not None and settings.PAYPAL_ENVIRONMENT == "sandbox":
        return settings.TEST_PAYOUT_AMOUNT
    return submission.payout_amount


def _record_failure(db: Session, submission_id: str, exc: UpstreamAuthFailure | UpstreamRejected) -> None:
    append_audit(
        db,
        submission_id,
        action="PAYOUT_FAILED",
        note=f"Payout failed: {exc.message}",
        data={"code": exc.code, "details": exc.details},
    )
    submissions_service.commit_or_fail(db, submission_id)


def _record_unrecorded_transfer(db: Session, submission_id: str, receipt: PayoutReceipt) -> PersistenceFailure:
    """Log and audit a transfer PayPal accepted but the store did not record."""

    logger.critical(
        "Payout sent but not recorded",
        extra={"submission_id": submission_id, "payout_reference": receipt.payout_item_id},
    )
    try:
        append_audit(
            db,
            submission_id,
            action="PAYOUT_UNRECORDED",
            note=f"Payout {receipt.payout_item_id} sent but could not be recorded; reconcile manually",
            data={"psp_ref": receipt.payout_item_id, "batch_id": receipt.batch_id},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to audit unrecorded payout", extra={"submission_id": submission_id})
    return PersistenceFailure(
        "Payout was sent but could not be recorded.",
        details={
            "submission_id": submission_id,
            "payout_reference": receipt.payout_item_id,
            "payout_batch_id": receipt.batch_id,
        },
    )


def initiate_payout(
    db: Session,
    submission_id: str,
    *,
    client: PayPalClient | None = None,
) -> PayoutResult:
    """Send the submission's payout once; the stored reference guards retries."""

    settings = get_settings()
    submission = _check_eligible(submissions_service.get_submission(db, submission_id), submission_id)
    _enforce_payee_cooldown(db, submission, settings)

    amount = _payout_amount(submission, settings)
    batch_id = _batch_id(submission.id)
    own_client = client is None
    paypal = client or PayPalClient(settings)
    logger.info(
        "Payout initiated",
        extra={"submission_id": submission.id, "amount": str(amount), "batch_id": batch_id},
    )
    try:
        receipt = paypal.create_payout(
            sender_batch_id=batch_id,
            sender_item_id=submission.id,
            receiver=submission.payee_address,
            amount=amount,
            currency=settings.PAYOUT_CURRENCY,
        )
    except (UpstreamAuthFailure, UpstreamRejected) as exc:
        _record_failure(db, submission.id, exc)
        raise
    finally:
        if own_client:
            paypal.close()

    try:
        recorded = submissions_service.transition(
            db,
            submission.id,
            expected=SubmissionStatus.APPROVED,
            target=SubmissionStatus.PAID,
            conditions=(Submission.payout_reference.is_(None),),
            payout_reference=receipt.payout_item_id,
            payout_batch_id=receipt.batch_id,
            paid_at=utcnow(),
        )
        if recorded:
            append_audit(
                db,
                submission.id,
                action="PAYOUT_SENT",
                note=f"Payout sent: {amount} {settings.PAYOUT_CURRENCY} (reference {receipt.payout_item_id})",
                data={
                    "amount": str(amount),
                    "currency": settings.PAYOUT_CURRENCY,
                    "psp_ref": receipt.payout_item_id,
                    "batch_id": receipt.batch_id,
                    "batch_status": receipt.batch_status,
                },
            )
            db.commit()
    except (SQLAlchemyError, PersistenceFailure):
        db.rollback()
        recorded = False
    if not recorded:
        db.rollback()
        raise _record_unrecorded_transfer(db, submission.id, receipt)

    db.refresh(submission)
    logger.info(
        "Payout recorded",
        extra={"submission_id": submission.id, "payout_reference": receipt.payout_item_id},
    )
    return PayoutResult(
        submission_id=submission.id,
        success=True,
        status=submission.status,
        payout_reference=receipt.payout_item_id,
        payout_batch_id=receipt.batch_id,
        amount=amount,
        currency=settings.PAYOUT_CURRENCY,
    )


__all__ = ["initiate_payout"]
