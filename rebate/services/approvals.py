"""Approval decision coordinator and manual review."""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rebate.config import Settings, get_settings
from rebate.models import ScanSession, Submission, SubmissionStatus
from rebate.schemas.decision import (
    AutoApproveRequest,
    DecisionResult,
    PayoutResult,
    ReviewDecision,
    ReviewResult,
)
from rebate.services import fraud_scoring
from rebate.services import payouts as payouts_service
from rebate.services import submissions as submissions_service
from rebate.services.daily_cap import SlotGuard, get_daily_cap_guard
from rebate.services.paypal import PayPalClient
from rebate.utils.audit import append_audit
from rebate.utils.errors import (
    AlreadyProcessed,
    DomainError,
    PayeeCooldownActive,
    PersistenceFailure,
    UpstreamAuthFailure,
    UpstreamRejected,
)
from rebate.utils.time import utcnow

logger = logging.getLogger(__name__)

REASON_AUTO_APPROVAL_DISABLED = "Automatic approval disabled - manual review required"
REASON_DAILY_CAP_REACHED = "Daily auto-approval limit reached - manual review required"
REASON_MANUAL_REJECTION = "Rejected by reviewer"

# Failures payout initiation has already written to the audit log.
_PAYOUT_AUDITED = (PayeeCooldownActive, UpstreamAuthFailure, UpstreamRejected, PersistenceFailure)


class _Reservation:
    """A daily cap slot held for the duration of one decision pass."""

    def __init__(self, guard: SlotGuard, db: Session) -> None:
        self.guard = guard
        self.db = db
        self.held = True

    def release(self) -> None:
        if self.held:
            self.guard.release_slot(self.db)
            self.held = False

    def abandon(self) -> None:
        """Forget the slot after a rollback already undid a transactional reservation."""

        if self.held and not self.guard.joins_transaction:
            self.guard.release_slot(self.db)
        self.held = False


def _ensure_undecided(submission: Submission) -> None:
    if submission.status != SubmissionStatus.PENDING or submission.decided_at is not None:
        raise AlreadyProcessed(
            "Submission has already been processed.",
            details={"submission_id": submission.id, "status": submission.status.value},
        )


def _lost_race(submission_id: str) -> AlreadyProcessed:
    logger.info("Decision lost race", extra={"submission_id": submission_id})
    return AlreadyProcessed(
        "Submission has already been processed.",
        details={"submission_id": submission_id},
    )


def _velocity_warnings(db: Session, scan: ScanSession | None, settings: Settings) -> list[str]:
    if scan is None or not scan.ip_address or settings.SCAN_VELOCITY_LIMIT <= 0:
        return []
    try:
        count = submissions_service.recent_sessions_from_ip(
            db, scan.ip_address, window_hours=settings.SCAN_VELOCITY_WINDOW_HOURS
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("Failed to read scan history; retry the request.") from exc
    if count <= settings.SCAN_VELOCITY_LIMIT:
        return []
    logger.warning(
        "Scan velocity exceeded",
        extra={"session_id": scan.session_id, "count": count, "limit": settings.SCAN_VELOCITY_LIMIT},
    )
    return [
        f"High scan velocity: {count} scans from this network address in the last "
        f"{settings.SCAN_VELOCITY_WINDOW_HOURS}h"
    ]


def _build_signals(
    db: Session, submission: Submission, request: AutoApproveRequest, settings: Settings
) -> fraud_scoring.FraudSignalBundle:
    scan = submissions_service.get_scan_session(db, submission.session_id)
    if scan is None:
        logger.warning(
            "Scan session missing for submission",
            extra={"submission_id": submission.id, "session_id": submission.session_id},
        )
    return fraud_scoring.FraudSignalBundle.from_sources(
        validation=request.validation_signals(),
        fraud_check=request.fraud_check_signals(),
        bottle_confidence=scan.confidence if scan else None,
        detected_brand=scan.detected_brand if scan else None,
        ip_address=scan.ip_address if scan else None,
        server_warnings=_velocity_warnings(db, scan, settings),
    )


def _route_to_review(db: Session, submission: Submission, reason: str, now: datetime) -> DecisionResult:
    """Record an unscored decision pass that leaves the submission for a human."""

    updated = submissions_service.transition(
        db,
        submission.id,
        expected=SubmissionStatus.PENDING,
        target=SubmissionStatus.PENDING,
        conditions=(Submission.decided_at.is_(None),),
        auto_approved=False,
        decided_at=now,
        review_reason=reason,
    )
    if not updated:
        raise _lost_race(submission.id)
    append_audit(db, submission.id, action="ROUTED_TO_REVIEW", note=reason)
    submissions_service.commit_or_fail(db, submission.id)
    db.refresh(submission)
    logger.info("Submission routed to manual review", extra={"submission_id": submission.id, "reason": reason})
    return DecisionResult(
        submission_id=submission.id,
        status=submission.status,
        auto_approved=False,
        review_reason=reason,
    )


def _flag(
    db: Session,
    submission: Submission,
    result: fraud_scoring.FraudScore,
    slot: _Reservation,
    now: datetime,
) -> DecisionResult:
    updated = submissions_service.transition(
        db,
        submission.id,
        expected=SubmissionStatus.PENDING,
        target=SubmissionStatus.PENDING,
        conditions=(Submission.decided_at.is_(None),),
        confidence_score=result.score,
        auto_approved=False,
        decided_at=now,
        review_reason=result.review_reason,
    )
    slot.release()
    if not updated:
        submissions_service.commit_or_fail(db, submission.id)
        raise _lost_race(submission.id)
    append_audit(
        db,
        submission.id,
        action="FLAGGED_FOR_REVIEW",
        note=f"Flagged for manual review: {result.review_reason}",
        data=result.as_audit_payload(),
    )
    submissions_service.commit_or_fail(db, submission.id)
    db.refresh(submission)
    return DecisionResult(
        submission_id=submission.id,
        status=submission.status,
        auto_approved=False,
        confidence_score=result.score,
        review_reason=result.review_reason,
    )


def _approve(
    db: Session,
    submission: Submission,
    result: fraud_scoring.FraudScore,
    slot: _Reservation,
    now: datetime,
) -> None:
    updated = submissions_service.transition(
        db,
        submission.id,
        expected=SubmissionStatus.PENDING,
        target=SubmissionStatus.APPROVED,
        conditions=(Submission.decided_at.is_(None),),
        confidence_score=result.score,
        auto_approved=True,
        auto_approved_at=now,
        decided_at=now,
        review_reason=None,
    )
    if not updated:
        slot.release()
        submissions_service.commit_or_fail(db, submission.id)
        raise _lost_race(submission.id)
    append_audit(
        db,
        submission.id,
        action="AUTO_APPROVED",
        note=f"Auto-approved with confidence {result.score * 100:.1f}%",
        data=result.as_audit_payload(),
    )
    submissions_service.commit_or_fail(db, submission.id)


def _pay(db: Session, submission: Submission, client: PayPalClient | None) -> PayoutResult:
    """Run payout initiation, folding its failure into a partial result."""

    try:
        return payouts_service.initiate_payout(db, submission.id, client=client)
    except DomainError as exc:
        logger.warning(
            "Payout after approval failed",
            extra={"submission_id": submission.id, "code": exc.code},
        )
        if not isinstance(exc, _PAYOUT_AUDITED):
            append_audit(
                db,
                submission.id,
                action="PAYOUT_NOT_STARTED",
                note=f"Payout not started: {exc.message}",
                data={"code": exc.code},
            )
            submissions_service.commit_or_fail(db, submission.id)
        db.refresh(submission)
        return PayoutResult(
            submission_id=submission.id,
            success=False,
            status=submission.status,
            payout_reference=submission.payout_reference,
            error=exc.message,
        )


def decide(
    db: Session,
    submission_id: str,
    request: AutoApproveRequest | None = None,
    *,
    guard: SlotGuard | None = None,
    client: PayPalClient | None = None,
) -> DecisionResult:
    """Run one automatic decision pass for a pending submission.

    The decision is committed before any payout is attempted. A payout that
    fails afterwards leaves the submission ``approved`` and is reported as
    ``payout_success=False`` rather than as an error.
    """

    settings = get_settings()
    request = request or AutoApproveRequest()
    submission = submissions_service.get_submission_or_404(db, submission_id)
    _ensure_undecided(submission)
    now = utcnow()

    if not settings.AUTO_APPROVAL_ENABLED:
        return _route_to_review(db, submission, REASON_AUTO_APPROVAL_DISABLED, now)

    guard = guard or get_daily_cap_guard()
    if not guard.try_reserve_slot(db):
        return _route_to_review(db, submission, REASON_DAILY_CAP_REACHED, now)

    slot = _Reservation(guard, db)
    try:
        signals = _build_signals(db, submission, request, settings)
        result = fraud_scoring.score(signals, fraud_scoring.ScoringPolicy.from_settings(settings))
        logger.info(
            "Fraud score computed",
            extra={
                "submission_id": submission.id,
                "score": str(result.score),
                "auto_approve": result.auto_approve,
                "review_reason": result.review_reason,
            },
        )
        if not result.auto_approve:
            return _flag(db, submission, result, slot, now)
        _approve(db, submission, result, slot, now)
    except PersistenceFailure:
        slot.abandon()
        raise

    payout = _pay(db, submission, client)
    db.refresh(submission)
    return DecisionResult(
        submission_id=submission.id,
        status=submission.status,
        auto_approved=True,
        confidence_score=result.score,
        payout_attempted=True,
        payout_success=payout.success,
        payout_reference=payout.payout_reference,
        payout_error=payout.error,
    )


def review(
    db: Session,
    submission_id: str,
    payload: ReviewDecision,
    *,
    actor: str = "admin",
    client: PayPalClient | None = None,
) -> ReviewResult:
    """Apply a reviewer's approve or reject decision to a pending submission."""

    submission = submissions_service.get_submission_or_404(db, submission_id)
    if submission.status != SubmissionStatus.PENDING:
        raise AlreadyProcessed(
            "Only pending submissions can be reviewed.",
            details={"submission_id": submission.id, "status": submission.status.value},
        )

    if payload.approve:
        target = SubmissionStatus.APPROVED
        reason = None
        action, note = "MANUAL_APPROVED", "Approved by reviewer"
    else:
        target = SubmissionStatus.REJECTED
        reason = payload.note or REASON_MANUAL_REJECTION
        action, note = "MANUAL_REJECTED", f"Rejected by reviewer: {reason}"
    if payload.note and payload.approve:
        note = f"{note}: {payload.note}"

    updated = submissions_service.transition(
        db,
        submission.id,
        expected=SubmissionStatus.PENDING,
        target=target,
        auto_approved=False,
        review_reason=reason,
    )
    if not updated:
        raise _lost_race(submission.id)
    append_audit(db, submission.id, action=action, note=note, actor=actor)
    submissions_service.commit_or_fail(db, submission.id)
    db.refresh(submission)
    logger.info(
        "Submission reviewed",
        extra={"submission_id": submission.id, "status": submission.status.value, "actor": actor},
    )

    payout = _pay(db, submission, client) if payload.approve else None
    if payout is not None:
        db.refresh(submission)
    return ReviewResult(
        submission_id=submission.id,
        status=submission.status,
        review_reason=submission.review_reason,
        payout=payout,
    )


__all__ = [
    "REASON_AUTO_APPROVAL_DISABLED",
    "REASON_DAILY_CAP_REACHED",
    "decide",
    "review",
]
