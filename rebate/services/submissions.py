"""Submission record store helpers."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rebate.models import ScanSession, Submission, SubmissionStatus, can_transition
from rebate.schemas.scan_session import ScanSessionCreate
from rebate.schemas.submission import SubmissionCreate
from rebate.utils.audit import append_audit
from rebate.utils.errors import AlreadyProcessed, NotFound, PersistenceFailure
from rebate.utils.time import utcnow

logger = logging.getLogger(__name__)


def record_scan_session(
    db: Session,
    payload: ScanSessionCreate,
    *,
    ip_address: str | None,
    user_agent: str | None,
) -> ScanSession:
    """Persist the bottle scan a later submission will reference."""

    if get_scan_session(db, payload.session_id) is not None:
        raise AlreadyProcessed(
            "Scan session already registered.",
            code="SCAN_SESSION_EXISTS",
            details={"session_id": payload.session_id},
        )
    scan = ScanSession(
        session_id=payload.session_id,
        detected_brand=payload.detected_brand,
        confidence=payload.confidence,
        ip_address=ip_address,
        user_agent=user_agent,
        scanned_at=utcnow(),
    )
    db.add(scan)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyProcessed(
            "Scan session already registered.",
            code="SCAN_SESSION_EXISTS",
            details={"session_id": payload.session_id},
        ) from exc
    db.refresh(scan)
    logger.info("Scan session recorded", extra={"session_id": scan.session_id})
    return scan


def get_scan_session(db: Session, session_id: str) -> ScanSession | None:
    return db.scalar(select(ScanSession).where(ScanSession.session_id == session_id))


def create_submission(db: Session, payload: SubmissionCreate) -> Submission:
    """Create a pending submission tied to an existing scan session."""

    if get_scan_session(db, payload.session_id) is None:
        raise NotFound(
            "Scan session not found.",
            code="SCAN_SESSION_NOT_FOUND",
            details={"session_id": payload.session_id},
        )

    submission = Submission(
        session_id=payload.session_id,
        status=SubmissionStatus.PENDING,
        payout_amount=payload.payout_amount,
        payee_address=payload.payee_address,
        image_hash=payload.image_hash,
    )
    db.add(submission)
    db.flush()
    append_audit(
        db,
        submission.id,
        action="SUBMISSION_CREATED",
        note="Submission received",
        data={"payout_amount": str(submission.payout_amount), "payee_address": submission.payee_address},
    )
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to create submission", extra={"session_id": payload.session_id})
        raise PersistenceFailure("Failed to store the submission.") from exc
    db.refresh(submission)
    logger.info("Submission created", extra={"submission_id": submission.id})
    return submission


def get_submission(db: Session, submission_id: str) -> Submission | None:
    return db.get(Submission, submission_id, populate_existing=True)


def get_submission_or_404(db: Session, submission_id: str) -> Submission:
    submission = get_submission(db, submission_id)
    if submission is None:
        raise NotFound("Submission not found.", details={"submission_id": submission_id})
    return submission


def transition(
    db: Session,
    submission_id: str,
    *,
    expected: SubmissionStatus,
    target: SubmissionStatus,
    conditions: tuple[Any, ...] = (),
    **values: Any,
) -> bool:
    """Move a submission from ``expected`` to ``target`` if nobody beat us to it.

    The write is staged in the caller's transaction. Returns ``False`` when the
    row no longer matches ``expected`` (or one of ``conditions``).
    """

    if expected != target and not can_transition(expected, target):
        raise ValueError(f"Illegal submission transition {expected.value} -> {target.value}")

    stmt = (
        update(Submission)
        .where(Submission.id == submission_id, Submission.status == expected, *conditions)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "Submission update failed",
            extra={"submission_id": submission_id, "target": target.value},
        )
        raise PersistenceFailure(
            "Failed to update the submission; retry the request.",
            details={"submission_id": submission_id},
        ) from exc
    return result.rowcount == 1


def commit_or_fail(db: Session, submission_id: str) -> None:
    """Commit the current transaction or surface a retryable persistence failure."""

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Commit failed", extra={"submission_id": submission_id})
        raise PersistenceFailure(
            "Failed to persist the submission; retry the request.",
            details={"submission_id": submission_id},
        ) from exc


def recent_sessions_from_ip(db: Session, ip_address: str | None, *, window_hours: int) -> int:
    """Count scan sessions opened from ``ip_address`` within the window."""

    if not ip_address:
        return 0
    since = utcnow() - timedelta(hours=window_hours)
    stmt = select(func.count(ScanSession.id)).where(
        ScanSession.ip_address == ip_address,
        ScanSession.scanned_at >= since,
    )
    return int(db.scalar(stmt) or 0)


__all__ = [
    "record_scan_session",
    "get_scan_session",
    "create_submission",
    "get_submission",
    "get_submission_or_404",
    "transition",
    "commit_or_fail",
    "recent_sessions_from_ip",
]
