"""Submission, decision and payout routes."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from rebate.db import get_db
from rebate.schemas import (
    AutoApproveRequest,
    DecisionResult,
    PayoutResult,
    ReviewDecision,
    ReviewResult,
    SubmissionCreate,
    SubmissionRead,
)
from rebate.security import require_admin
from rebate.services import approvals as approvals_service
from rebate.services import payouts as payouts_service
from rebate.services import submissions as submissions_service

router = APIRouter(prefix="/submissions", tags=["submissions"])


@router.post("", response_model=SubmissionRead, status_code=status.HTTP_201_CREATED)
def create_submission(payload: SubmissionCreate, db: Session = Depends(get_db)):
    return submissions_service.create_submission(db, payload)


@router.get("/{submission_id}", response_model=SubmissionRead)
def read_submission(submission_id: str, db: Session = Depends(get_db)):
    submission = submissions_service.get_submission_or_404(db, submission_id)
    db.refresh(submission)  # audit entries are appended by id, not through the relationship
    return submission


@router.post("/{submission_id}/auto-approve", response_model=DecisionResult)
def auto_approve(
    submission_id: str,
    payload: AutoApproveRequest | None = None,
    db: Session = Depends(get_db),
):
    """Run the automatic decision pass; payout failures come back as partial success."""

    return approvals_service.decide(db, submission_id, payload)


@router.post("/{submission_id}/payout", response_model=PayoutResult)
def retry_payout(
    submission_id: str,
    db: Session = Depends(get_db),
    actor: str = Depends(require_admin),
):
    return payouts_service.initiate_payout(db, submission_id)


@router.post("/{submission_id}/review", response_model=ReviewResult)
def review_submission(
    submission_id: str,
    payload: ReviewDecision,
    db: Session = Depends(get_db),
    actor: str = Depends(require_admin),
):
    return approvals_service.review(db, submission_id, payload, actor=actor)
