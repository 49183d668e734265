"""ORM models package."""
from .audit import SubmissionAuditEntry
from .base import Base
from .daily_counter import DailyApprovalCounter
from .psp_webhook import PSPWebhookEvent
from .scan_session import ScanSession
from .submission import ALLOWED_TRANSITIONS, Submission, SubmissionStatus, can_transition

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Base",
    "DailyApprovalCounter",
    "PSPWebhookEvent",
    "ScanSession",
    "Submission",
    "SubmissionAuditEntry",
    "SubmissionStatus",
    "can_transition",
]
