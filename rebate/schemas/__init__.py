"""Schema package exports."""
from .decision import (
    AutoApproveRequest,
    DecisionResult,
    PayoutResult,
    ReviewDecision,
    ReviewResult,
)
from .scan_session import ScanSessionCreate, ScanSessionRead
from .submission import AuditEntryRead, SubmissionCreate, SubmissionRead

__all__ = [
    "AuditEntryRead",
    "AutoApproveRequest",
    "DecisionResult",
    "PayoutResult",
    "ReviewDecision",
    "ReviewResult",
    "ScanSessionCreate",
    "ScanSessionRead",
    "SubmissionCreate",
    "SubmissionRead",
]
