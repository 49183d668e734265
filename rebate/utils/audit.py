"""Append-only submission audit trail with PII masking."""
from __future__ import annotations

from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from rebate.models.audit import SubmissionAuditEntry
from rebate.utils.time import utcnow


def mask_address(value: Any) -> str:
    text = str(value)
    if "@" in text:
        return f"***@{text.split('@', 1)[1]}"
    return "***"


def _mask_reference(value: Any) -> str:
    text = str(value)
    return "***" if len(text) <= 6 else f"***{text[-4:]}"


def _mask_ip(value: Any) -> str:
    text = str(value)
    return text.rsplit(".", 1)[0] + ".***" if "." in text else "***"


_MASKERS: dict[str, Callable[[Any], str]] = {
    "payee_address": mask_address,
    "paypal_email": mask_address,
    "receiver": mask_address,
    "email": mask_address,
    "payout_reference": _mask_reference,
    "psp_ref": _mask_reference,
    "ip_address": _mask_ip,
}
SENSITIVE_KEYS = frozenset(_MASKERS)


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with payee addresses, references and IPs masked."""

    if isinstance(data, Mapping):
        return {
            key: sanitize_payload_for_audit(
                _MASKERS[key](value) if key in _MASKERS and value is not None else value
            )
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]
    return data


def append_audit(
    db: Session,
    submission_id: str,
    *,
    action: str,
    note: str,
    actor: str = "system",
    data: dict | None = None,
) -> SubmissionAuditEntry:
    """Stage an append-only audit entry for a submission (caller commits)."""

    entry = SubmissionAuditEntry(
        submission_id=submission_id,
        actor=actor,
        action=action,
        note=note,
        data_json=sanitize_payload_for_audit(data or {}),
        at=utcnow(),
    )
    db.add(entry)
    return entry


__all__ = ["SENSITIVE_KEYS", "mask_address", "sanitize_payload_for_audit", "append_audit"]
