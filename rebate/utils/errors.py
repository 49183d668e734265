"""Standardized error payloads and the domain error taxonomy."""
from typing import Any

from fastapi import HTTPException, status


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class DomainError(HTTPException):
    """HTTP-aware domain failure carrying a stable error code."""

    status_code_default: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code_default: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code or self.code_default
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=status_code or self.status_code_default,
            detail=error_response(self.code, message, details),
            headers=headers,
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFound(DomainError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code_default = "SUBMISSION_NOT_FOUND"


class AlreadyProcessed(DomainError):
    status_code_default = status.HTTP_409_CONFLICT
    code_default = "ALREADY_PROCESSED"


class NotEligible(DomainError):
    status_code_default = status.HTTP_409_CONFLICT
    code_default = "NOT_ELIGIBLE"


class PayeeCooldownActive(NotEligible):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    code_default = "PAYEE_COOLDOWN_ACTIVE"


class UpstreamAuthFailure(DomainError):
    status_code_default = status.HTTP_502_BAD_GATEWAY
    code_default = "UPSTREAM_AUTH_FAILURE"


class UpstreamRejected(DomainError):
    status_code_default = status.HTTP_502_BAD_GATEWAY
    code_default = "UPSTREAM_REJECTED"


class SignatureInvalid(DomainError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code_default = "SIGNATURE_INVALID"


class PersistenceFailure(DomainError):
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    code_default = "PERSISTENCE_FAILURE"


__all__ = [
    "error_response",
    "DomainError",
    "NotFound",
    "AlreadyProcessed",
    "NotEligible",
    "PayeeCooldownActive",
    "UpstreamAuthFailure",
    "UpstreamRejected",
    "SignatureInvalid",
    "PersistenceFailure",
]
