"""Routes registering bottle scan sessions."""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from rebate.db import get_db
from rebate.schemas import ScanSessionCreate, ScanSessionRead
from rebate.services import submissions as submissions_service

router = APIRouter(prefix="/scan-sessions", tags=["scan-sessions"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip() or None
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


@router.post("", response_model=ScanSessionRead, status_code=status.HTTP_201_CREATED)
def create_scan_session(
    payload: ScanSessionCreate,
    request: Request,
    db: Session = Depends(get_db),
):
    return submissions_service.record_scan_session(
        db,
        payload,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
