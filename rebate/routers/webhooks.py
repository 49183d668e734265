"""Routes for PayPal payout webhooks."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from rebate.config import get_settings
from rebate.db import get_db
from rebate.services import webhooks as webhooks_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/paypal", status_code=status.HTTP_200_OK)
async def paypal_webhook(
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, object]:
    """Acknowledge every delivery; PayPal retries anything that is not a 200."""

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    # Verification calls PayPal and reconciliation hits the database; both block.
    outcome = await run_in_threadpool(webhooks_service.handle_event, db, raw_body, headers)
    logger.info(
        "PayPal webhook processed",
        extra={"event_id": outcome.event_id, "event_type": outcome.event_type, "outcome": outcome.outcome},
    )
    return outcome.as_response()


@router.get("/paypal")
def paypal_webhook_status() -> dict[str, object]:
    settings = get_settings()
    return {
        "status": "ok",
        "message": "PayPal webhook endpoint is running",
        "environment": settings.PAYPAL_ENVIRONMENT,
        "webhook_configured": bool(settings.PAYPAL_WEBHOOK_ID),
        "verification_bypassed": webhooks_service.verification_bypassed(settings)
        and not settings.PAYPAL_WEBHOOK_ID,
    }
