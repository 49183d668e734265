"""API routers for the rebate payout backend."""
from fastapi import APIRouter

from . import health, scan_sessions, submissions, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(scan_sessions.router)
    api_router.include_router(submissions.router)
    api_router.include_router(webhooks.router)
    return api_router
