"""Health check endpoint."""
from __future__ import annotations

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from rebate.config import get_settings
from rebate.db import get_engine
from rebate.services.daily_cap import get_daily_cap_guard
from rebate.services.webhooks import verification_bypassed

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except SQLAlchemyError:
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        config = Config("alembic.ini")
        script = ScriptDirectory.from_config(config)
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        engine = get_engine()
        with engine.connect() as conn:
            current = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
    except SQLAlchemyError:
        logger.exception("Migration check failed")
        return False, "unknown"
    if expected_head is None:
        return False, "unknown"
    if current == expected_head:
        return True, "up_to_date"
    return False, "out_of_date"


def _cap_usage() -> dict[str, object]:
    settings = get_settings()
    guard = get_daily_cap_guard()
    try:
        used = guard.used_today()
    except SQLAlchemyError:
        logger.exception("Daily cap usage lookup failed")
        used = None
    return {
        "backend": settings.DAILY_CAP_BACKEND,
        "max_per_day": settings.AUTO_APPROVAL_MAX_DAILY,
        "used_today": used,
    }


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    """Return database, processor and auto-approval status."""

    settings = get_settings()
    db_status = _db_status()
    db_ok = db_status == "ok"
    if db_ok:
        migration_ok, migration_status = _migrations_status()
    else:
        migration_ok, migration_status = False, "unknown"
    degraded = not (db_ok and migration_ok)
    return {
        "status": "degraded" if degraded else "ok",
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migration_ok,
        "migrations_status": migration_status,
        "paypal": {
            "environment": settings.PAYPAL_ENVIRONMENT,
            "credentials_configured": settings.paypal_configured,
            "webhook_configured": bool(settings.PAYPAL_WEBHOOK_ID),
            "webhook_verification_bypassed": verification_bypassed(settings)
            and not settings.PAYPAL_WEBHOOK_ID,
        },
        "auto_approval": {
            "enabled": settings.AUTO_APPROVAL_ENABLED,
            "threshold": str(settings.AUTO_APPROVAL_CONFIDENCE_MIN),
            **_cap_usage(),
        },
        "payee_cooldown": {
            "enabled": settings.PAYEE_COOLDOWN_ENABLED,
            "days": settings.PAYEE_COOLDOWN_DAYS,
        },
    }
