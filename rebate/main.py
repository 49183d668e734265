"""FastAPI application for the rebate payout backend."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rebate import db
from rebate.config import AppInfo, Settings, get_settings
from rebate.core.logging import get_logger, setup_logging
import rebate.models  # noqa: F401  registers the tables
from rebate.routers import get_api_router
from rebate.utils.errors import DomainError, error_response

logger = get_logger(__name__)
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = get_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware, app_name="rebate_payouts")
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_paypal_configuration(settings: Settings) -> None:
    """Fail fast in production without a webhook id; warn elsewhere."""

    if not settings.PAYPAL_WEBHOOK_ID:
        if settings.is_production:
            logger.error(
                "PAYPAL_WEBHOOK_ID is missing; webhook deliveries cannot be verified.",
                extra={"env": settings.app_env},
            )
            raise RuntimeError("Missing PAYPAL_WEBHOOK_ID in production.")
        logger.warning(
            "PAYPAL_WEBHOOK_ID is not configured; webhook deliveries will be rejected "
            "unless PAYPAL_WEBHOOK_INSECURE_TEST_MODE is enabled in sandbox.",
            extra={"env": settings.app_env},
        )
    if not settings.paypal_configured:
        logger.warning(
            "PayPal credentials are not configured; payouts will fail.",
            extra={"env": settings.app_env, "paypal_environment": settings.PAYPAL_ENVIRONMENT},
        )
    if settings.DAILY_CAP_BACKEND == "memory":
        logger.warning(
            "Daily auto-approval cap is tracked per process; the effective limit scales with instance count.",
            extra={"max_per_day": settings.AUTO_APPROVAL_MAX_DAILY},
        )


def _prepare_schema(settings: Settings) -> None:
    """Only local and test environments may bypass the Alembic migrations."""

    if settings.ALLOW_DB_CREATE_ALL and settings.app_env.lower() in ALLOWED_CREATE_ENV:
        logger.warning("Creating tables from the models", extra={"env": settings.app_env})
        db.create_all()
    else:
        logger.info("Schema is managed by Alembic migrations", extra={"env": settings.app_env})


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info(
        "Rebate payout service starting",
        extra={"env": settings.app_env, "paypal_environment": settings.PAYPAL_ENVIRONMENT},
    )
    _assert_paypal_configuration(settings)
    db.init_engine()
    _prepare_schema(settings)
    try:
        yield
    finally:
        db.close_engine()
        logger.info("Rebate payout service stopped", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Domain errors already carry the ``{"error": {...}}`` body; wrap plain ones."""

    if isinstance(exc, DomainError):
        if exc.status_code >= 500:
            logger.warning(
                "Request failed",
                extra={"path": request.url.path, "code": exc.code, "status_code": exc.status_code},
            )
        content: dict[str, Any] = exc.detail
    elif isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = error_response("HTTP_ERROR", str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", extra={"path": request.url.path}, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred."),
    )


__all__ = ["app"]
