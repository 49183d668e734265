"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment for the whole test session
os.environ.setdefault("DATABASE_URL", "sqlite:///./rebate_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("DAILY_CAP_BACKEND", "database")
os.environ.setdefault("PAYPAL_ENVIRONMENT", "sandbox")
os.environ.setdefault("PAYPAL_CLIENT_ID", "test-client-id")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("PAYPAL_WEBHOOK_ID", "WH-TEST-123")

from rebate.main import app  # noqa: E402
from rebate.config import settings as app_settings  # noqa: E402
from rebate.db import get_db  # noqa: E402
from rebate.models import ScanSession, Submission, SubmissionStatus  # noqa: E402
from rebate.services.paypal import PayoutReceipt  # noqa: E402
from rebate.utils.errors import UpstreamRejected  # noqa: E402

DB_PATH = Path("./rebate_test.db")

GOOD_SIGNALS: dict[str, Any] = {
    "validationData": {
        "hasKeepersHeart": True,
        "hasReceiptKeywords": True,
        "detectedText": "KEEPERS HEART IRISH WHISKEY SUBTOTAL TOTAL",
        "matchedKeywords": ["keepers heart", "total"],
        "errors": [],
    },
    "fraudCheckData": {"isLikelyRealPhoto": True, "warnings": []},
}


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per test session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Schema comes from Alembic only
_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings():
    return app_settings


@pytest.fixture
def signals() -> Callable[..., dict[str, Any]]:
    """Build an auto-approve body from the clean verdicts with overrides."""

    def _factory(*, validation: dict[str, Any] | None = None, fraud_check: dict[str, Any] | None = None):
        return {
            "validationData": {**GOOD_SIGNALS["validationData"], **(validation or {})},
            "fraudCheckData": {**GOOD_SIGNALS["fraudCheckData"], **(fraud_check or {})},
        }

    return _factory


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['ADMIN_API_KEY']}"}


class FakePayPal:
    """Stands in for ``PayPalClient``; records every call it receives."""

    def __init__(self) -> None:
        self.payouts: list[dict[str, Any]] = []
        self.verifications: list[dict[str, Any]] = []
        self.fail_with: Exception | None = None
        self.verified = True

    def create_payout(self, *, sender_batch_id, sender_item_id, receiver, amount, currency, access_token=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.payouts.append(
            {
                "sender_batch_id": sender_batch_id,
                "sender_item_id": sender_item_id,
                "receiver": receiver,
                "amount": amount,
                "currency": currency,
            }
        )
        return PayoutReceipt(
            payout_item_id=f"ITEM-{len(self.payouts)}-{uuid4().hex[:10].upper()}",
            batch_id=f"PB-{sender_batch_id}",
            batch_status="PENDING",
            raw={},
        )

    def verify_webhook_signature(self, *, raw_body, transmission, webhook_id):
        if self.fail_with is not None:
            raise self.fail_with
        self.verifications.append({"transmission": dict(transmission), "webhook_id": webhook_id})
        return self.verified

    def close(self) -> None:
        pass


@pytest.fixture
def fake_paypal(monkeypatch: pytest.MonkeyPatch) -> FakePayPal:
    fake = FakePayPal()
    monkeypatch.setattr("rebate.services.payouts.PayPalClient", lambda *args, **kwargs: fake)
    monkeypatch.setattr("rebate.services.webhooks.PayPalClient", lambda *args, **kwargs: fake)
    return fake


@pytest.fixture
def rejecting_paypal(fake_paypal: FakePayPal) -> FakePayPal:
    fake_paypal.fail_with = UpstreamRejected(
        "PayPal rejected the payout.",
        details={"status_code": 422, "name": "INSUFFICIENT_FUNDS"},
    )
    return fake_paypal


@pytest.fixture
def make_scan_session(db_session: Session) -> Callable[..., ScanSession]:
    def _factory(
        *,
        confidence: str | None = "0.90",
        detected_brand: str | None = "jameson",
        ip_address: str | None = None,
    ) -> ScanSession:
        scan = ScanSession(
            session_id=f"scan-{uuid4().hex}",
            detected_brand=detected_brand,
            confidence=Decimal(confidence) if confidence is not None else None,
            ip_address=ip_address,
            user_agent="pytest",
        )
        db_session.add(scan)
        db_session.commit()
        return scan

    return _factory


@pytest.fixture
def make_submission(db_session: Session, make_scan_session) -> Callable[..., Submission]:
    def _factory(
        *,
        status: SubmissionStatus = SubmissionStatus.PENDING,
        amount: str = "5.00",
        payee_address: str | None = None,
        scan: ScanSession | None = None,
        **fields: Any,
    ) -> Submission:
        scan = scan or make_scan_session()
        submission = Submission(
            session_id=scan.session_id,
            status=status,
            payout_amount=Decimal(amount),
            payee_address=payee_address or f"payee-{uuid4().hex[:8]}@example.com",
            **fields,
        )
        db_session.add(submission)
        db_session.commit()
        db_session.refresh(submission)
        return submission

    return _factory
