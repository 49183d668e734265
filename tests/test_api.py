import threading

import pytest

from rebate.models import SubmissionStatus
from rebate.services.webhooks import WebhookOutcome
from rebate.utils.time import utcnow


async def _create_submission(client, session_id: str = "scan-api-1", **overrides):
    scan = await client.post(
        "/scan-sessions",
        json={"sessionId": session_id, "detectedBrand": "jameson", "confidence": 0.9},
        headers={"X-Forwarded-For": "198.51.100.4, 10.0.0.1"},
    )
    assert scan.status_code == 201
    body = {"sessionId": session_id, "payoutAmount": "5.00", "paypalEmail": "fan@example.com", **overrides}
    response = await client.post("/submissions", json=body)
    assert response.status_code == 201
    return response.json()


@pytest.mark.anyio("asyncio")
async def test_scan_submission_and_auto_approve_flow(client, fake_paypal, signals):
    created = await _create_submission(client)
    assert created["status"] == "pending"
    assert created["payout_reference"] is None

    decision = await client.post(f"/submissions/{created['id']}/auto-approve", json=signals())
    assert decision.status_code == 200
    result = decision.json()
    assert result["status"] == "paid"
    assert result["auto_approved"] is True
    assert result["payout_success"] is True
    assert isinstance(result["confidence_score"], float)

    detail = await client.get(f"/submissions/{created['id']}")
    assert detail.status_code == 200
    data = detail.json()
    assert data["status"] == "paid"
    assert data["payout_reference"] == result["payout_reference"]
    assert data["payee_address"] == "***@example.com"
    assert created["payee_address"] == "***@example.com"
    assert [entry["action"] for entry in data["audit_log"]] == [
        "SUBMISSION_CREATED",
        "AUTO_APPROVED",
        "PAYOUT_SENT",
    ]
    assert fake_paypal.payouts[0]["receiver"] == "fan@example.com"


@pytest.mark.anyio("asyncio")
async def test_auto_approve_twice_conflicts(client, fake_paypal, signals):
    created = await _create_submission(client, session_id="scan-api-2")

    first = await client.post(f"/submissions/{created['id']}/auto-approve", json=signals())
    second = await client.post(f"/submissions/{created['id']}/auto-approve", json=signals())

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "ALREADY_PROCESSED"
    assert len(fake_paypal.payouts) == 1


@pytest.mark.anyio("asyncio")
async def test_auto_approve_payout_failure_is_partial_success(client, rejecting_paypal, signals):
    created = await _create_submission(client, session_id="scan-api-3")

    response = await client.post(f"/submissions/{created['id']}/auto-approve", json=signals())

    assert response.status_code == 200
    result = response.json()
    assert result["status"] == "approved"
    assert result["payout_success"] is False
    assert result["payout_reference"] is None
    assert result["payout_error"]


@pytest.mark.anyio("asyncio")
async def test_unknown_submission_returns_error_payload(client):
    response = await client.get("/submissions/unknown-id")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "SUBMISSION_NOT_FOUND"


@pytest.mark.anyio("asyncio")
async def test_submission_requires_known_scan_session(client):
    response = await client.post(
        "/submissions",
        json={"sessionId": "never-scanned", "payoutAmount": "5.00", "paypalEmail": "fan@example.com"},
    )

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "SCAN_SESSION_NOT_FOUND"


@pytest.mark.anyio("asyncio")
async def test_submission_rejects_bad_payee_and_amount(client):
    await client.post("/scan-sessions", json={"sessionId": "scan-api-4", "confidence": 0.5})

    bad_email = await client.post(
        "/submissions", json={"sessionId": "scan-api-4", "payoutAmount": "5.00", "paypalEmail": "not-an-email"}
    )
    bad_amount = await client.post(
        "/submissions", json={"sessionId": "scan-api-4", "payoutAmount": "0", "paypalEmail": "fan@example.com"}
    )

    assert bad_email.status_code == 422
    assert bad_amount.status_code == 422


@pytest.mark.anyio("asyncio")
async def test_duplicate_scan_session_conflicts(client):
    body = {"sessionId": "scan-api-5", "confidence": 0.8}

    first = await client.post("/scan-sessions", json=body)
    second = await client.post("/scan-sessions", json=body)

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "SCAN_SESSION_EXISTS"


@pytest.mark.anyio("asyncio")
async def test_scan_session_records_forwarded_ip(client, db_session):
    from rebate.services.submissions import get_scan_session

    await _create_submission(client, session_id="scan-api-6")

    assert get_scan_session(db_session, "scan-api-6").ip_address == "198.51.100.4"


@pytest.mark.anyio("asyncio")
async def test_admin_routes_require_key(client, make_submission, fake_paypal):
    submission = make_submission(status=SubmissionStatus.APPROVED)

    missing = await client.post(f"/submissions/{submission.id}/payout")
    wrong = await client.post(
        f"/submissions/{submission.id}/review",
        json={"decision": "approve"},
        headers={"Authorization": "Bearer wrong-key"},
    )

    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "ADMIN_AUTH_REQUIRED"
    assert wrong.status_code == 401
    assert fake_paypal.payouts == []


@pytest.mark.anyio("asyncio")
async def test_admin_payout_retry(client, make_submission, fake_paypal, admin_headers):
    submission = make_submission(status=SubmissionStatus.APPROVED, amount="3.25")

    first = await client.post(f"/submissions/{submission.id}/payout", headers=admin_headers)
    second = await client.post(f"/submissions/{submission.id}/payout", headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["amount"] == "3.25"
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "NOT_ELIGIBLE"
    assert len(fake_paypal.payouts) == 1


@pytest.mark.anyio("asyncio")
async def test_admin_payout_upstream_failure_is_502(client, make_submission, rejecting_paypal, admin_headers):
    submission = make_submission(status=SubmissionStatus.APPROVED)

    response = await client.post(f"/submissions/{submission.id}/payout", headers=admin_headers)

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "UPSTREAM_REJECTED"


@pytest.mark.anyio("asyncio")
async def test_admin_review_reject(client, make_submission, admin_headers):
    submission = make_submission()

    response = await client.post(
        f"/submissions/{submission.id}/review",
        json={"decision": "reject", "note": "Receipt is from another store"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["review_reason"] == "Receipt is from another store"


@pytest.mark.anyio("asyncio")
async def test_webhook_always_acknowledges(client, make_submission, fake_paypal):
    make_submission(status=SubmissionStatus.PAID, payout_reference="ITEM-API-1", paid_at=utcnow())
    fake_paypal.verified = False

    unverified = await client.post(
        "/webhooks/paypal",
        content=b'{"id": "WH-API-1", "event_type": "PAYMENT.PAYOUTS-ITEM.FAILED", '
        b'"resource": {"payout_item_id": "ITEM-API-1"}}',
        headers={"Content-Type": "application/json"},
    )
    garbage = await client.post("/webhooks/paypal", content=b"<xml/>")

    assert unverified.status_code == 200
    assert unverified.json()["outcome"] == "verification_failed"
    assert garbage.status_code == 200
    assert garbage.json() == {"received": True, "outcome": "malformed", "event_id": None, "event_type": None}


@pytest.mark.anyio("asyncio")
async def test_webhook_processing_runs_off_the_event_loop(client, monkeypatch):
    seen: list[int] = []

    def handle_event(db, raw_body, headers):
        seen.append(threading.get_ident())
        return WebhookOutcome("malformed")

    monkeypatch.setattr("rebate.services.webhooks.handle_event", handle_event)

    response = await client.post("/webhooks/paypal", content=b"{}")

    assert response.status_code == 200
    assert seen and seen[0] != threading.get_ident()


@pytest.mark.anyio("asyncio")
async def test_webhook_status(client):
    response = await client.get("/webhooks/paypal")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "message": "PayPal webhook endpoint is running",
        "environment": "sandbox",
        "webhook_configured": True,
        "verification_bypassed": False,
    }
