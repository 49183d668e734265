"""PayPal REST wrapper for payouts and webhook verification."""
from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

import httpx

from rebate.config import Settings, get_settings
from rebate.core.logging import get_logger
from rebate.utils.errors import DomainError, UpstreamAuthFailure, UpstreamRejected

logger = get_logger(__name__)

PAYPAL_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

# Transmission headers PayPal attaches to each webhook delivery.
TRANSMISSION_HEADERS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
    "transmission_sig": "paypal-transmission-sig",
}


@dataclass(frozen=True)
class PayoutReceipt:
    """What PayPal acknowledged for a single-item payout batch."""

    payout_item_id: str
    batch_id: str
    batch_status: str | None
    raw: dict[str, Any]


def _format_amount(amount: Decimal) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01")))


def _json_body(response: httpx.Response, error: type[DomainError], message: str) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise error(message, details={"status_code": response.status_code}) from exc
    if not isinstance(body, dict):
        raise error(message, details={"status_code": response.status_code})
    return body


def _error_summary(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = {"raw": response.text[:500]}
    if not isinstance(body, dict):
        body = {"raw": body}
    return {
        "status_code": response.status_code,
        "name": body.get("name") or body.get("error"),
        "message": body.get("message") or body.get("error_description"),
        "debug_id": body.get("debug_id"),
    }


class PayPalClient:
    """Thin client over the PayPal REST API; every call is a single attempt."""

    def __init__(self, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings
        self._client_id = settings.PAYPAL_CLIENT_ID
        self._client_secret = settings.PAYPAL_CLIENT_SECRET
        self.base_url = PAYPAL_BASE_URLS[settings.PAYPAL_ENVIRONMENT]
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=settings.PAYPAL_TIMEOUT_SECONDS,
            transport=transport,
        )

    @classmethod
    def from_env(cls) -> "PayPalClient":
        """Instantiate a client using the cached application settings."""

        return cls(get_settings())

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "PayPalClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_access_token(self) -> str:
        """Fetch a short-lived OAuth2 token with the client-credentials grant."""

        if not (self._client_id and self._client_secret):
            raise UpstreamAuthFailure(
                "PayPal credentials are not configured.",
                code="PAYPAL_NOT_CONFIGURED",
            )
        try:
            response = self._http.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.error("PayPal token request failed", extra={"error": str(exc)})
            raise UpstreamAuthFailure("Failed to reach PayPal for authentication.") from exc

        if response.status_code != httpx.codes.OK:
            summary = _error_summary(response)
            logger.error("PayPal authentication rejected", extra={"paypal_error": summary})
            raise UpstreamAuthFailure("Failed to authenticate with PayPal.", details=summary)

        body = _json_body(response, UpstreamAuthFailure, "PayPal token response was not valid JSON.")
        token = body.get("access_token")
        if not token:
            raise UpstreamAuthFailure("PayPal token response did not contain an access token.")
        return token

    def create_payout(
        self,
        *,
        sender_batch_id: str,
        sender_item_id: str,
        receiver: str,
        amount: Decimal,
        currency: str,
        access_token: str | None = None,
    ) -> PayoutReceipt:
        """Submit a single-item payout batch tagged with ``sender_item_id``."""

        token = access_token or self.get_access_token()
        payload = {
            "sender_batch_header": {
                "sender_batch_id": sender_batch_id,
                "email_subject": self.settings.PAYOUT_EMAIL_SUBJECT,
                "email_message": self.settings.PAYOUT_EMAIL_MESSAGE,
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": _format_amount(amount), "currency": currency},
                    "receiver": receiver,
                    "note": self.settings.PAYOUT_NOTE,
                    "sender_item_id": sender_item_id,
                }
            ],
        }
        try:
            response = self._http.post(
                "/v1/payments/payouts",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.error(
                "PayPal payout request failed",
                extra={"sender_item_id": sender_item_id, "error": str(exc)},
            )
            raise UpstreamRejected("Failed to reach PayPal to create the payout.") from exc

        if response.status_code not in (httpx.codes.CREATED, httpx.codes.OK):
            summary = _error_summary(response)
            logger.error("PayPal payout rejected", extra={"sender_item_id": sender_item_id, "paypal_error": summary})
            raise UpstreamRejected("PayPal rejected the payout.", details=summary)

        body = _json_body(response, UpstreamRejected, "PayPal payout response was not valid JSON.")
        header = body.get("batch_header") or {}
        items = body.get("items") or []
        item_id = (items[0].get("payout_item_id") if items else None) or header.get("payout_batch_id")
        if not item_id:
            raise UpstreamRejected("PayPal payout response did not contain a payout reference.")
        return PayoutReceipt(
            payout_item_id=item_id,
            batch_id=header.get("payout_batch_id") or sender_batch_id,
            batch_status=header.get("batch_status"),
            raw=body,
        )

    def verify_webhook_signature(
        self,
        *,
        raw_body: bytes,
        transmission: Mapping[str, str],
        webhook_id: str,
    ) -> bool:
        """Ask PayPal whether a delivery's transmission signature is genuine."""

        token = self.get_access_token()
        payload = {
            **{key: transmission[key] for key in TRANSMISSION_HEADERS},
            "webhook_id": webhook_id,
            "webhook_event": json.loads(raw_body),
        }
        try:
            response = self._http.post(
                "/v1/notifications/verify-webhook-signature",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamRejected("Failed to reach PayPal for signature verification.") from exc

        if response.status_code != httpx.codes.OK:
            summary = _error_summary(response)
            logger.warning("PayPal signature verification call rejected", extra={"paypal_error": summary})
            raise UpstreamRejected("PayPal rejected the verification request.", details=summary)

        body = _json_body(response, UpstreamRejected, "PayPal verification response was not valid JSON.")
        return body.get("verification_status") == "SUCCESS"


def get_paypal_client() -> PayPalClient:
    return PayPalClient.from_env()


__all__ = [
    "PAYPAL_BASE_URLS",
    "TRANSMISSION_HEADERS",
    "PayoutReceipt",
    "PayPalClient",
    "get_paypal_client",
]
