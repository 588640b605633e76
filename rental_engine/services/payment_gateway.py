"""
Payment gateway contract and its HTTP client.

The engine only depends on ``PaymentGateway``; ``HttpPaymentGateway`` speaks a
Stripe-style REST API (form-encoded requests, ``Idempotency-Key`` header).
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel

from rental_engine.config import get_settings
from rental_engine.exceptions import PaymentError, PaymentProcessingError
from rental_engine.models.payment import IntentStatus

settings = get_settings()
logger = logging.getLogger(__name__)


class GatewayIntent(BaseModel):
    """Authoritative intent state as reported by the gateway."""

    intent_id: str
    amount_cents: int
    currency: str
    status: IntentStatus
    client_secret: str | None = None
    metadata: dict[str, str] = {}


class GatewayRefund(BaseModel):
    """Refund as reported by the gateway."""

    refund_id: str
    intent_id: str
    amount_cents: int
    status: str


class PaymentGateway(ABC):
    """External payment capability, keyed by reservation and purpose."""

    @abstractmethod
    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str],
    ) -> GatewayIntent:
        """Create (or, for a repeated key, return) a charge intent."""

    @abstractmethod
    async def fetch_intent(self, intent_id: str) -> GatewayIntent:
        """Fetch the current state of an intent."""

    @abstractmethod
    async def list_intents(self, reservation_id: str) -> list[GatewayIntent]:
        """List intents whose metadata names the reservation."""

    @abstractmethod
    async def cancel_intent(self, intent_id: str) -> GatewayIntent:
        """Cancel an intent that has not been captured."""

    @abstractmethod
    async def refund(
        self,
        intent_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> GatewayRefund:
        """Refund a captured intent (or return the refund already issued for the key)."""


# Stripe statuses collapsed onto the engine's view
_STATUS_MAP = {
    "requires_payment_method": IntentStatus.REQUIRES_PAYMENT,
    "requires_confirmation": IntentStatus.REQUIRES_PAYMENT,
    "requires_action": IntentStatus.REQUIRES_PAYMENT,
    "requires_capture": IntentStatus.PROCESSING,
    "processing": IntentStatus.PROCESSING,
    "succeeded": IntentStatus.SUCCEEDED,
    "canceled": IntentStatus.CANCELED,
}


def _parse_intent(data: dict[str, Any]) -> GatewayIntent:
    return GatewayIntent(
        intent_id=data["id"],
        amount_cents=int(data["amount"]),
        currency=data.get("currency", settings.PAYMENT_CURRENCY),
        status=_STATUS_MAP.get(data.get("status", ""), IntentStatus.FAILED),
        client_secret=data.get("client_secret"),
        metadata={k: str(v) for k, v in (data.get("metadata") or {}).items()},
    )


class HttpPaymentGateway(PaymentGateway):
    """
    Gateway client over HTTP.

    Every call carries a bounded timeout. A timeout is reported as
    ``PaymentProcessingError`` because the outcome is unknown; connection
    failures and 5xx responses are retryable ``PaymentError``; 4xx responses
    are terminal.
    """

    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_URL).rstrip("/")
        self.secret_key = secret_key or settings.PAYMENT_GATEWAY_SECRET
        self.timeout = timeout_seconds or settings.PAYMENT_TIMEOUT_SECONDS
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        idempotency_key: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        headers = {}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            response = await self._get_client().request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException:
            logger.warning(f"Payment gateway timeout on {method} {path}")
            raise PaymentProcessingError()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"Payment gateway error on {method} {path}: {status_code} - {e.response.text}")
            if status_code >= 500 or status_code == 429:
                raise PaymentError(
                    "Payment gateway unavailable, please retry",
                    retryable=True,
                    details={"gateway_status": status_code},
                )
            raise PaymentError(
                "Payment gateway rejected the request",
                details={"gateway_status": status_code},
            )
        except httpx.TransportError as e:
            logger.error(f"Payment gateway unreachable on {method} {path}: {e}")
            raise PaymentError("Payment gateway unreachable, please retry", retryable=True)

    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str],
    ) -> GatewayIntent:
        form = {
            "amount": str(amount_cents),
            "currency": currency,
            "payment_method_types[]": "card",
        }
        for key, value in metadata.items():
            form[f"metadata[{key}]"] = value

        data = await self._request(
            "POST", "/v1/payment_intents", idempotency_key=idempotency_key, data=form
        )
        return _parse_intent(data)

    async def fetch_intent(self, intent_id: str) -> GatewayIntent:
        data = await self._request("GET", f"/v1/payment_intents/{intent_id}")
        return _parse_intent(data)

    async def list_intents(self, reservation_id: str) -> list[GatewayIntent]:
        data = await self._request(
            "GET",
            "/v1/payment_intents/search",
            params={"query": f"metadata['reservation_id']:'{reservation_id}'"},
        )
        return [_parse_intent(item) for item in data.get("data", [])]

    async def cancel_intent(self, intent_id: str) -> GatewayIntent:
        data = await self._request("POST", f"/v1/payment_intents/{intent_id}/cancel")
        return _parse_intent(data)

    async def refund(
        self,
        intent_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> GatewayRefund:
        data = await self._request(
            "POST",
            "/v1/refunds",
            idempotency_key=idempotency_key,
            data={"payment_intent": intent_id, "amount": str(amount_cents)},
        )
        return GatewayRefund(
            refund_id=data["id"],
            intent_id=intent_id,
            amount_cents=int(data.get("amount", amount_cents)),
            status=data.get("status", "succeeded"),
        )


# Global gateway client
_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Get the process-wide payment gateway client."""
    global _gateway
    if _gateway is None:
        _gateway = HttpPaymentGateway()
    return _gateway


async def close_payment_gateway() -> None:
    """Close the gateway client's connection pool."""
    global _gateway
    if isinstance(_gateway, HttpPaymentGateway):
        await _gateway.close()
    _gateway = None
