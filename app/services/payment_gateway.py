"""
Stripe Payment Gateway
Authorize-then-capture payments for bookings using manual-capture PaymentIntents
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import PAYMENT_CURRENCY, STRIPE_API_URL, STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)

# PaymentIntent statuses that mean the funds are held (or about to be)
AUTHORIZED_INTENT_STATUSES = {"requires_capture"}
PROCESSING_INTENT_STATUSES = {"processing"}


class PaymentGatewayError(Exception):
    """Raised when the payment provider rejects or fails a request"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _flatten_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Stripe expects form-encoded metadata[key]=value pairs"""
    return {f"metadata[{key}]": str(value) for key, value in (metadata or {}).items()}


class StripePaymentGateway:
    """Thin async client over the Stripe PaymentIntents REST API"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        api_url: str = STRIPE_API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key or STRIPE_SECRET_KEY
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, path: str, data: Optional[dict] = None) -> Optional[dict]:
        if not self.secret_key:
            logger.error("❌ STRIPE_SECRET_KEY not configured")
            raise PaymentGatewayError("Payment provider not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    f"{self.api_url}{path}",
                    data=data,
                    auth=(self.secret_key, ""),
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Payment provider request failed: {method} {path}: {e}")
            raise PaymentGatewayError(f"Payment provider unreachable: {e}") from e

        if response.status_code == 404:
            return None

        if response.status_code >= 400:
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            logger.error(
                f"❌ Payment provider error {response.status_code} on {method} {path}: {message}"
            )
            raise PaymentGatewayError(message, status_code=response.status_code)

        return response.json()

    async def create_payment_intent(
        self,
        amount_cents: int,
        currency: str = PAYMENT_CURRENCY,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """
        Create a manual-capture PaymentIntent.

        Returns:
            Dict with id, client_secret, status and amount
        """
        data = {
            "amount": str(amount_cents),
            "currency": currency,
            "capture_method": "manual",
            "automatic_payment_methods[enabled]": "true",
            **_flatten_metadata(metadata),
        }
        intent = await self._request("POST", "/payment_intents", data=data)
        logger.info(f"💳 Created payment intent {intent['id']} for {amount_cents} {currency}")
        return intent

    async def retrieve_payment_intent(self, intent_id: str) -> Optional[dict]:
        """Fetch a PaymentIntent, or None if the provider does not know it"""
        return await self._request("GET", f"/payment_intents/{intent_id}")

    async def capture_payment_intent(self, intent_id: str) -> dict:
        """Capture previously authorized funds"""
        intent = await self._request("POST", f"/payment_intents/{intent_id}/capture")
        if intent is None:
            raise PaymentGatewayError(f"Payment intent {intent_id} not found", status_code=404)
        logger.info(f"💰 Captured payment intent {intent_id}")
        return intent

    async def release_payment_intent(self, intent_id: str) -> dict:
        """Cancel a PaymentIntent, releasing any held authorization"""
        intent = await self._request("POST", f"/payment_intents/{intent_id}/cancel")
        if intent is None:
            raise PaymentGatewayError(f"Payment intent {intent_id} not found", status_code=404)
        logger.info(f"🔓 Released payment intent {intent_id}")
        return intent


def get_payment_gateway() -> StripePaymentGateway:
    """Dependency injection for the payment gateway"""
    return StripePaymentGateway()
