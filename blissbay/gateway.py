"""Stripe PaymentIntents client over plain HTTP."""

import logging
from typing import Optional

import httpx

from blissbay.errors import GatewayError

logger = logging.getLogger(__name__)


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


class StripeGateway:
    def __init__(self, api_key: Optional[str], api_base: str = "https://api.stripe.com/v1", timeout: float = 15.0):
        self.api_key = api_key
        self._client = httpx.Client(
            base_url=api_base,
            auth=(api_key or "", ""),
            timeout=timeout,
        )

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        if not self.api_key:
            raise GatewayError("Payment gateway is not configured", code="not_configured")

        try:
            response = self._client.request(method, path, data=data)
        except httpx.HTTPError as exc:
            logger.error("Stripe request failed | %s %s | %s", method, path, exc)
            raise GatewayError("Payment gateway unreachable", code="network_error") from exc

        body = response.json() if response.content else {}
        if response.status_code >= 400:
            error = body.get("error", {})
            logger.warning(
                "Stripe error | %s %s | status=%s | code=%s",
                method, path, response.status_code, error.get("code"),
            )
            raise GatewayError(
                error.get("message", "Payment gateway error"),
                code=error.get("decline_code") or error.get("code"),
            )
        return body

    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        payment_method_id: str,
        metadata: Optional[dict] = None,
    ) -> dict:
        data = {
            "amount": amount_cents,
            "currency": currency,
            "payment_method": payment_method_id,
            "confirm": "true",
            "automatic_payment_methods[enabled]": "true",
            "automatic_payment_methods[allow_redirects]": "never",
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)

        intent = self._request("POST", "/payment_intents", data)
        return {"id": intent["id"], "status": intent.get("status")}

    def retrieve(self, intent_id: str) -> dict:
        intent = self._request("GET", f"/payment_intents/{intent_id}")
        return {
            "id": intent["id"],
            "status": intent.get("status"),
            "amount": intent.get("amount"),
        }

    def refund(self, intent_id: str, amount_cents: Optional[int] = None) -> dict:
        data = {"payment_intent": intent_id}
        if amount_cents is not None:
            data["amount"] = amount_cents

        refund = self._request("POST", "/refunds", data)
        return {
            "id": refund["id"],
            "status": refund.get("status"),
            "amount": refund.get("amount"),
        }

    def close(self) -> None:
        self._client.close()
