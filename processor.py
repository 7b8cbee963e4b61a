"""
Stripe payment intent client.

Talks to the Stripe REST API with requests. When no STRIPE_SECRET is
configured a MockProcessor stands in and every intent succeeds at once.
"""

import logging
import uuid
from typing import Dict, Optional

import requests
from pydantic import BaseModel

from errors import ExternalServiceFailure

logger = logging.getLogger(__name__)

STRIPE_API = "https://api.stripe.com/v1"


class PaymentIntent(BaseModel):
    id: str
    client_secret: Optional[str] = None
    status: str
    amount: int
    currency: str
    payment_method: Optional[str] = None
    metadata: Dict[str, str] = {}


def to_minor_units(amount: float) -> int:
    return int(round(float(amount) * 100))


class StripeProcessor:
    def __init__(self, secret: str, timeout: float = 10.0):
        self.secret = secret
        self.timeout = timeout

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> PaymentIntent:
        try:
            r = requests.request(
                method,
                f"{STRIPE_API}{path}",
                headers={"Authorization": f"Bearer {self.secret}"},
                data=data,
                timeout=self.timeout,
            )
        except requests.Timeout:
            logger.error("Stripe %s %s timed out after %ss", method, path, self.timeout)
            raise ExternalServiceFailure("Payment processor timed out")
        except requests.RequestException as e:
            logger.error("Stripe %s %s failed: %s", method, path, e)
            raise ExternalServiceFailure("Payment processor unreachable")

        try:
            body = r.json() if r.content else {}
        except ValueError:
            logger.error("Stripe %s %s returned non-JSON (HTTP %s)", method, path, r.status_code)
            raise ExternalServiceFailure(f"Payment processor returned an invalid response ({r.status_code})")
        if r.status_code != 200:
            message = (body.get("error") or {}).get("message") or f"Stripe returned {r.status_code}"
            logger.warning("Stripe %s %s rejected: %s", method, path, message)
            raise ExternalServiceFailure(message)
        return PaymentIntent(
            id=body["id"],
            client_secret=body.get("client_secret"),
            status=body.get("status", "requires_payment_method"),
            amount=body.get("amount", 0),
            currency=body.get("currency", "usd"),
            payment_method=body.get("payment_method"),
            metadata=body.get("metadata") or {},
        )

    def create_intent(self, amount: float, currency: str, metadata: Dict[str, str]) -> PaymentIntent:
        data = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value
        return self._request("POST", "/payment_intents", data)

    def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        return self._request("GET", f"/payment_intents/{intent_id}")


class MockProcessor:
    """In-process stand-in used when Stripe is not configured."""

    def __init__(self):
        self.intents: Dict[str, PaymentIntent] = {}

    def create_intent(self, amount: float, currency: str, metadata: Dict[str, str]) -> PaymentIntent:
        intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_mock",
            status="succeeded",
            amount=to_minor_units(amount),
            currency=currency,
            payment_method="pm_mock_card",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise ExternalServiceFailure(f"No such payment_intent: '{intent_id}'")
        return intent
