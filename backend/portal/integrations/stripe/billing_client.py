"""
Stripe billing client.

Handles:
- Webhook signature verification (fail closed)
- Customer and subscription reads by id
- Folding provider subscription statuses into the stored set

SECURITY:
- The webhook secret never leaves the server
- Payloads are only parsed after the signature has been verified
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

from portal.models.subscription import SubscriptionStatus
from portal.integrations.stripe.events import SubscriptionPayload

logger = logging.getLogger(__name__)

UNKNOWN_EMAIL = "unknown@example.com"

_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE,
}


def normalize_subscription_status(status: Optional[str]) -> SubscriptionStatus:
    """Map a provider status onto the stored statuses; unknown values become incomplete."""
    return _STATUS_MAP.get((status or "").lower(), SubscriptionStatus.INCOMPLETE)


class BillingProviderError(Exception):
    """Error from the billing provider API."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class InvalidSignatureError(Exception):
    """Webhook signature missing, malformed or not matching."""
    pass


@dataclass
class BillingCustomer:
    """Customer fields the portal needs."""
    customer_id: str
    email: Optional[str] = None
    discord_user_id: Optional[str] = None


def _as_dict(obj: Any) -> Dict[str, Any]:
    """Convert a StripeObject into plain nested dicts."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return json.loads(str(obj))


class StripeBillingClient:
    """
    Thin wrapper over the stripe library.

    API reads are only possible with a secret key; signature verification
    only needs the webhook secret.
    """

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str],
        tolerance_seconds: int = 300,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds

    def verify_and_decode(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook body against the signing secret and decode it.

        Args:
            payload: Raw request body bytes
            signature: Stripe-Signature header value

        Returns:
            The decoded event body

        Raises:
            InvalidSignatureError: If verification fails for any reason
        """
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not configured for webhook verification")
            raise InvalidSignatureError("Webhook secret not configured")
        if not signature:
            raise InvalidSignatureError("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidSignatureError("Payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignatureError(str(e))

        try:
            decoded = json.loads(body)
        except json.JSONDecodeError:
            raise InvalidSignatureError("Signed payload is not valid JSON")
        if not isinstance(decoded, dict):
            raise InvalidSignatureError("Signed payload is not an object")
        return decoded

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured", code="not_configured")
        return self.api_key

    def retrieve_customer(self, customer_id: str) -> BillingCustomer:
        """Read a customer, including the identity stored in its metadata."""
        api_key = self._require_api_key()
        try:
            customer = _as_dict(stripe.Customer.retrieve(customer_id, api_key=api_key))
        except stripe.StripeError as e:
            logger.warning("Failed to retrieve billing customer", extra={
                "stripe_customer_id": customer_id,
                "error": str(e),
            })
            raise BillingProviderError(f"Failed to retrieve customer: {str(e)}", code=getattr(e, "code", None))

        metadata = customer.get("metadata") or {}
        return BillingCustomer(
            customer_id=customer.get("id") or customer_id,
            email=customer.get("email"),
            discord_user_id=metadata.get("discord_user_id") or None,
        )

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionPayload:
        api_key = self._require_api_key()
        try:
            subscription = _as_dict(stripe.Subscription.retrieve(subscription_id, api_key=api_key))
        except stripe.StripeError as e:
            logger.warning("Failed to retrieve billing subscription", extra={
                "stripe_subscription_id": subscription_id,
                "error": str(e),
            })
            raise BillingProviderError(f"Failed to retrieve subscription: {str(e)}", code=getattr(e, "code", None))

        return SubscriptionPayload.model_validate(subscription)
