"""Stripe billing integration."""

from portal.integrations.stripe.billing_client import (
    StripeBillingClient,
    BillingCustomer,
    BillingProviderError,
    InvalidSignatureError,
    normalize_subscription_status,
    UNKNOWN_EMAIL,
)
from portal.integrations.stripe.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaid,
    SubscriptionUpdated,
    SubscriptionDeleted,
    UnknownEvent,
    EventParseError,
    parse_event,
)

__all__ = [
    "StripeBillingClient",
    "BillingCustomer",
    "BillingProviderError",
    "InvalidSignatureError",
    "normalize_subscription_status",
    "UNKNOWN_EMAIL",
    "BillingEvent",
    "CheckoutCompleted",
    "InvoicePaid",
    "SubscriptionUpdated",
    "SubscriptionDeleted",
    "UnknownEvent",
    "EventParseError",
    "parse_event",
]
