"""
Tests for the Stripe billing client.

Signature checks run through the real stripe library; API reads are patched
at the stripe resource classes.
"""

from unittest.mock import patch

import pytest
import stripe

from portal.integrations.stripe.billing_client import (
    StripeBillingClient,
    BillingProviderError,
    InvalidSignatureError,
    normalize_subscription_status,
)
from portal.models.subscription import SubscriptionStatus
from portal.tests.conftest import WEBHOOK_SECRET, sign_payload, stripe_event


@pytest.fixture
def client():
    return StripeBillingClient(api_key="sk_test_portal", webhook_secret=WEBHOOK_SECRET)


# =============================================================================
# Signature Verification Tests
# =============================================================================

class TestVerifyAndDecode:

    def test_valid_signature(self, client):
        body = stripe_event("evt_1", "invoice.paid", {"customer": "cus_1"})

        decoded = client.verify_and_decode(body.encode("utf-8"), sign_payload(body))

        assert decoded["id"] == "evt_1"
        assert decoded["data"]["object"]["customer"] == "cus_1"

    def test_wrong_secret(self, client):
        body = stripe_event("evt_1", "invoice.paid", {})

        with pytest.raises(InvalidSignatureError):
            client.verify_and_decode(body.encode("utf-8"), sign_payload(body, secret="whsec_other"))

    def test_missing_header(self, client):
        with pytest.raises(InvalidSignatureError, match="Missing"):
            client.verify_and_decode(b"{}", None)

    def test_malformed_header(self, client):
        with pytest.raises(InvalidSignatureError):
            client.verify_and_decode(b"{}", "garbage")

    def test_unconfigured_secret_fails_closed(self):
        client = StripeBillingClient(api_key="sk_test_portal", webhook_secret=None)
        body = stripe_event("evt_1", "invoice.paid", {})

        with pytest.raises(InvalidSignatureError):
            client.verify_and_decode(body.encode("utf-8"), sign_payload(body))

    def test_signed_non_object_rejected(self, client):
        body = "[1, 2, 3]"

        with pytest.raises(InvalidSignatureError):
            client.verify_and_decode(body.encode("utf-8"), sign_payload(body))


# =============================================================================
# API Read Tests
# =============================================================================

class TestRetrieve:

    def test_retrieve_customer_reads_identity_metadata(self, client):
        with patch("stripe.Customer.retrieve", return_value={
            "id": "cus_1",
            "email": "member@example.com",
            "metadata": {"discord_user_id": "user-1"},
        }) as retrieve:
            customer = client.retrieve_customer("cus_1")

        retrieve.assert_called_once_with("cus_1", api_key="sk_test_portal")
        assert customer.discord_user_id == "user-1"
        assert customer.email == "member@example.com"

    def test_retrieve_customer_without_metadata(self, client):
        with patch("stripe.Customer.retrieve", return_value={"id": "cus_1", "metadata": {}}):
            customer = client.retrieve_customer("cus_1")

        assert customer.discord_user_id is None

    def test_retrieve_customer_provider_error(self, client):
        with patch("stripe.Customer.retrieve", side_effect=stripe.APIConnectionError("network down")):
            with pytest.raises(BillingProviderError):
                client.retrieve_customer("cus_1")

    def test_retrieve_requires_api_key(self):
        client = StripeBillingClient(api_key=None, webhook_secret=WEBHOOK_SECRET)

        with pytest.raises(BillingProviderError) as exc_info:
            client.retrieve_customer("cus_1")

        assert exc_info.value.code == "not_configured"

    def test_retrieve_subscription(self, client):
        with patch("stripe.Subscription.retrieve", return_value={
            "id": "sub_1",
            "customer": "cus_1",
            "status": "past_due",
            "current_period_end": 1_800_000_000,
        }):
            subscription = client.retrieve_subscription("sub_1")

        assert subscription.id == "sub_1"
        assert subscription.customer_id == "cus_1"
        assert subscription.status == "past_due"


# =============================================================================
# Status Normalization Tests
# =============================================================================

class TestNormalizeStatus:

    @pytest.mark.parametrize("raw,expected", [
        ("active", SubscriptionStatus.ACTIVE),
        ("trialing", SubscriptionStatus.ACTIVE),
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("canceled", SubscriptionStatus.CANCELED),
        ("unpaid", SubscriptionStatus.UNPAID),
        ("incomplete_expired", SubscriptionStatus.INCOMPLETE),
        ("ACTIVE", SubscriptionStatus.ACTIVE),
        ("something_new", SubscriptionStatus.INCOMPLETE),
        (None, SubscriptionStatus.INCOMPLETE),
    ])
    def test_mapping(self, raw, expected):
        assert normalize_subscription_status(raw) == expected
