"""
Billing webhook gateway.

Verifies, deduplicates and dispatches billing provider events:

    verify signature -> check role config -> ledger lookup -> dispatch -> ledger write

SECURITY:
- Signature verification happens before anything is read or written
- The identity is taken from billing customer metadata or the stored
  customer row, never from free-form event fields

A crash between the dispatch and the ledger write causes one replay on
redelivery; every write below is idempotent by its own key, so the replay
converges on the same state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.entitlements.role_policy import desired_role_state
from portal.integrations.stripe.billing_client import (
    StripeBillingClient,
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
    SubscriptionPayload,
    EventParseError,
    parse_event,
)
from portal.models.application import ApplicationStatus
from portal.models.customer import Customer
from portal.platform.errors import (
    ConfigurationError,
    WebhookProcessingError,
    WebhookSignatureError,
)
from portal.platform.logging_config import mask_identifier
from portal.repositories.applications import ApplicationRepository
from portal.repositories.customers import CustomerRepository
from portal.repositories.subscriptions import SubscriptionRepository, SubscriptionState
from portal.repositories.webhook_events import WebhookEventRepository
from portal.services.role_actuator import RoleActuator, RoleSyncResult

logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "stripe"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WebhookResult:
    """What handling one delivery did."""
    event_id: str
    event_type: str
    duplicate: bool = False
    ignored: bool = False
    role_result: Optional[RoleSyncResult] = None


class BillingWebhookGateway:
    """
    Handles one signed webhook delivery end to end.

    Raises AppError subclasses only; the route turns them into responses.
    """

    def __init__(
        self,
        db_session: Session,
        billing_client: StripeBillingClient,
        actuator: RoleActuator,
        role_id: Optional[str],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db_session = db_session
        self.billing_client = billing_client
        self.actuator = actuator
        self.role_id = role_id
        self._clock = clock

        self.customers = CustomerRepository(db_session)
        self.subscriptions = SubscriptionRepository(db_session)
        self.applications = ApplicationRepository(db_session)
        self.ledger = WebhookEventRepository(db_session)

    async def handle(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Verify and process a webhook delivery.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            WebhookResult (duplicates and unknown types are successes)

        Raises:
            WebhookSignatureError: Signature missing or invalid
            ConfigurationError: MEMBER_ROLE_ID not configured
            WebhookProcessingError: Payload or handler failure; not recorded
                in the ledger so the provider redelivers
        """
        try:
            body = self.billing_client.verify_and_decode(payload, signature)
        except InvalidSignatureError as e:
            logger.warning("Invalid webhook signature", extra={"reason": str(e)})
            raise WebhookSignatureError()

        if not self.role_id:
            logger.error("Webhook received but MEMBER_ROLE_ID is not configured")
            raise ConfigurationError("MEMBER_ROLE_ID")

        try:
            event = parse_event(body)
        except EventParseError as e:
            logger.warning("Malformed webhook payload", extra={"error": str(e)})
            raise WebhookProcessingError(str(e))

        if self.ledger.is_processed(event.event_id):
            logger.info("Webhook event already processed", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
            })
            return WebhookResult(event.event_id, event.event_type, duplicate=True)

        logger.info("Processing webhook event", extra={
            "event_id": event.event_id,
            "event_type": event.event_type,
        })

        try:
            result = await self._dispatch(event)
        except BillingProviderError as e:
            logger.error("Billing provider call failed during webhook", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "error": str(e),
            })
            raise WebhookProcessingError("Billing provider call failed", details={"event_id": event.event_id})
        except (SQLAlchemyError, ValidationError) as e:
            self.db_session.rollback()
            logger.error("Webhook handler failed", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "error_type": type(e).__name__,
            })
            raise WebhookProcessingError("Webhook handler failed", details={"event_id": event.event_id})

        self.ledger.mark_processed(event.event_id, event.event_type, source=WEBHOOK_SOURCE)
        return result

    async def _dispatch(self, event: BillingEvent) -> WebhookResult:
        if isinstance(event, CheckoutCompleted):
            return await self._on_checkout_completed(event)
        if isinstance(event, InvoicePaid):
            return await self._on_invoice_paid(event)
        if isinstance(event, SubscriptionUpdated):
            return await self._on_subscription_updated(event)
        if isinstance(event, SubscriptionDeleted):
            return await self._on_subscription_deleted(event)

        logger.info("Ignoring unhandled webhook event type", extra={
            "event_id": event.event_id,
            "event_type": event.event_type,
        })
        return WebhookResult(event.event_id, event.event_type, ignored=True)

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    async def _on_checkout_completed(self, event: CheckoutCompleted) -> WebhookResult:
        customer_id = event.customer_id
        subscription_id = event.subscription_id
        if not customer_id or not subscription_id:
            # one-off payments carry no subscription
            return WebhookResult(event.event_id, event.event_type, ignored=True)

        billing_customer = self.billing_client.retrieve_customer(customer_id)
        discord_user_id = billing_customer.discord_user_id
        email = billing_customer.email or event.session.email

        if not discord_user_id:
            existing = self.customers.get_by_billing_id(customer_id)
            if existing is None:
                logger.error("Unable to resolve identity for billing customer", extra={
                    "stripe_customer_id": mask_identifier(customer_id),
                    "event_id": event.event_id,
                })
                raise WebhookProcessingError(
                    "Billing customer has no linked identity",
                    details={"event_id": event.event_id},
                )
            logger.warning("Billing customer missing identity metadata; using stored customer", extra={
                "stripe_customer_id": mask_identifier(customer_id),
            })
            discord_user_id = existing.discord_user_id
            email = email or existing.email

        customer = self.customers.upsert_by_identity(
            discord_user_id=discord_user_id,
            stripe_customer_id=customer_id,
            email=email or UNKNOWN_EMAIL,
        )

        subscription = self.billing_client.retrieve_subscription(subscription_id)
        self._store_subscription(customer, subscription)

        application_status = self.applications.status_for_identity(discord_user_id)
        if application_status != ApplicationStatus.APPROVED:
            logger.info("Checkout completed for identity without approval; role unchanged", extra={
                "discord_user_id": discord_user_id,
                "application_status": application_status.value if application_status else None,
            })
            return WebhookResult(event.event_id, event.event_type)

        role_result = await self._sync_identity(customer, source="webhook:checkout")
        return WebhookResult(event.event_id, event.event_type, role_result=role_result)

    async def _on_invoice_paid(self, event: InvoicePaid) -> WebhookResult:
        customer_id = event.customer_id
        if not customer_id:
            return WebhookResult(event.event_id, event.event_type, ignored=True)

        customer = self._resolve_customer(customer_id)
        if customer is None:
            logger.warning("Invoice paid for unknown identity; ignoring", extra={
                "stripe_customer_id": mask_identifier(customer_id),
                "event_id": event.event_id,
            })
            return WebhookResult(event.event_id, event.event_type, ignored=True)

        subscription_id = event.invoice.subscription_id
        if subscription_id:
            # renewal moves the period end; read it fresh
            subscription = self.billing_client.retrieve_subscription(subscription_id)
            self._store_subscription(customer, subscription)

        if self.applications.status_for_identity(customer.discord_user_id) != ApplicationStatus.APPROVED:
            return WebhookResult(event.event_id, event.event_type)

        role_result = await self._sync_identity(customer, source="webhook:invoice")
        return WebhookResult(event.event_id, event.event_type, role_result=role_result)

    async def _on_subscription_updated(self, event: SubscriptionUpdated) -> WebhookResult:
        customer_id = event.subscription.customer_id
        if not customer_id:
            return WebhookResult(event.event_id, event.event_type, ignored=True)

        customer = self.customers.get_by_billing_id(customer_id)
        if customer is None:
            logger.warning("Customer not found for subscription update", extra={
                "stripe_customer_id": mask_identifier(customer_id),
                "event_id": event.event_id,
            })
            return WebhookResult(event.event_id, event.event_type, ignored=True)

        self._store_subscription(customer, event.subscription)

        role_result = await self._sync_identity(customer, source="webhook:subscription_updated")
        return WebhookResult(event.event_id, event.event_type, role_result=role_result)

    async def _on_subscription_deleted(self, event: SubscriptionDeleted) -> WebhookResult:
        customer_id = event.subscription.customer_id
        if not customer_id:
            return WebhookResult(event.event_id, event.event_type, ignored=True)

        customer = self._resolve_customer(customer_id)
        if customer is None:
            logger.warning("Subscription deleted for unknown identity; ignoring", extra={
                "stripe_customer_id": mask_identifier(customer_id),
                "event_id": event.event_id,
            })
            return WebhookResult(event.event_id, event.event_type, ignored=True)

        self._store_subscription(customer, event.subscription)

        # the provider ended the relationship; grace periods do not apply
        role_result = await self.actuator.ensure_role(
            customer.discord_user_id,
            self.role_id,
            desired=False,
            source="webhook:subscription_deleted",
            reason="Subscription deleted",
        )
        return WebhookResult(event.event_id, event.event_type, role_result=role_result)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _resolve_customer(self, stripe_customer_id: str) -> Optional[Customer]:
        """Stored customer first, then the identity in billing metadata."""
        customer = self.customers.get_by_billing_id(stripe_customer_id)
        if customer is not None:
            return customer

        billing_customer = self.billing_client.retrieve_customer(stripe_customer_id)
        if not billing_customer.discord_user_id:
            return None
        return self.customers.upsert_by_identity(
            discord_user_id=billing_customer.discord_user_id,
            stripe_customer_id=stripe_customer_id,
            email=billing_customer.email or UNKNOWN_EMAIL,
        )

    def _store_subscription(self, customer: Customer, payload: SubscriptionPayload) -> None:
        period_start, period_end = payload.period_bounds(self._clock())
        self.subscriptions.upsert_by_billing_id(
            customer.id,
            SubscriptionState(
                stripe_subscription_id=payload.id,
                status=normalize_subscription_status(payload.status),
                current_period_start=period_start,
                current_period_end=period_end,
                cancel_at_period_end=payload.cancel_at_period_end,
                canceled_at=payload.canceled_at_datetime,
            ),
        )

    async def _sync_identity(self, customer: Customer, source: str) -> RoleSyncResult:
        """Decide from the identity's latest subscription and actuate."""
        latest = self.subscriptions.current_for_customer(customer.id)
        desired = desired_role_state(
            self.applications.status_for_identity(customer.discord_user_id),
            latest.status if latest else None,
            latest.current_period_end if latest else None,
            self._clock(),
        )
        return await self.actuator.ensure_role(
            customer.discord_user_id,
            self.role_id,
            desired=desired,
            source=source,
        )
