"""
Subscription repository with single-key upsert by billing subscription id.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from portal.models.subscription import Subscription, SubscriptionStatus, ROLE_BEARING_STATUSES

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionState:
    """Provider-side subscription fields written on every upsert."""
    stripe_subscription_id: str
    status: SubscriptionStatus
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None


class SubscriptionRepository:
    """Reads and idempotent writes for Subscription rows."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get_by_billing_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        return self.db_session.query(Subscription).filter(
            Subscription.stripe_subscription_id == stripe_subscription_id,
        ).first()

    def current_for_customer(self, customer_id: str) -> Optional[Subscription]:
        """
        The customer's current subscription: the newest row of any status.

        Webhooks, reconciliation and the join flow all decide from this row.
        """
        return self.db_session.query(Subscription).filter(
            Subscription.customer_id == customer_id,
        ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).first()

    def list_reconcilable(self) -> List[Subscription]:
        """
        Subscriptions whose status can ever yield the role, newest first.

        Only selects which identities a pass visits; the decision itself
        uses current_for_customer.
        """
        return self.db_session.query(Subscription).options(
            joinedload(Subscription.customer),
        ).filter(
            Subscription.status.in_(list(ROLE_BEARING_STATUSES)),
        ).order_by(Subscription.created_at.desc(), Subscription.id.desc()).all()

    def upsert_by_billing_id(self, customer_id: str, state: SubscriptionState) -> Subscription:
        """
        Insert or update a subscription keyed by its billing id.

        Rows are never deleted; the latest provider state overwrites the
        stored fields in place.
        """
        subscription = self.get_by_billing_id(state.stripe_subscription_id)
        if subscription is None:
            subscription = Subscription(
                customer_id=customer_id,
                stripe_subscription_id=state.stripe_subscription_id,
            )
            self._apply(subscription, state)
            self.db_session.add(subscription)
            try:
                self.db_session.commit()
                logger.info("Subscription created", extra={
                    "stripe_subscription_id": state.stripe_subscription_id,
                    "status": state.status.value,
                })
                return subscription
            except IntegrityError:
                self.db_session.rollback()
                subscription = self.get_by_billing_id(state.stripe_subscription_id)
                if subscription is None:
                    raise

        previous_status = subscription.status
        subscription.customer_id = customer_id
        self._apply(subscription, state)
        self.db_session.commit()

        if previous_status != state.status:
            logger.info("Subscription status changed", extra={
                "stripe_subscription_id": state.stripe_subscription_id,
                "old_status": previous_status.value if previous_status else None,
                "new_status": state.status.value,
            })
        return subscription

    @staticmethod
    def _apply(subscription: Subscription, state: SubscriptionState) -> None:
        subscription.status = state.status
        subscription.current_period_start = state.current_period_start
        subscription.current_period_end = state.current_period_end
        subscription.cancel_at_period_end = bool(state.cancel_at_period_end)
        subscription.canceled_at = state.canceled_at
