"""
Subscription model mirroring the billing provider's subscription state.

Rows are never deleted. Webhooks and reconciliation update the row in place
keyed by stripe_subscription_id, so only the latest state is retained.
"""

import enum

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import relationship

from portal.db_base import Base
from portal.models.base import TimestampMixin, generate_uuid


class SubscriptionStatus(str, enum.Enum):
    """Stored subscription statuses (provider statuses are normalised into these)."""
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    UNPAID = "unpaid"


# Statuses that can ever yield a role; the others are always denied.
ROLE_BEARING_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.CANCELED,
})


class Subscription(Base, TimestampMixin):
    """Latest known state of one billing subscription."""

    __tablename__ = "subscriptions"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    customer_id = Column(
        String(255),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning customer"
    )

    stripe_subscription_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Billing provider subscription id (upsert key)"
    )

    status = Column(
        SAEnum(
            SubscriptionStatus,
            name="subscription_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        index=True,
    )

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    customer = relationship("Customer", back_populates="subscriptions")

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, stripe_subscription_id={self.stripe_subscription_id}, "
            f"status={self.status})>"
        )
