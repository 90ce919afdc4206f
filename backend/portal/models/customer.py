"""
Customer model linking an external identity to its billing account.

Created lazily on first checkout. At most one customer exists per identity;
the billing customer id is unique as well.
"""

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from portal.db_base import Base
from portal.models.base import TimestampMixin, generate_uuid


class Customer(Base, TimestampMixin):
    """Billing customer for one external identity."""

    __tablename__ = "customers"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    discord_user_id = Column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="External identity id (upsert key)"
    )

    stripe_customer_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Billing provider customer id"
    )

    email = Column(
        String(320),
        nullable=False,
        comment="Billing email"
    )

    subscriptions = relationship(
        "Subscription",
        back_populates="customer",
        order_by="Subscription.created_at.desc()",
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, discord_user_id={self.discord_user_id})>"
