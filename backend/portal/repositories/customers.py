"""
Customer repository with single-key upsert by external identity.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.models.customer import Customer

logger = logging.getLogger(__name__)


class CustomerRepository:
    """Reads and idempotent writes for Customer rows."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get_by_identity(self, discord_user_id: str) -> Optional[Customer]:
        return self.db_session.query(Customer).filter(
            Customer.discord_user_id == discord_user_id,
        ).first()

    def get_by_billing_id(self, stripe_customer_id: str) -> Optional[Customer]:
        return self.db_session.query(Customer).filter(
            Customer.stripe_customer_id == stripe_customer_id,
        ).first()

    def upsert_by_identity(
        self,
        discord_user_id: str,
        stripe_customer_id: str,
        email: str,
    ) -> Customer:
        """
        Insert or update the customer for an identity.

        Repeating the call with the same arguments converges to the same row.
        A concurrent insert for the same identity is absorbed by retrying
        as an update.
        """
        customer = self.get_by_identity(discord_user_id)
        if customer is None:
            customer = Customer(
                discord_user_id=discord_user_id,
                stripe_customer_id=stripe_customer_id,
                email=email,
            )
            self.db_session.add(customer)
            try:
                self.db_session.commit()
                logger.info("Customer created", extra={
                    "discord_user_id": discord_user_id,
                    "stripe_customer_id": stripe_customer_id,
                })
                return customer
            except IntegrityError:
                # another writer inserted the same identity first
                self.db_session.rollback()
                customer = self.get_by_identity(discord_user_id)
                if customer is None:
                    raise

        customer.stripe_customer_id = stripe_customer_id
        customer.email = email
        self.db_session.commit()
        return customer
