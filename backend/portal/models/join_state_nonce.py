"""
Consumed join-state nonces.

A state token is single use: the first callback that presents it inserts
its nonce, and any later callback with the same nonce is refused.
"""

from sqlalchemy import Column, String, DateTime

from portal.db_base import Base
from portal.models.base import utcnow


class ConsumedJoinState(Base):
    """A join-state nonce that has already been presented to the callback."""

    __tablename__ = "consumed_join_states"

    nonce = Column(
        String(64),
        primary_key=True,
        comment="Random nonce carried in the state token"
    )
    application_id = Column(String(255), nullable=False, index=True)
    expires_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="Expiry of the token that carried the nonce"
    )
    consumed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<ConsumedJoinState(nonce={self.nonce}, application_id={self.application_id})>"
