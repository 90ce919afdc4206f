"""
Idempotency ledger for inbound webhooks.

The unique event_id is the single source of truth for "already handled".
Rows are insert-only.
"""

from sqlalchemy import Column, String, DateTime

from portal.db_base import Base
from portal.models.base import utcnow


class ProcessedWebhookEvent(Base):
    """A provider event that has been fully handled."""

    __tablename__ = "processed_webhook_events"

    event_id = Column(
        String(255),
        primary_key=True,
        comment="Provider event id (globally unique)"
    )
    source = Column(String(32), nullable=False, default="stripe")
    event_type = Column(String(128), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent(event_id={self.event_id}, type={self.event_type})>"
