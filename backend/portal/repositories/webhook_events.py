"""
Idempotency ledger repository.

The primary key on event_id decides "already handled"; a duplicate insert
is treated as success.
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.models.webhook_event import ProcessedWebhookEvent

logger = logging.getLogger(__name__)


class WebhookEventRepository:

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def is_processed(self, event_id: str) -> bool:
        return self.db_session.query(ProcessedWebhookEvent.event_id).filter(
            ProcessedWebhookEvent.event_id == event_id,
        ).first() is not None

    def mark_processed(self, event_id: str, event_type: str, source: str = "stripe") -> bool:
        """
        Record an event as handled.

        Returns:
            True if this call wrote the row, False if it already existed
        """
        if self.db_session.get(ProcessedWebhookEvent, event_id) is not None:
            return False

        self.db_session.add(ProcessedWebhookEvent(
            event_id=event_id,
            source=source,
            event_type=event_type,
        ))
        try:
            self.db_session.commit()
            return True
        except IntegrityError:
            # concurrent delivery of the same event; idempotent
            self.db_session.rollback()
            logger.info("Webhook event already recorded", extra={
                "event_id": event_id,
                "event_type": event_type,
            })
            return False
