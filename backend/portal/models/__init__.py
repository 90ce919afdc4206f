"""
Database models for applications, billing state and role audit.
"""

from portal.models.base import TimestampMixin, generate_uuid
from portal.models.application import Application, ApplicationStatus
from portal.models.customer import Customer
from portal.models.subscription import Subscription, SubscriptionStatus, ROLE_BEARING_STATUSES
from portal.models.webhook_event import ProcessedWebhookEvent
from portal.models.join_state_nonce import ConsumedJoinState
from portal.models.role_sync_event import RoleSyncEvent, RoleSyncAction

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "Application",
    "ApplicationStatus",
    "Customer",
    "Subscription",
    "SubscriptionStatus",
    "ROLE_BEARING_STATUSES",
    "ProcessedWebhookEvent",
    "ConsumedJoinState",
    "RoleSyncEvent",
    "RoleSyncAction",
]
