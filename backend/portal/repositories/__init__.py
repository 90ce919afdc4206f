"""
State store repositories.

Customer and Subscription writes are single-key upserts so a retried or
redelivered operation converges on the same row.
"""

from portal.repositories.applications import ApplicationRepository
from portal.repositories.customers import CustomerRepository
from portal.repositories.subscriptions import SubscriptionRepository, SubscriptionState
from portal.repositories.webhook_events import WebhookEventRepository
from portal.repositories.join_states import JoinStateNonceRepository
from portal.repositories.role_sync_events import RoleSyncEventRepository

__all__ = [
    "ApplicationRepository",
    "CustomerRepository",
    "SubscriptionRepository",
    "SubscriptionState",
    "WebhookEventRepository",
    "JoinStateNonceRepository",
    "RoleSyncEventRepository",
]
