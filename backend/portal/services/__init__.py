"""Role synchronisation services."""

from portal.services.retry_policy import RetryPolicy, ErrorCategory, DEFAULT_RETRY_POLICY
from portal.services.role_actuator import RoleActuator, RoleSyncResult, RoleSyncOutcome
from portal.services.webhook_gateway import BillingWebhookGateway, WebhookResult
from portal.services.join_flow import JoinFlowService, JoinOutcome, JoinErrorCode

__all__ = [
    "RetryPolicy",
    "ErrorCategory",
    "DEFAULT_RETRY_POLICY",
    "RoleActuator",
    "RoleSyncResult",
    "RoleSyncOutcome",
    "BillingWebhookGateway",
    "WebhookResult",
    "JoinFlowService",
    "JoinOutcome",
    "JoinErrorCode",
]
