"""Route dependencies."""

from portal.api.dependencies.providers import (
    get_billing_client,
    get_guild_client,
    get_oauth_client,
    get_join_state_signer,
    get_role_actuator,
    require_cron_secret,
    require_member_role_id,
    get_webhook_gateway,
    get_join_flow_service,
)

__all__ = [
    "get_billing_client",
    "get_guild_client",
    "get_oauth_client",
    "get_join_state_signer",
    "get_role_actuator",
    "require_cron_secret",
    "require_member_role_id",
    "get_webhook_gateway",
    "get_join_flow_service",
]
