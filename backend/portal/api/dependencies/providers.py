"""
FastAPI dependency providers.

Every collaborator of the route handlers is built here from PortalSettings,
so tests can replace any of them through app.dependency_overrides.
Missing configuration is raised as ConfigurationError before any state is
touched.
"""

import hmac
import logging
from typing import AsyncGenerator

from fastapi import Depends, Header, status
from sqlalchemy.orm import Session

from portal.config.settings import PortalSettings, get_settings
from portal.database.session import get_db_session
from portal.integrations.discord.community_client import DiscordGuildClient
from portal.integrations.discord.oauth_client import DiscordOAuthClient, DiscordOAuthConfig
from portal.integrations.stripe.billing_client import StripeBillingClient
from portal.platform.errors import (
    AuthenticationError,
    ConfigurationError,
    ServiceUnavailableError,
)
from portal.platform.join_state import JoinStateSigner
from portal.services.role_actuator import RoleActuator
from portal.services.webhook_gateway import BillingWebhookGateway
from portal.services.join_flow import JoinFlowService

logger = logging.getLogger(__name__)


def get_billing_client(settings: PortalSettings = Depends(get_settings)) -> StripeBillingClient:
    if not settings.stripe_secret_key:
        logger.error("Received billing webhook but STRIPE_SECRET_KEY is not configured")
        raise ServiceUnavailableError("Billing not configured")
    return StripeBillingClient(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
    )


async def get_guild_client(
    settings: PortalSettings = Depends(get_settings),
) -> AsyncGenerator[DiscordGuildClient, None]:
    if not settings.discord_guild_id:
        raise ConfigurationError("DISCORD_GUILD_ID")
    if not settings.discord_bot_token:
        raise ConfigurationError("DISCORD_BOT_TOKEN")
    client = DiscordGuildClient(
        settings.discord_guild_id,
        settings.discord_bot_token,
        api_base=settings.discord_api_base,
    )
    try:
        yield client
    finally:
        await client.close()


async def get_oauth_client(
    settings: PortalSettings = Depends(get_settings),
) -> AsyncGenerator[DiscordOAuthClient, None]:
    if not settings.discord_client_id or not settings.discord_client_secret:
        raise ConfigurationError("DISCORD_CLIENT_ID")
    if not settings.discord_join_redirect_uri:
        raise ConfigurationError("DISCORD_JOIN_REDIRECT_URI")
    client = DiscordOAuthClient(DiscordOAuthConfig(
        client_id=settings.discord_client_id,
        client_secret=settings.discord_client_secret,
        redirect_uri=settings.discord_join_redirect_uri,
        api_base=settings.discord_api_base,
    ))
    try:
        yield client
    finally:
        await client.close()


def get_join_state_signer(settings: PortalSettings = Depends(get_settings)) -> JoinStateSigner:
    if not settings.join_state_secret:
        raise ConfigurationError("JOIN_STATE_SECRET")
    return JoinStateSigner(settings.join_state_secret, settings.join_state_max_age_seconds)


def get_role_actuator(
    db_session: Session = Depends(get_db_session),
    guild_client: DiscordGuildClient = Depends(get_guild_client),
) -> RoleActuator:
    return RoleActuator(db_session, guild_client)


def require_cron_secret(
    authorization: str = Header(None),
    settings: PortalSettings = Depends(get_settings),
) -> None:
    """
    Check the reconciliation bearer credential.

    An unset CRON_SECRET refuses every call.
    """
    expected = settings.cron_secret
    if not expected:
        logger.warning("Reconciliation called but CRON_SECRET is not configured")
        raise AuthenticationError("Unauthorized")

    provided = authorization or ""
    scheme, _, token = provided.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip().encode(), expected.encode()):
        raise AuthenticationError("Unauthorized")


def require_member_role_id(settings: PortalSettings = Depends(get_settings)) -> str:
    if not settings.member_role_id:
        raise ConfigurationError("MEMBER_ROLE_ID", status_code=status.HTTP_400_BAD_REQUEST)
    return settings.member_role_id


def get_webhook_gateway(
    db_session: Session = Depends(get_db_session),
    billing_client: StripeBillingClient = Depends(get_billing_client),
    actuator: RoleActuator = Depends(get_role_actuator),
    settings: PortalSettings = Depends(get_settings),
) -> BillingWebhookGateway:
    return BillingWebhookGateway(
        db_session,
        billing_client,
        actuator,
        role_id=settings.member_role_id,
    )


def get_join_flow_service(
    db_session: Session = Depends(get_db_session),
    signer: JoinStateSigner = Depends(get_join_state_signer),
    oauth_client: DiscordOAuthClient = Depends(get_oauth_client),
    guild_client: DiscordGuildClient = Depends(get_guild_client),
    actuator: RoleActuator = Depends(get_role_actuator),
    settings: PortalSettings = Depends(get_settings),
) -> JoinFlowService:
    return JoinFlowService(
        db_session,
        signer,
        oauth_client,
        guild_client,
        actuator,
        role_id=settings.member_role_id,
    )
