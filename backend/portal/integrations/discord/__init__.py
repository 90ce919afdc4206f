"""Discord community platform integration."""

from portal.integrations.discord.community_client import (
    DiscordGuildClient,
    CommunityPlatformError,
)
from portal.integrations.discord.oauth_client import (
    DiscordOAuthClient,
    DiscordOAuthConfig,
    DiscordOAuthToken,
    OAuthExchangeError,
)

__all__ = [
    "DiscordGuildClient",
    "CommunityPlatformError",
    "DiscordOAuthClient",
    "DiscordOAuthConfig",
    "DiscordOAuthToken",
    "OAuthExchangeError",
]
