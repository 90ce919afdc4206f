"""
Discord OAuth2 client for the join flow.

Exchanges an authorization code for a user access token and reads the
authenticated user. The access token is only used to add the user to the
guild and is never stored or logged.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx

from portal.integrations.discord.community_client import DISCORD_API_BASE

logger = logging.getLogger(__name__)

DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
JOIN_SCOPES = "identify guilds.join"


class OAuthExchangeError(Exception):
    """Code exchange or user lookup failed."""
    pass


@dataclass
class DiscordOAuthConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    api_base: str = DISCORD_API_BASE


@dataclass
class DiscordOAuthToken:
    access_token: str
    token_type: str = "Bearer"
    scope: Optional[str] = None


class DiscordOAuthClient:

    def __init__(self, config: DiscordOAuthConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = http_client or httpx.AsyncClient(timeout=10.0)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def authorize_url(self, state: str) -> str:
        """Build the authorize URL the user is redirected to."""
        query = urlencode({
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": JOIN_SCOPES,
            "state": state,
            "prompt": "consent",
        })
        return f"{DISCORD_AUTHORIZE_URL}?{query}"

    async def exchange_code(self, code: str) -> DiscordOAuthToken:
        """
        Exchange an authorization code for an access token.

        Raises:
            OAuthExchangeError: On transport failure or a non-2xx answer
        """
        try:
            response = await self._client.post(
                f"{self.config.api_base}/oauth2/token",
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.config.redirect_uri,
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            raise OAuthExchangeError(f"Token exchange failed: {str(e)}")

        if response.status_code != 200:
            logger.warning("OAuth token exchange rejected", extra={"status_code": response.status_code})
            raise OAuthExchangeError(f"Token exchange rejected ({response.status_code})")

        data = response.json()
        if not data.get("access_token"):
            raise OAuthExchangeError("Token response has no access_token")
        return DiscordOAuthToken(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope"),
        )

    async def get_user_id(self, access_token: str) -> str:
        """Return the id of the user the token belongs to."""
        try:
            response = await self._client.get(
                f"{self.config.api_base}/users/@me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise OAuthExchangeError(f"User lookup failed: {str(e)}")

        if response.status_code != 200:
            raise OAuthExchangeError(f"User lookup rejected ({response.status_code})")

        user_id = response.json().get("id")
        if not user_id:
            raise OAuthExchangeError("User response has no id")
        return str(user_id)
