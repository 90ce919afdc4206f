"""
Discord guild client for member role management.

Handles:
- Member lookup (membership and current roles)
- Role grant / revoke (idempotent on Discord's side: repeats answer 204)
- Adding a member to the guild with an OAuth access token

Every failure is raised as CommunityPlatformError, classified as retryable
(network, timeout, 429, 5xx), not-a-member (404 Unknown Member or Unknown
User) or permanent (anything else).
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"

# Discord JSON error codes that accompany a 404
UNKNOWN_GUILD = 10004
UNKNOWN_MEMBER = 10007
UNKNOWN_USER = 10013
UNKNOWN_ROLE = 10011

NOT_MEMBER_CODES = (UNKNOWN_MEMBER, UNKNOWN_USER)


class CommunityPlatformError(Exception):
    """Error from the community platform API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        not_member: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.not_member = not_member


class DiscordGuildClient:
    """Bot-authenticated client scoped to one guild."""

    def __init__(
        self,
        guild_id: str,
        bot_token: str,
        api_base: str = DISCORD_API_BASE,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize guild client.

        Args:
            guild_id: Guild (community) id
            bot_token: Bot token with Manage Roles and guilds.join rights
            api_base: API base URL
            http_client: Pre-built client (tests inject a MockTransport)
        """
        self.guild_id = guild_id
        self.api_base = api_base.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Authorization": f"Bot {bot_token}",
            "Content-Type": "application/json",
        }

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _member_url(self, user_id: str) -> str:
        return f"{self.api_base}/guilds/{self.guild_id}/members/{user_id}"

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if reason:
            headers["X-Audit-Log-Reason"] = reason[:512]

        try:
            response = await self._client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as e:
            raise CommunityPlatformError(f"Timeout calling community platform: {str(e)}", retryable=True)
        except httpx.TransportError as e:
            raise CommunityPlatformError(f"Network error calling community platform: {str(e)}", retryable=True)

        if response.status_code < 400:
            return response

        raise self._classify_error(response)

    @staticmethod
    def _classify_error(response: httpx.Response) -> CommunityPlatformError:
        status_code = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {}
        error_code = body.get("code") if isinstance(body, dict) else None
        message = (body.get("message") if isinstance(body, dict) else None) or response.reason_phrase

        if status_code == 429 or status_code >= 500:
            return CommunityPlatformError(
                f"Community platform unavailable ({status_code}): {message}",
                status_code=status_code,
                retryable=True,
            )
        # a bare 404 carries no code; unknown guild or role is a configuration fault
        if status_code == 404 and (error_code is None or error_code in NOT_MEMBER_CODES):
            return CommunityPlatformError(
                f"Identity is not a member of the community: {message}",
                status_code=status_code,
                not_member=True,
            )
        return CommunityPlatformError(
            f"Community platform rejected request ({status_code}): {message}",
            status_code=status_code,
        )

    async def get_member(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a guild member.

        Returns:
            The member object, or None if the identity has not joined
        """
        try:
            response = await self._request("GET", self._member_url(user_id))
        except CommunityPlatformError as e:
            if e.not_member:
                return None
            raise
        return response.json()

    async def has_role(self, user_id: str, role_id: str) -> Optional[bool]:
        """True/False for a member, None if the identity has not joined."""
        member = await self.get_member(user_id)
        if member is None:
            return None
        return str(role_id) in {str(r) for r in member.get("roles", [])}

    async def add_role(self, user_id: str, role_id: str, reason: Optional[str] = None) -> None:
        await self._request("PUT", f"{self._member_url(user_id)}/roles/{role_id}", reason=reason)

    async def remove_role(self, user_id: str, role_id: str, reason: Optional[str] = None) -> None:
        await self._request("DELETE", f"{self._member_url(user_id)}/roles/{role_id}", reason=reason)

    async def add_member(
        self,
        user_id: str,
        access_token: str,
        role_ids: Optional[List[str]] = None,
    ) -> bool:
        """
        Add a user to the guild using their OAuth access token.

        Roles are only applied when the user is newly added, so callers must
        follow up with add_role for existing members.

        Returns:
            True if the user was added, False if already a member
        """
        payload: Dict[str, Any] = {"access_token": access_token}
        if role_ids:
            payload["roles"] = list(role_ids)
        response = await self._request("PUT", self._member_url(user_id), json=payload)
        return response.status_code == 201
