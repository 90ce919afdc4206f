"""
Portal configuration loaded from environment variables.

Values that are not set come back as None. Whether a missing value is fatal
is decided by the caller: the webhook route answers 503 without a role id,
the reconciliation route answers 400, and so on.
"""

import os
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./portal.db"
DEFAULT_DISCORD_API_BASE = "https://discord.com/api/v10"
DEFAULT_APP_URL = "http://localhost:3000"
DEFAULT_WEBHOOK_TOLERANCE_SECONDS = 300
DEFAULT_JOIN_STATE_MAX_AGE_SECONDS = 15 * 60


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(
            "Ignoring non-integer environment value",
            extra={"variable": name},
        )
        return default


def normalize_database_url(url: str) -> str:
    """Rewrite the legacy postgres:// scheme that SQLAlchemy no longer accepts."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass(frozen=True)
class PortalSettings:
    """Process-wide configuration snapshot."""
    database_url: str = DEFAULT_DATABASE_URL
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_webhook_tolerance_seconds: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS
    member_role_id: Optional[str] = None
    discord_guild_id: Optional[str] = None
    discord_bot_token: Optional[str] = None
    discord_api_base: str = DEFAULT_DISCORD_API_BASE
    discord_client_id: Optional[str] = None
    discord_client_secret: Optional[str] = None
    discord_join_redirect_uri: Optional[str] = None
    join_state_secret: Optional[str] = None
    join_state_max_age_seconds: int = DEFAULT_JOIN_STATE_MAX_AGE_SECONDS
    cron_secret: Optional[str] = None
    app_url: str = DEFAULT_APP_URL
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "PortalSettings":
        """Load configuration from environment variables."""
        client_secret = os.getenv("DISCORD_CLIENT_SECRET") or None
        settings = cls(
            database_url=normalize_database_url(
                os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
            ),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            stripe_webhook_tolerance_seconds=_int_env(
                "STRIPE_WEBHOOK_TOLERANCE_SECONDS", DEFAULT_WEBHOOK_TOLERANCE_SECONDS
            ),
            member_role_id=os.getenv("MEMBER_ROLE_ID") or None,
            discord_guild_id=os.getenv("DISCORD_GUILD_ID") or None,
            discord_bot_token=os.getenv("DISCORD_BOT_TOKEN") or None,
            discord_api_base=(os.getenv("DISCORD_API_BASE") or DEFAULT_DISCORD_API_BASE).rstrip("/"),
            discord_client_id=os.getenv("DISCORD_CLIENT_ID") or None,
            discord_client_secret=client_secret,
            discord_join_redirect_uri=os.getenv("DISCORD_JOIN_REDIRECT_URI") or None,
            join_state_secret=os.getenv("JOIN_STATE_SECRET") or client_secret,
            join_state_max_age_seconds=_int_env(
                "JOIN_STATE_MAX_AGE_SECONDS", DEFAULT_JOIN_STATE_MAX_AGE_SECONDS
            ),
            cron_secret=os.getenv("CRON_SECRET") or None,
            app_url=(os.getenv("APP_URL") or DEFAULT_APP_URL).rstrip("/"),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

        if not settings.member_role_id:
            logger.warning("MEMBER_ROLE_ID not configured; role sync is disabled")

        return settings

    @property
    def community_configured(self) -> bool:
        return bool(self.discord_guild_id and self.discord_bot_token)


@lru_cache(maxsize=1)
def get_settings() -> PortalSettings:
    """Return the cached settings for this process."""
    return PortalSettings.from_env()
