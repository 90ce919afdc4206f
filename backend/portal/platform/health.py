"""
Health checks for the portal service.

Provides:
- Database connectivity
- Required configuration presence (names only, never values)
"""

import os
import logging
from typing import Callable, Dict, Optional
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "DATABASE_URL",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "MEMBER_ROLE_ID",
    "DISCORD_GUILD_ID",
    "DISCORD_BOT_TOKEN",
    "CRON_SECRET",
]

OPTIONAL_VARS = [
    "DISCORD_CLIENT_ID",
    "DISCORD_CLIENT_SECRET",
    "DISCORD_JOIN_REDIRECT_URI",
    "JOIN_STATE_SECRET",
    "APP_URL",
]


class HealthChecker:
    """Health check service for deployment validation."""

    def __init__(self, engine_provider: Optional[Callable[[], Engine]] = None):
        if engine_provider is None:
            from portal.database.session import get_engine
            engine_provider = get_engine
        self._engine_provider = engine_provider

    def check_database(self) -> Dict[str, str]:
        """
        Check database connectivity.

        Returns:
            Dict with 'status' (ok/error) and 'message'
        """
        try:
            with self._engine_provider().connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return {
                "status": "ok",
                "message": "Database connection successful"
            }
        except SQLAlchemyError as e:
            logger.error("Database connection failed", extra={"error": str(e)})
            return {
                "status": "error",
                "message": "Database connection failed"
            }

    def check_environment_variables(self) -> Dict[str, object]:
        """
        Check required environment variables are present.

        Returns:
            Dict with 'status', 'present', and 'missing' lists
        """
        present = [var for var in REQUIRED_VARS + OPTIONAL_VARS if os.getenv(var)]
        missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

        return {
            "status": "ok" if not missing else "error",
            "present": present,
            "missing": missing,
            "message": f"{len(present)} vars present, {len(missing)} missing"
        }

    def get_health_status(self) -> Dict[str, object]:
        """Overall status is ok only if every check passes."""
        db_check = self.check_database()
        env_check = self.check_environment_variables()

        overall_status = "ok"
        if db_check["status"] != "ok" or env_check["status"] != "ok":
            overall_status = "degraded"

        return {
            "status": overall_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "membership-portal",
            "checks": {
                "database": db_check,
                "environment": env_check,
            }
        }

    def log_config_status(self) -> None:
        """Log which variables are set on startup. Values are never logged."""
        env_check = self.check_environment_variables()
        logger.info("Configuration status", extra={
            "vars_present": env_check["present"],
            "vars_missing": env_check["missing"],
        })
        if env_check["missing"]:
            logger.warning("Missing required environment variables", extra={
                "missing_vars": env_check["missing"]
            })


_health_checker: Optional[HealthChecker] = None


def get_health_checker() -> HealthChecker:
    """Get or create health checker instance."""
    global _health_checker
    if _health_checker is None:
        _health_checker = HealthChecker()
    return _health_checker
