"""
Member role reconciliation job.

Runs on a fixed interval (HTTP cron or `python -m portal.jobs.reconcile_roles`)
to correct drift left by missed or failed webhook deliveries.

Every identity with a subscription that can ever yield the role (active,
past_due, canceled) is visited once; its desired role state is recomputed
from its current subscription and the role actuator brings the community
platform in line. Items are processed one at a time; a failure on one item
never stops the batch.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Set

from sqlalchemy.orm import Session

from portal.entitlements.role_policy import desired_role_state
from portal.models.subscription import Subscription
from portal.repositories.applications import ApplicationRepository
from portal.repositories.subscriptions import SubscriptionRepository
from portal.services.role_actuator import RoleActuator

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconciliationSummary:
    """Per-outcome counters for one reconciliation pass."""

    processed: int = 0
    assigned: int = 0
    removed: int = 0
    skipped: int = 0
    errored: int = 0
    start_time: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        duration = (_utcnow() - self.start_time).total_seconds()
        return {
            "processed": self.processed,
            "assigned": self.assigned,
            "removed": self.removed,
            "skipped": self.skipped,
            "errored": self.errored,
            "duration_seconds": round(duration, 2),
        }


class RoleReconciliationJob:
    """
    Recomputes desired role state for every reconcilable subscription.

    Each identity is evaluated once per pass, using its current subscription
    (the same row webhooks and the join flow decide from).
    """

    def __init__(
        self,
        db_session: Session,
        actuator: RoleActuator,
        role_id: str,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize reconciliation job."""
        if not role_id:
            raise ValueError("role_id is required")
        self.db_session = db_session
        self.actuator = actuator
        self.role_id = role_id
        self._clock = clock
        self.subscriptions = SubscriptionRepository(db_session)
        self.applications = ApplicationRepository(db_session)

    async def run(self) -> ReconciliationSummary:
        """
        Execute one reconciliation pass.

        Returns:
            ReconciliationSummary with per-outcome counters
        """
        summary = ReconciliationSummary()
        now = self._clock()
        seen_identities: Set[str] = set()

        subscriptions = self.subscriptions.list_reconcilable()
        summary.processed = len(subscriptions)

        logger.info("Role reconciliation started", extra={"subscription_count": len(subscriptions)})

        for subscription in subscriptions:
            try:
                await self._reconcile_one(subscription, now, seen_identities, summary)
            except Exception:
                summary.errored += 1
                self.db_session.rollback()
                logger.exception("Role reconciliation failed for subscription", extra={
                    "subscription_id": subscription.id,
                })

        logger.info("Role reconciliation completed", extra=summary.to_dict())
        return summary

    async def _reconcile_one(
        self,
        subscription: Subscription,
        now: datetime,
        seen_identities: Set[str],
        summary: ReconciliationSummary,
    ) -> None:
        customer = subscription.customer
        discord_user_id = customer.discord_user_id if customer else None
        if not discord_user_id:
            summary.skipped += 1
            return

        if discord_user_id in seen_identities:
            summary.skipped += 1
            return
        seen_identities.add(discord_user_id)

        application_status = self.applications.status_for_identity(discord_user_id)
        if application_status is None:
            summary.skipped += 1
            return

        # a newer incomplete or unpaid row outranks the role-bearing one listed
        current = self.subscriptions.current_for_customer(customer.id)
        desired = desired_role_state(
            application_status,
            current.status,
            current.current_period_end,
            now,
        )
        result = await self.actuator.ensure_role(
            discord_user_id,
            self.role_id,
            desired=desired,
            source="reconcile",
            reason="Scheduled role reconciliation",
        )

        if not result.success:
            summary.errored += 1
        elif desired:
            summary.assigned += 1
        else:
            summary.removed += 1


async def run_reconciliation(
    db_session: Session,
    actuator: RoleActuator,
    role_id: str,
) -> ReconciliationSummary:
    """
    Convenience function to run one reconciliation pass.

    Args:
        db_session: Database session
        actuator: Role actuator bound to the community platform
        role_id: Member role id

    Returns:
        Job summary
    """
    job = RoleReconciliationJob(db_session, actuator, role_id)
    return await job.run()


async def run_reconciliation_async() -> dict:
    """
    Command-line entry: build collaborators from settings and run one pass.
    """
    from portal.config.settings import get_settings
    from portal.database.session import get_db_session_sync
    from portal.integrations.discord.community_client import DiscordGuildClient

    settings = get_settings()
    if not settings.member_role_id:
        raise ValueError("MEMBER_ROLE_ID environment variable is required")
    if not settings.community_configured:
        raise ValueError("DISCORD_GUILD_ID and DISCORD_BOT_TOKEN environment variables are required")

    async with DiscordGuildClient(
        settings.discord_guild_id,
        settings.discord_bot_token,
        api_base=settings.discord_api_base,
    ) as client:
        db_gen = get_db_session_sync()
        session = next(db_gen)
        try:
            actuator = RoleActuator(session, client)
            summary = await run_reconciliation(session, actuator, settings.member_role_id)
            return summary.to_dict()
        finally:
            db_gen.close()


def main() -> int:
    """Entry point for running reconciliation from the command line."""
    from portal.platform.logging_config import configure_logging

    configure_logging()
    try:
        result = asyncio.run(run_reconciliation_async())
        logger.info("Reconciliation finished", extra=result)
        return 0
    except Exception as e:
        logger.error("Reconciliation failed", extra={"error": str(e)})
        return 1


if __name__ == "__main__":
    sys.exit(main())
