"""
Role actuator: idempotent grant/revoke of the member role.

Reads the member's current roles, then grants or revokes only when the
member is not already in the desired state. Transient failures are retried
according to RetryPolicy; a missing member is surfaced as NOT_MEMBER and
never retried.

The actuator does not raise for community platform failures. Every terminal
outcome is returned as a RoleSyncResult and written to the role sync audit
log, so a failed role call never fails the caller's billing write.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from portal.integrations.discord.community_client import DiscordGuildClient
from portal.models.role_sync_event import RoleSyncAction
from portal.repositories.role_sync_events import RoleSyncEventRepository
from portal.services.retry_policy import RetryPolicy, ErrorCategory, DEFAULT_RETRY_POLICY

logger = logging.getLogger(__name__)


class RoleSyncOutcome(str, Enum):
    GRANTED = "granted"
    REVOKED = "revoked"
    UNCHANGED = "unchanged"
    NOT_MEMBER = "not_member"
    FAILED = "failed"
    RETRIES_EXHAUSTED = "retries_exhausted"


SUCCESS_OUTCOMES = frozenset({
    RoleSyncOutcome.GRANTED,
    RoleSyncOutcome.REVOKED,
    RoleSyncOutcome.UNCHANGED,
})


@dataclass
class RoleSyncResult:
    """Terminal outcome of one ensure_role call."""
    discord_user_id: str
    role_id: str
    desired: bool
    outcome: RoleSyncOutcome
    attempts: int
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES

    @property
    def not_member(self) -> bool:
        return self.outcome == RoleSyncOutcome.NOT_MEMBER

    def to_dict(self) -> dict:
        return {
            "discord_user_id": self.discord_user_id,
            "role_id": self.role_id,
            "desired": self.desired,
            "outcome": self.outcome.value,
            "attempts": self.attempts,
            "success": self.success,
            "error": self.error,
        }


class RoleActuator:
    """
    Brings one identity's role possession to the desired state.

    Shared by the webhook gateway, the reconciliation job and the join flow.
    """

    def __init__(
        self,
        db_session: Session,
        client: DiscordGuildClient,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize actuator.

        Args:
            db_session: Session used for audit writes
            client: Community platform client
            retry_policy: Attempt budget and error classifier
            sleep: Awaitable sleep; tests inject a recorder
        """
        self.db_session = db_session
        self.client = client
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self._sleep = sleep
        self._audit = RoleSyncEventRepository(db_session)

    async def _apply_once(
        self,
        discord_user_id: str,
        role_id: str,
        desired: bool,
        reason: Optional[str],
    ) -> RoleSyncOutcome:
        held = await self.client.has_role(discord_user_id, role_id)

        if desired:
            if held is None:
                return RoleSyncOutcome.NOT_MEMBER
            if held:
                return RoleSyncOutcome.UNCHANGED
            await self.client.add_role(discord_user_id, role_id, reason=reason)
            return RoleSyncOutcome.GRANTED

        # a non-member cannot hold the role
        if not held:
            return RoleSyncOutcome.UNCHANGED
        await self.client.remove_role(discord_user_id, role_id, reason=reason)
        return RoleSyncOutcome.REVOKED

    async def ensure_role(
        self,
        discord_user_id: str,
        role_id: str,
        desired: bool,
        source: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> RoleSyncResult:
        """
        Grant or revoke the role so that possession equals `desired`.

        Args:
            discord_user_id: External identity id
            role_id: Community role id
            desired: Whether the identity should hold the role
            source: Entry point name recorded in the audit log
            reason: Audit reason forwarded to the community platform

        Returns:
            RoleSyncResult describing the terminal outcome
        """
        outcome: Optional[RoleSyncOutcome] = None
        error_message: Optional[str] = None
        attempt = 0

        while attempt < self.retry_policy.max_attempts:
            attempt += 1
            try:
                outcome = await self._apply_once(discord_user_id, role_id, desired, reason)
                error_message = None
                break
            except Exception as e:
                error_message = str(e)
                category = self.retry_policy.classify(e)

                if category == ErrorCategory.NOT_MEMBER:
                    # the member left between the read and the write
                    outcome = RoleSyncOutcome.NOT_MEMBER if desired else RoleSyncOutcome.UNCHANGED
                    if not desired:
                        error_message = None
                    break

                if category == ErrorCategory.PERMANENT:
                    outcome = RoleSyncOutcome.FAILED
                    break

                if attempt >= self.retry_policy.max_attempts:
                    break

                delay = self.retry_policy.delay_after(attempt)
                logger.info(
                    "Role call failed, backing off",
                    extra={
                        "discord_user_id": discord_user_id,
                        "role_id": role_id,
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "error": error_message,
                    }
                )
                await self._sleep(delay)

        if outcome is None:
            outcome = RoleSyncOutcome.RETRIES_EXHAUSTED

        if outcome == RoleSyncOutcome.NOT_MEMBER and error_message is None:
            error_message = "Identity has not joined the community"

        result = RoleSyncResult(
            discord_user_id=discord_user_id,
            role_id=role_id,
            desired=desired,
            outcome=outcome,
            attempts=attempt,
            error=error_message,
        )
        self._record(result, source)
        return result

    def _record(self, result: RoleSyncResult, source: Optional[str]) -> None:
        self._audit.record(
            discord_user_id=result.discord_user_id,
            role_id=result.role_id,
            action=RoleSyncAction.ASSIGN if result.desired else RoleSyncAction.REMOVE,
            success=result.success,
            outcome=result.outcome.value,
            attempts=result.attempts,
            source=source,
            error_message=result.error,
        )

        log_extra = {
            "discord_user_id": result.discord_user_id,
            "role_id": result.role_id,
            "desired": result.desired,
            "outcome": result.outcome.value,
            "attempts": result.attempts,
            "source": source,
        }
        if result.success:
            logger.info("Role sync completed", extra=log_extra)
        elif result.outcome == RoleSyncOutcome.NOT_MEMBER:
            logger.warning("Role sync skipped: identity not in community", extra=log_extra)
        else:
            logger.error("Role sync failed", extra={**log_extra, "error": result.error})
