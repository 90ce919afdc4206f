"""
Join flow: user-initiated "claim membership".

    state verified -> code exchanged -> identity read -> eligibility checked
    -> guild add (with role) -> role actuator fallback

Nothing touches the community platform until the state token has been
verified and the identity is eligible. Refusals carry a machine-readable
code so the result page can route the user to the right remedy.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.orm import Session

from portal.entitlements.role_policy import evaluate_eligibility
from portal.integrations.discord.community_client import DiscordGuildClient, CommunityPlatformError
from portal.integrations.discord.oauth_client import DiscordOAuthClient, OAuthExchangeError
from portal.platform.errors import NotFoundError
from portal.platform.join_state import JoinStateSigner, JoinStateError
from portal.repositories.applications import ApplicationRepository
from portal.repositories.customers import CustomerRepository
from portal.repositories.join_states import JoinStateNonceRepository
from portal.repositories.subscriptions import SubscriptionRepository
from portal.services.role_actuator import RoleActuator, RoleSyncResult

logger = logging.getLogger(__name__)


class JoinErrorCode(str, Enum):
    MISSING_STATE = "missing_state"
    INVALID_STATE = "invalid_state"
    MISSING_CODE = "missing_code"
    NOT_APPROVED = "not_approved"
    NO_CUSTOMER = "no_customer"
    NO_SUBSCRIPTION = "no_subscription"
    NOT_CURRENT = "not_current"
    CALLBACK_ERROR = "callback_error"


@dataclass
class JoinOutcome:
    """Result of a claim, rendered as ?joined=0|1&error=<code>."""
    joined: bool
    error: Optional[JoinErrorCode] = None
    discord_user_id: Optional[str] = None
    role_result: Optional[RoleSyncResult] = None

    @classmethod
    def refused(cls, error: JoinErrorCode, discord_user_id: Optional[str] = None) -> "JoinOutcome":
        return cls(joined=False, error=error, discord_user_id=discord_user_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JoinFlowService:
    """Runs the join callback for one OAuth round trip."""

    def __init__(
        self,
        db_session: Session,
        signer: JoinStateSigner,
        oauth_client: DiscordOAuthClient,
        guild_client: DiscordGuildClient,
        actuator: RoleActuator,
        role_id: Optional[str],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db_session = db_session
        self.signer = signer
        self.oauth_client = oauth_client
        self.guild_client = guild_client
        self.actuator = actuator
        self.role_id = role_id
        self._clock = clock

        self.applications = ApplicationRepository(db_session)
        self.customers = CustomerRepository(db_session)
        self.subscriptions = SubscriptionRepository(db_session)
        self.nonces = JoinStateNonceRepository(db_session)

    def build_authorize_url(self, application_id: str) -> str:
        """
        Issue a fresh state token and return the OAuth authorize URL.

        Raises:
            NotFoundError: If the application does not exist
        """
        if self.applications.get(application_id) is None:
            raise NotFoundError("Application", application_id)
        state = self.signer.issue(application_id, now=self._clock())
        return self.oauth_client.authorize_url(state)

    async def claim_membership(self, code: Optional[str], state: Optional[str]) -> JoinOutcome:
        """
        Complete the join callback.

        Never raises; unexpected failures become CALLBACK_ERROR.
        """
        if not state:
            return JoinOutcome.refused(JoinErrorCode.MISSING_STATE)
        try:
            claims = self.signer.verify(state)
        except JoinStateError as e:
            logger.warning("Join state rejected", extra={"reason": str(e)})
            return JoinOutcome.refused(JoinErrorCode.INVALID_STATE)
        if not code:
            return JoinOutcome.refused(JoinErrorCode.MISSING_CODE)

        try:
            if not self.nonces.consume(claims.nonce, claims.application_id, claims.expires_at):
                logger.warning("Join state replayed", extra={"application_id": claims.application_id})
                return JoinOutcome.refused(JoinErrorCode.INVALID_STATE)
            return await self._claim(code, claims.application_id)
        except OAuthExchangeError as e:
            logger.warning("Join OAuth exchange failed", extra={"error": str(e)})
            return JoinOutcome.refused(JoinErrorCode.CALLBACK_ERROR)
        except Exception:
            logger.exception("Join callback failed")
            return JoinOutcome.refused(JoinErrorCode.CALLBACK_ERROR)

    async def _claim(self, code: str, state_application_id: str) -> JoinOutcome:
        token = await self.oauth_client.exchange_code(code)
        discord_user_id = await self.oauth_client.get_user_id(token.access_token)

        application = self.applications.get_by_identity(discord_user_id)
        if application is not None and application.id != state_application_id:
            logger.warning("Join state issued for a different application", extra={
                "discord_user_id": discord_user_id,
                "application_id": application.id,
            })
            return JoinOutcome.refused(JoinErrorCode.INVALID_STATE, discord_user_id)

        customer = self.customers.get_by_identity(discord_user_id)
        subscription = self.subscriptions.current_for_customer(customer.id) if customer else None

        eligibility = evaluate_eligibility(
            application.status if application else None,
            customer is not None,
            subscription.status if subscription else None,
            subscription.current_period_end if subscription else None,
            self._clock(),
        )
        if not eligibility.eligible:
            logger.info("Join refused", extra={
                "discord_user_id": discord_user_id,
                "reason_code": eligibility.reason.value,
            })
            return JoinOutcome.refused(JoinErrorCode(eligibility.reason.value), discord_user_id)

        joined = False
        try:
            added = await self.guild_client.add_member(
                discord_user_id,
                token.access_token,
                role_ids=[self.role_id] if self.role_id else None,
            )
            joined = True
            logger.info("Guild join completed", extra={
                "discord_user_id": discord_user_id,
                "newly_added": added,
            })
        except CommunityPlatformError as e:
            logger.error("Guild join call failed", extra={
                "discord_user_id": discord_user_id,
                "status_code": e.status_code,
                "error": str(e),
            })

        # adding an existing member does not apply roles, so always follow up
        role_result = None
        if self.role_id:
            role_result = await self.actuator.ensure_role(
                discord_user_id,
                self.role_id,
                desired=True,
                source="join",
                reason="Membership claimed",
            )

        return JoinOutcome(
            joined=joined,
            discord_user_id=discord_user_id,
            role_result=role_result,
        )
