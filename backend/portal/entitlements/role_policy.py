"""
Member role policy.

Decides whether an identity should hold the member role from its
application status and its latest subscription. This is the only place the
rule lives; the webhook gateway, the reconciliation job and the join flow
all call it.

Policy table (application must be APPROVED, otherwise False):
    active, past_due              -> True
    canceled, period end > now    -> True  (paid-through grace period)
    canceled, period end <= now   -> False
    canceled, no period end       -> False
    unpaid, incomplete, none      -> False
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from portal.models.application import ApplicationStatus
from portal.models.subscription import SubscriptionStatus


class IneligibilityReason(str, Enum):
    """Machine-readable reason the role is denied."""
    NOT_APPROVED = "not_approved"
    NO_CUSTOMER = "no_customer"
    NO_SUBSCRIPTION = "no_subscription"
    NOT_CURRENT = "not_current"


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: Optional[IneligibilityReason] = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce(enum_cls, value):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def desired_role_state(
    application_status: Optional[ApplicationStatus],
    subscription_status: Optional[SubscriptionStatus],
    current_period_end: Optional[datetime],
    now: datetime,
) -> bool:
    """
    Return True iff the identity should hold the member role.

    Pure and total: unknown or missing inputs yield False.
    """
    if _coerce(ApplicationStatus, application_status) != ApplicationStatus.APPROVED:
        return False

    status = _coerce(SubscriptionStatus, subscription_status)
    if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE):
        return True

    if status == SubscriptionStatus.CANCELED:
        if current_period_end is None:
            return False
        return _as_utc(current_period_end) > _as_utc(now)

    return False


def evaluate_eligibility(
    application_status: Optional[ApplicationStatus],
    has_customer: bool,
    subscription_status: Optional[SubscriptionStatus],
    current_period_end: Optional[datetime],
    now: datetime,
) -> EligibilityResult:
    """
    Same decision as desired_role_state, with the first failing reason.

    Used where the caller needs to route a user to a specific remedy.
    """
    if _coerce(ApplicationStatus, application_status) != ApplicationStatus.APPROVED:
        return EligibilityResult(False, IneligibilityReason.NOT_APPROVED)
    if not has_customer:
        return EligibilityResult(False, IneligibilityReason.NO_CUSTOMER)
    if subscription_status is None:
        return EligibilityResult(False, IneligibilityReason.NO_SUBSCRIPTION)
    if not desired_role_state(application_status, subscription_status, current_period_end, now):
        return EligibilityResult(False, IneligibilityReason.NOT_CURRENT)
    return EligibilityResult(True)
