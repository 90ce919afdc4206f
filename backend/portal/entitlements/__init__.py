"""Member role entitlement policy."""

from portal.entitlements.role_policy import (
    desired_role_state,
    evaluate_eligibility,
    EligibilityResult,
    IneligibilityReason,
)

__all__ = [
    "desired_role_state",
    "evaluate_eligibility",
    "EligibilityResult",
    "IneligibilityReason",
]
