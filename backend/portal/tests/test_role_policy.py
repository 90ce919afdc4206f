"""
Tests for the member role policy.

Covers:
- The full policy table for desired_role_state
- Grace period boundary for canceled subscriptions
- Naive datetimes (as returned by SQLite) treated as UTC
- Eligibility reason codes used by the join flow
"""

from datetime import datetime, timedelta, timezone
from itertools import product

import pytest

from portal.entitlements.role_policy import (
    desired_role_state,
    evaluate_eligibility,
    IneligibilityReason,
)
from portal.models.application import ApplicationStatus
from portal.models.subscription import SubscriptionStatus


NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
FUTURE = NOW + timedelta(days=10)
PAST = NOW - timedelta(days=1)


# =============================================================================
# Policy Table Tests
# =============================================================================

class TestDesiredRoleState:
    """desired_role_state matches the policy table."""

    def test_approved_active_holds_role(self):
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.ACTIVE, FUTURE, NOW) is True

    def test_approved_past_due_holds_role(self):
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.PAST_DUE, PAST, NOW) is True

    def test_active_ignores_period_end(self):
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.ACTIVE, None, NOW) is True

    def test_canceled_within_paid_period_holds_role(self):
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.CANCELED, FUTURE, NOW) is True

    def test_canceled_after_period_end_loses_role(self):
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.CANCELED, PAST, NOW) is False

    def test_canceled_exactly_at_period_end_loses_role(self):
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.CANCELED, NOW, NOW) is False

    def test_canceled_without_period_end_loses_role(self):
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.CANCELED, None, NOW) is False

    @pytest.mark.parametrize("status", [SubscriptionStatus.UNPAID, SubscriptionStatus.INCOMPLETE])
    def test_unpaid_and_incomplete_never_hold_role(self, status):
        assert desired_role_state(ApplicationStatus.APPROVED, status, FUTURE, NOW) is False

    def test_no_subscription_never_holds_role(self):
        assert desired_role_state(ApplicationStatus.APPROVED, None, None, NOW) is False

    @pytest.mark.parametrize("application_status", [
        ApplicationStatus.PENDING,
        ApplicationStatus.REJECTED,
        ApplicationStatus.WAITLISTED,
        None,
    ])
    def test_unapproved_application_never_holds_role(self, application_status):
        for subscription_status in SubscriptionStatus:
            assert desired_role_state(application_status, subscription_status, FUTURE, NOW) is False

    def test_total_over_all_inputs(self):
        """Every combination returns a bool without raising."""
        app_statuses = list(ApplicationStatus) + [None]
        sub_statuses = list(SubscriptionStatus) + [None]
        for app_status, sub_status, period_end in product(app_statuses, sub_statuses, [None, PAST, FUTURE]):
            assert isinstance(desired_role_state(app_status, sub_status, period_end, NOW), bool)

    def test_accepts_raw_string_values(self):
        assert desired_role_state("approved", "active", None, NOW) is True
        assert desired_role_state("approved", "bogus", FUTURE, NOW) is False

    def test_naive_period_end_treated_as_utc(self):
        naive_future = FUTURE.replace(tzinfo=None)
        naive_past = PAST.replace(tzinfo=None)
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.CANCELED, naive_future, NOW) is True
        assert desired_role_state(ApplicationStatus.APPROVED, SubscriptionStatus.CANCELED, naive_past, NOW) is False

    def test_is_pure(self):
        args = (ApplicationStatus.APPROVED, SubscriptionStatus.CANCELED, FUTURE, NOW)
        assert desired_role_state(*args) == desired_role_state(*args)
        assert FUTURE == NOW + timedelta(days=10)


# =============================================================================
# Eligibility Tests
# =============================================================================

class TestEvaluateEligibility:
    """Reason codes follow the first failing precondition."""

    def test_eligible(self):
        result = evaluate_eligibility(ApplicationStatus.APPROVED, True, SubscriptionStatus.ACTIVE, FUTURE, NOW)
        assert result.eligible is True
        assert result.reason is None

    def test_waitlisted_is_not_approved(self):
        result = evaluate_eligibility(ApplicationStatus.WAITLISTED, True, SubscriptionStatus.ACTIVE, FUTURE, NOW)
        assert result.eligible is False
        assert result.reason == IneligibilityReason.NOT_APPROVED

    def test_missing_application_is_not_approved(self):
        result = evaluate_eligibility(None, False, None, None, NOW)
        assert result.reason == IneligibilityReason.NOT_APPROVED

    def test_no_customer(self):
        result = evaluate_eligibility(ApplicationStatus.APPROVED, False, None, None, NOW)
        assert result.reason == IneligibilityReason.NO_CUSTOMER

    def test_no_subscription(self):
        result = evaluate_eligibility(ApplicationStatus.APPROVED, True, None, None, NOW)
        assert result.reason == IneligibilityReason.NO_SUBSCRIPTION

    def test_expired_canceled_is_not_current(self):
        result = evaluate_eligibility(ApplicationStatus.APPROVED, True, SubscriptionStatus.CANCELED, PAST, NOW)
        assert result.reason == IneligibilityReason.NOT_CURRENT

    def test_unpaid_is_not_current(self):
        result = evaluate_eligibility(ApplicationStatus.APPROVED, True, SubscriptionStatus.UNPAID, FUTURE, NOW)
        assert result.reason == IneligibilityReason.NOT_CURRENT

    def test_agrees_with_desired_role_state(self):
        for sub_status, period_end in product(list(SubscriptionStatus), [None, PAST, FUTURE]):
            eligible = evaluate_eligibility(ApplicationStatus.APPROVED, True, sub_status, period_end, NOW).eligible
            assert eligible == desired_role_state(ApplicationStatus.APPROVED, sub_status, period_end, NOW)
