"""Tests for access evaluation and lazy grace expiry."""

from datetime import timedelta

import pytest

from billing_sync.errors import ProviderError
from billing_sync.models.account import SubscriptionStatus
from conftest import START, build_subscription

END = START + timedelta(days=30)
LAST_PERIOD_START = START - timedelta(days=30)


@pytest.fixture
def access(container):
    return container.access


class TestCheckAccess:
    def test_free_account(self, access, make_account):
        decision = access.check_access(make_account())
        assert decision.has_access is False
        assert decision.reason == "no_subscription"

    def test_expired_account(self, access, make_account):
        decision = access.check_access(make_account(status=SubscriptionStatus.EXPIRED, period_end=START))
        assert decision.has_access is False
        assert decision.period_end == START

    def test_active_within_period(self, access, make_account, provider):
        account = make_account(customer_id="cus_1", status=SubscriptionStatus.ACTIVE, period_start=START, period_end=END)
        decision = access.check_access(account)
        assert decision.has_access is True
        assert decision.reason == "active"
        assert provider.calls == {}

    def test_trial_within_period(self, access, make_account):
        decision = access.check_access(make_account(status=SubscriptionStatus.TRIAL, period_end=END))
        assert decision.has_access is True
        assert decision.reason == "trial"

    def test_admin_bypass(self, access, make_account):
        decision = access.check_access(make_account(is_admin=True))
        assert decision.has_access is True
        assert decision.reason == "admin"


class TestGracePeriod:
    """Test CANCELLED records around their period end."""

    def test_cancelled_before_period_end_keeps_access(self, access, make_account, store):
        account = make_account(status=SubscriptionStatus.CANCELLED, period_end=END)
        decision = access.check_access(account)
        assert decision.has_access is True
        assert decision.reason == "grace_period"
        assert store.get_by_id(account.id).subscription.status == SubscriptionStatus.CANCELLED

    def test_grace_elapsed_revokes_on_read(self, access, make_account, store, clock):
        account = make_account(status=SubscriptionStatus.CANCELLED, period_end=END)
        clock.advance_time(days=30, seconds=1)

        decision = access.check_access(store.get_by_id(account.id))

        assert decision.has_access is False
        assert decision.status == SubscriptionStatus.EXPIRED
        stored = store.get_by_id(account.id).subscription
        assert stored.status == SubscriptionStatus.EXPIRED
        assert stored.period_end == END

    def test_period_end_is_exclusive(self, access, make_account, clock):
        account = make_account(status=SubscriptionStatus.CANCELLED, period_end=END)
        clock.advance_time(days=30)
        assert access.check_access(account).has_access is False


class TestRefreshPastPeriodEnd:
    """Test ACTIVE/TRIAL records whose stored period has ended."""

    def test_renewal_is_picked_up(self, access, make_account, provider, store):
        account = make_account(
            customer_id="cus_1",
            status=SubscriptionStatus.ACTIVE,
            subscription_id="sub_1",
            period_start=LAST_PERIOD_START,
            period_end=START,
        )
        provider.add_subscription("cus_1", build_subscription("sub_1", "cus_1", "active", START, END))

        decision = access.check_access(account)

        assert decision.has_access is True
        assert decision.reason == "active"
        assert decision.period_end == END
        assert store.get_by_id(account.id).subscription.period_end == END

    def test_provider_reports_cancellation(self, access, make_account, provider):
        account = make_account(
            customer_id="cus_1", status=SubscriptionStatus.ACTIVE, period_start=LAST_PERIOD_START, period_end=START
        )
        provider.add_subscription(
            "cus_1", build_subscription("sub_1", "cus_1", "canceled", LAST_PERIOD_START, START)
        )
        decision = access.check_access(account)
        assert decision.has_access is False
        assert decision.status == SubscriptionStatus.EXPIRED

    def test_provider_failure_keeps_stored_state(self, access, make_account, provider, store):
        account = make_account(
            customer_id="cus_1", status=SubscriptionStatus.ACTIVE, period_start=LAST_PERIOD_START, period_end=START
        )
        provider.fail_with = ProviderError("timeout")

        decision = access.check_access(account)

        assert decision.has_access is True
        assert decision.reason == "active_unverified"
        assert store.get_by_id(account.id).subscription == account.subscription

    def test_without_customer_reference(self, access, make_account, provider):
        account = make_account(status=SubscriptionStatus.TRIAL, period_end=START)
        decision = access.check_access(account)
        assert decision.reason == "trial_unverified"
        assert provider.calls == {}
