"""Tests for the subscription write path: ordering, idempotence, failures."""

from datetime import timedelta
from threading import Thread
from unittest.mock import patch

import pytest

from billing_sync.errors import InternalError, NotFoundError, ValidationError
from billing_sync.models.account import SubscriptionStatus
from billing_sync.models.remote import RemoteSubscriptionSnapshot
from billing_sync.repositories.account_store import AccountStore
from billing_sync.services.event_handlers import apply_cancellation, apply_snapshot, copy_subscription
from billing_sync.services.subscription_writer import SubscriptionWriter, _LockRegistry
from conftest import START, build_subscription

END = START + timedelta(days=30)


@pytest.fixture
def writer(store, clock):
    return SubscriptionWriter(account_store=store, clock=clock)


def activate(record):
    snapshot = RemoteSubscriptionSnapshot.from_provider(build_subscription("sub_1", "cus_1", "active", START, END))
    return apply_snapshot(record, snapshot)


class TestUpsert:
    def test_write_stamps_last_updated_and_watermark(self, writer, make_account, clock):
        account = make_account(customer_id="cus_1")
        clock.advance_time(minutes=5)
        [outcome] = writer.upsert_for_customer("cus_1", activate, START, reason="test")
        assert outcome.applied
        stored = writer.store.get_by_id(account.id).subscription
        assert stored.last_updated == clock.now()
        assert stored.source_timestamp == START
        assert stored.status == SubscriptionStatus.ACTIVE

    def test_same_write_twice_leaves_last_updated(self, writer, make_account, clock):
        account = make_account(customer_id="cus_1")
        writer.upsert_for_customer("cus_1", activate, START, reason="test")
        first = writer.store.get_by_id(account.id).subscription
        clock.advance_time(hours=1)
        [outcome] = writer.upsert_for_customer("cus_1", activate, START, reason="test")
        assert not outcome.applied
        assert outcome.skipped_reason == "unchanged"
        assert writer.store.get_by_id(account.id).subscription == first

    def test_older_write_is_skipped(self, writer, make_account):
        account = make_account(customer_id="cus_1")
        writer.upsert_for_customer("cus_1", activate, START + timedelta(minutes=10), reason="newer")
        [outcome] = writer.upsert_for_customer(
            "cus_1", lambda r: apply_cancellation(r, END, "sub_1"), START, reason="older"
        )
        assert outcome.skipped_reason == "stale"
        assert writer.store.get_by_id(account.id).subscription.status == SubscriptionStatus.ACTIVE

    def test_unchanged_write_advances_watermark(self, writer, make_account):
        account = make_account(customer_id="cus_1")
        writer.upsert_for_customer("cus_1", activate, START, reason="first")
        later = START + timedelta(hours=1)
        writer.upsert_for_customer("cus_1", activate, later, reason="repeat")
        assert writer.store.get_by_id(account.id).subscription.source_timestamp == later

    def test_untimed_write_bypasses_ordering(self, writer, make_account):
        account = make_account(customer_id="cus_1")
        writer.upsert_for_customer("cus_1", activate, START + timedelta(days=1), reason="timed")
        outcome = writer.upsert_for_account(
            account.id, lambda r: apply_cancellation(r, END, "sub_1"), None, reason="untimed"
        )
        assert outcome.applied

    def test_unknown_customer(self, writer):
        with pytest.raises(NotFoundError, match="no customer"):
            writer.upsert_for_customer("cus_missing", activate, START, reason="test")

    def test_unknown_account(self, writer):
        with pytest.raises(NotFoundError):
            writer.upsert_for_account("acct_missing", activate, START, reason="test")

    def test_rejected_transition_writes_nothing(self, writer, make_account):
        account = make_account(customer_id="cus_1")
        with pytest.raises(ValidationError):
            writer.upsert_for_customer("cus_1", lambda r: apply_cancellation(r, None), START, reason="test")
        assert writer.store.get_by_id(account.id).subscription == account.subscription

    def test_store_failure_becomes_internal_error(self, writer, make_account):
        make_account(customer_id="cus_1")
        with patch.object(writer.store, "update", side_effect=RuntimeError("disk full")):
            with pytest.raises(InternalError) as exc_info:
                writer.upsert_for_customer("cus_1", activate, START, reason="test")
        assert exc_info.value.to_response()["message"] == "An internal error occurred"

    def test_concurrent_writes_do_not_interleave(self, writer, make_account):
        account = make_account(customer_id="cus_1")

        def write(i):
            def transition(record):
                return record.model_copy(update={"product_id": f"prod_{i}"})
            writer.upsert_for_account(account.id, transition, None, reason="race")

        threads = [Thread(target=write, args=(i,)) for i in range(25)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert writer.store.get_by_id(account.id).subscription.product_id.startswith("prod_")


class TestInjectedStore:
    def test_empty_store_is_kept(self, clock):
        store = AccountStore()
        assert len(store) == 0
        assert SubscriptionWriter(account_store=store, clock=clock).store is store

    def test_container_services_share_one_store(self, container, store):
        assert container.store is store
        assert container.writer.store is store
        assert container.profiles.store is store
        assert container.handlers.store is store
        assert container.admin.store is store


class TestUpsertFromAccount:
    """Copies between accounts re-read the source before writing."""

    def test_copy_from_unchanged_source(self, writer, make_account):
        source = make_account(email="dup@example.com", customer_id="cus_1")
        writer.upsert_for_customer("cus_1", activate, START, reason="test")
        source = writer.store.get_by_id(source.id)
        target = make_account(email="dup@example.com")

        outcome = writer.upsert_from_account(
            source.id, target.id, source.subscription, copy_subscription, reason="profile_dedup"
        )

        assert outcome.applied
        assert writer.store.get_by_id(target.id).subscription.same_subscription(source.subscription)

    def test_copy_skipped_when_source_changed(self, writer, make_account):
        source = make_account(email="dup@example.com", customer_id="cus_1")
        writer.upsert_for_customer("cus_1", activate, START, reason="test")
        snapshot = writer.store.get_by_id(source.id).subscription
        target = make_account(email="dup@example.com")

        writer.upsert_for_customer(
            "cus_1", lambda record: apply_cancellation(record, END), START + timedelta(minutes=1), reason="deleted"
        )
        outcome = writer.upsert_from_account(source.id, target.id, snapshot, copy_subscription, reason="profile_dedup")

        assert not outcome.applied
        assert outcome.skipped_reason == "source_changed"
        assert writer.store.get_by_id(target.id).subscription.status == SubscriptionStatus.FREE

    def test_unknown_source(self, writer, make_account):
        target = make_account()
        with pytest.raises(NotFoundError):
            writer.upsert_from_account("acct_missing", target.id, target.subscription, copy_subscription, reason="x")


class TestLockRegistry:
    def test_same_key_same_lock_while_held(self):
        registry = _LockRegistry()
        lock = registry.get("cus_1")
        assert registry.get("cus_1") is lock
        assert len(registry) == 1

    def test_unused_locks_are_dropped(self):
        registry = _LockRegistry()
        lock = registry.get("cus_1")
        del lock
        assert len(registry) == 0

    def test_writes_do_not_accumulate_locks(self, writer, make_account):
        for n in range(5):
            make_account(customer_id=f"cus_{n}")
            writer.upsert_for_customer(f"cus_{n}", lambda record: record, None, reason="test")
        assert len(writer._customer_locks) == 0
        assert len(writer._account_locks) == 0
