"""Tests for AccountStore - in-memory account storage."""

from threading import Thread

import pytest

from billing_sync.models.account import SubscriptionStatus
from billing_sync.repositories.account_store import (
    AccountNotFoundError,
    AccountStore,
    get_account_store,
    reset_account_store,
)


class TestAccountStoreBasics:
    """Test basic store functionality."""

    def test_store_initializes_empty(self):
        store = AccountStore()
        assert store.count() == 0
        assert store.get_all() == []

    def test_add_and_get(self, store, make_account):
        account = make_account()
        assert store.get_by_id(account.id).email == "trader@example.com"
        assert account.id in store

    def test_duplicate_id_rejected(self, store, make_account):
        account = make_account()
        with pytest.raises(ValueError):
            store.add(account)

    def test_duplicate_auth_id_rejected(self, make_account):
        make_account(auth_id="user_same")
        with pytest.raises(ValueError):
            make_account(auth_id="user_same")

    def test_get_unknown_raises(self, store):
        with pytest.raises(AccountNotFoundError):
            store.get_by_id("acct_missing")
        assert store.find_by_id("acct_missing") is None

    def test_lookups_return_copies(self, store, make_account):
        account = make_account()
        loaded = store.get_by_id(account.id)
        loaded.subscription.status = SubscriptionStatus.ACTIVE
        assert store.get_by_id(account.id).subscription.status == SubscriptionStatus.FREE

    def test_update_persists(self, store, make_account):
        account = make_account()
        account.display_name = "Renamed"
        store.update(account)
        assert store.get_by_id(account.id).display_name == "Renamed"

    def test_update_unknown_raises(self, store, make_account):
        account = make_account()
        store.clear()
        with pytest.raises(AccountNotFoundError):
            store.update(account)


class TestAccountStoreQueries:
    """Test lookups by identity attributes."""

    def test_find_by_auth_id(self, store, make_account):
        account = make_account(auth_id="user_abc")
        assert store.find_by_auth_id("user_abc").id == account.id
        assert store.find_by_auth_id("user_zzz") is None

    def test_find_by_email_newest_first(self, store, make_account):
        older = make_account(email="dup@example.com")
        newer = make_account(email="dup@example.com")
        make_account(email="other@example.com")
        assert [a.id for a in store.find_by_email("dup@example.com")] == [newer.id, older.id]

    def test_find_by_customer(self, store, make_account):
        first = make_account(customer_id="cus_1")
        second = make_account(email="b@example.com", customer_id="cus_1")
        make_account(email="c@example.com", customer_id="cus_2")
        assert {a.id for a in store.find_by_customer("cus_1")} == {first.id, second.id}
        assert store.find_by_customer("cus_missing") == []

    def test_duplicate_email_groups(self, store, make_account):
        make_account(email="dup@example.com")
        make_account(email="dup@example.com")
        make_account(email="single@example.com")
        groups = store.duplicate_email_groups()
        assert list(groups) == ["dup@example.com"]
        assert len(groups["dup@example.com"]) == 2

    def test_statistics(self, store, make_account):
        make_account(email="dup@example.com", customer_id="cus_1", status=SubscriptionStatus.ACTIVE)
        make_account(email="dup@example.com")
        stats = store.get_statistics()
        assert stats["total_accounts"] == 2
        assert stats["with_customer"] == 1
        assert stats["duplicate_emails"] == 1
        assert stats["active"] == 1
        assert stats["free"] == 1
        assert store.count_by_status(SubscriptionStatus.ACTIVE) == 1


class TestAccountStoreConcurrency:
    """Test thread-safe access."""

    def test_concurrent_updates(self, store, make_account):
        account = make_account()

        def rename(i):
            loaded = store.get_by_id(account.id)
            loaded.display_name = f"name-{i}"
            store.update(loaded)

        threads = [Thread(target=rename, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get_by_id(account.id).display_name.startswith("name-")
        assert store.count() == 1


class TestGlobalStore:
    """Test singleton accessors."""

    def test_singleton(self):
        assert get_account_store() is get_account_store()

    def test_reset_clears(self, clock):
        from billing_sync.models.account import UserAccount

        store = get_account_store()
        store.add(
            UserAccount(id="acct_global", auth_id="user_global", email="g@example.com",
                        created_at=clock.now(), updated_at=clock.now())
        )
        reset_account_store()
        assert get_account_store().count() == 0
