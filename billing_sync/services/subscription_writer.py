"""The single write path for subscription records.

Responsibilities:
- Serialise writes per billing customer reference and per account
- Skip writes older than the record's ordering watermark
- Leave records untouched when a transition changes nothing
- Wrap local store failures into InternalError
"""

import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from billing_sync.errors import InternalError, NotFoundError
from billing_sync.logging_config import get_logger, mask_identifier
from billing_sync.models.account import SubscriptionRecord, UserAccount
from billing_sync.repositories.account_store import AccountStore, get_account_store
from billing_sync.services.time_controller import TimeController, get_time_controller
from billing_sync.state_logger import log_write_skipped

logger = get_logger(__name__)

Transition = Callable[[SubscriptionRecord], SubscriptionRecord]


@dataclass(frozen=True)
class WriteOutcome:
    """Result of one upsert against one account."""

    account: UserAccount
    applied: bool
    skipped_reason: Optional[str] = None


class _LockRegistry:
    """Re-entrant lock per key, kept only while some caller holds a reference."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


def _latest(*values: Optional[datetime]) -> Optional[datetime]:
    present = [v for v in values if v is not None]
    return max(present) if present else None


class SubscriptionWriter:
    """Applies subscription transitions to stored accounts.

    Lock order is always customer lock, then account lock.

    Args:
        account_store: account storage (defaults to global instance)
        clock: time source (defaults to global time controller)
    """

    def __init__(
        self,
        account_store: Optional[AccountStore] = None,
        clock: Optional[TimeController] = None,
    ):
        self.store = account_store if account_store is not None else get_account_store()
        self.clock = clock or get_time_controller()
        self._customer_locks = _LockRegistry()
        self._account_locks = _LockRegistry()

    def upsert_for_customer(
        self,
        customer_id: str,
        transition: Transition,
        as_of: Optional[datetime],
        reason: str,
    ) -> list[WriteOutcome]:
        """Apply a transition to every account carrying a customer reference.

        Args:
            customer_id: Billing customer reference
            transition: Pure function producing the new record from the current one
            as_of: Provider time of the state being written; None skips the ordering check
            reason: Why the write happens (for state logs)

        Raises:
            NotFoundError: No account carries the customer reference
            ValidationError: The transition rejected the data (nothing written)
            InternalError: The store failed
        """
        with self._customer_locks.get(customer_id):
            accounts = self.store.find_by_customer(customer_id)
            if not accounts:
                raise NotFoundError("no customer", customer_id=mask_identifier(customer_id))
            return [self._apply(account.id, transition, as_of, reason) for account in accounts]

    def upsert_for_account(
        self,
        account_id: str,
        transition: Transition,
        as_of: Optional[datetime],
        reason: str,
    ) -> WriteOutcome:
        """Apply a transition to one account.

        Raises:
            NotFoundError: Account does not exist
            ValidationError: The transition rejected the data (nothing written)
            InternalError: The store failed
        """
        return self._apply(account_id, transition, as_of, reason)

    def upsert_from_account(
        self,
        source_account_id: str,
        target_account_id: str,
        expected: SubscriptionRecord,
        transition: Callable[[SubscriptionRecord, SubscriptionRecord], SubscriptionRecord],
        reason: str,
    ) -> WriteOutcome:
        """Apply a transition built from another account's current record.

        The source is re-read under its customer lock (its account key when it
        has no customer reference). If it no longer matches ``expected`` the
        target is left untouched with skipped_reason "source_changed".

        Raises:
            NotFoundError: Source or target account does not exist
            InternalError: The store failed
        """
        source = self.store.find_by_id(source_account_id)
        if source is None:
            raise NotFoundError(f"Account not found: {source_account_id}", account_id=source_account_id)
        customer_id = source.subscription.customer_id
        lock_key = customer_id or f"account:{source_account_id}"

        with self._customer_locks.get(lock_key):
            fresh = self.store.find_by_id(source_account_id)
            current = fresh.subscription if fresh is not None else None
            if current is None or not current.same_subscription(expected):
                target = self.store.find_by_id(target_account_id)
                if target is None:
                    raise NotFoundError(f"Account not found: {target_account_id}", account_id=target_account_id)
                log_write_skipped(target.id, target.subscription.customer_id, "source_changed")
                return WriteOutcome(account=target, applied=False, skipped_reason="source_changed")
            return self._apply(target_account_id, lambda record: transition(record, current), None, reason)

    def _apply(
        self,
        account_id: str,
        transition: Transition,
        as_of: Optional[datetime],
        reason: str,
    ) -> WriteOutcome:
        with self._account_locks.get(account_id):
            account = self.store.find_by_id(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}", account_id=account_id)

            current = account.subscription
            watermark = current.source_timestamp
            if as_of is not None and watermark is not None and as_of < watermark:
                log_write_skipped(account.id, current.customer_id, "stale", as_of=as_of, watermark=watermark)
                return WriteOutcome(account=account, applied=False, skipped_reason="stale")

            updated = transition(current)
            new_watermark = _latest(watermark, as_of, updated.source_timestamp)
            if updated.same_subscription(current):
                log_write_skipped(account.id, current.customer_id, "unchanged", as_of=as_of, watermark=watermark)
                if new_watermark != watermark:
                    # Only the watermark moves; last_updated stays put
                    account.subscription = current.model_copy(update={"source_timestamp": new_watermark})
                    self._store(account, reason)
                return WriteOutcome(account=account, applied=False, skipped_reason="unchanged")

            now = self.clock.now()
            record = updated.model_copy(update={"last_updated": now, "source_timestamp": new_watermark})
            account.set_subscription(record, at=now, reason=reason)
            self._store(account, reason)
            return WriteOutcome(account=account, applied=True)

    def _store(self, account: UserAccount, reason: str) -> None:
        try:
            self.store.update(account)
        except Exception as e:
            logger.error(
                "subscription_write_failed",
                account_id=account.id,
                customer_id=mask_identifier(account.subscription.customer_id),
                reason=reason,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise InternalError(
                f"Failed to store subscription for account {account.id}",
                account_id=account.id,
            ) from e
