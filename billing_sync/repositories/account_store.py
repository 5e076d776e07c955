"""Account store - in-memory storage for user accounts.

Each account carries its subscription record inline. Lookups return copies;
changes are persisted with update().
"""

import threading
from collections import defaultdict
from typing import Dict, List, Optional

from billing_sync.models.account import SubscriptionStatus, UserAccount


class AccountNotFoundError(Exception):
    """Raised when an account is not found in the store."""

    pass


def _newest_first(accounts: List[UserAccount]) -> List[UserAccount]:
    return sorted(accounts, key=lambda a: a.created_at, reverse=True)


class AccountStore:
    """In-memory storage for user accounts.

    Thread-safe storage with lookup by account id, auth id, email and billing
    customer reference. Emails are not unique: several accounts may share one.
    """

    def __init__(self):
        """Initialize account store with empty storage."""
        self._accounts: Dict[str, UserAccount] = {}
        self._lock = threading.RLock()

    def add(self, account: UserAccount) -> UserAccount:
        """Add an account to the store.

        Args:
            account: UserAccount to store

        Returns:
            Copy of the stored account

        Raises:
            ValueError: If the account id or auth id already exists
        """
        with self._lock:
            if account.id in self._accounts:
                raise ValueError(f"Account with id '{account.id}' already exists")
            if any(a.auth_id == account.auth_id for a in self._accounts.values()):
                raise ValueError(f"Account with auth id '{account.auth_id}' already exists")
            self._accounts[account.id] = account.model_copy(deep=True)
            return account.model_copy(deep=True)

    def get_by_id(self, account_id: str) -> UserAccount:
        """Get account by id.

        Raises:
            AccountNotFoundError: If the id is not found
        """
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(f"Account not found: {account_id}")
            return account.model_copy(deep=True)

    def find_by_id(self, account_id: str) -> Optional[UserAccount]:
        """Find account by id (returns None if not found)."""
        with self._lock:
            account = self._accounts.get(account_id)
            return account.model_copy(deep=True) if account else None

    def find_by_auth_id(self, auth_id: str) -> Optional[UserAccount]:
        """Find account by external auth provider id."""
        with self._lock:
            for account in self._accounts.values():
                if account.auth_id == auth_id:
                    return account.model_copy(deep=True)
            return None

    def find_by_email(self, email: str) -> List[UserAccount]:
        """Get all accounts with an email, newest first.

        Args:
            email: Normalised email address

        Returns:
            List of UserAccount objects (possibly empty)
        """
        with self._lock:
            matches = [a.model_copy(deep=True) for a in self._accounts.values() if a.email == email]
        return _newest_first(matches)

    def find_by_customer(self, customer_id: str) -> List[UserAccount]:
        """Get all accounts carrying a billing customer reference, newest first."""
        with self._lock:
            matches = [
                a.model_copy(deep=True)
                for a in self._accounts.values()
                if a.subscription.customer_id == customer_id
            ]
        return _newest_first(matches)

    def update(self, account: UserAccount) -> None:
        """Replace a stored account.

        Raises:
            AccountNotFoundError: If the account id is not found
        """
        with self._lock:
            if account.id not in self._accounts:
                raise AccountNotFoundError(f"Account not found: {account.id}")
            self._accounts[account.id] = account.model_copy(deep=True)

    def exists(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._accounts

    def get_all(self) -> List[UserAccount]:
        """Get all accounts in the store."""
        with self._lock:
            return [a.model_copy(deep=True) for a in self._accounts.values()]

    def duplicate_email_groups(self) -> Dict[str, List[UserAccount]]:
        """Emails shared by more than one account, each group newest first."""
        groups: Dict[str, List[UserAccount]] = defaultdict(list)
        with self._lock:
            for account in self._accounts.values():
                groups[account.email].append(account.model_copy(deep=True))
        return {email: _newest_first(group) for email, group in groups.items() if len(group) > 1}

    def count(self) -> int:
        with self._lock:
            return len(self._accounts)

    def count_by_status(self, status: SubscriptionStatus) -> int:
        with self._lock:
            return sum(1 for a in self._accounts.values() if a.subscription.status == status)

    def clear(self) -> None:
        """Clear all accounts from the store.

        Warning: This removes all data. Use with caution.
        """
        with self._lock:
            self._accounts.clear()

    def get_statistics(self) -> Dict[str, int]:
        """Get account store statistics.

        Returns:
            Dictionary with the total count, customer-linked count, duplicate
            email count and one count per subscription status
        """
        with self._lock:
            accounts = list(self._accounts.values())
            emails = [a.email for a in accounts]
            stats = {
                "total_accounts": len(accounts),
                "with_customer": sum(1 for a in accounts if a.subscription.customer_id),
                "duplicate_emails": sum(1 for e in set(emails) if emails.count(e) > 1),
            }
            for status in SubscriptionStatus:
                stats[status.value.lower()] = sum(1 for a in accounts if a.subscription.status == status)
            return stats

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, account_id: str) -> bool:
        return self.exists(account_id)

    def __repr__(self) -> str:
        return f"AccountStore(accounts={self.count()})"


# Global store instance
_store_instance: Optional[AccountStore] = None
_store_lock = threading.Lock()


def get_account_store() -> AccountStore:
    """Get global account store instance (singleton)."""
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = AccountStore()
    return _store_instance


def reset_account_store() -> None:
    """Reset global account store (clears all data)."""
    get_account_store().clear()
