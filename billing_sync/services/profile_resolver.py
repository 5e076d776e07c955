"""Profile resolution and duplicate-profile reconciliation.

Several local accounts can share one email (one per external auth identity,
plus accounts created from billing events before the user ever logged in).
Among duplicates the ACTIVE account with the newest write is authoritative;
its subscription fields are copied onto every sibling. Accounts are never
deleted or merged.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from billing_sync.errors import ValidationError
from billing_sync.logging_config import get_logger, mask_identifier
from billing_sync.models.account import SubscriptionRecord, SubscriptionStatus, UserAccount
from billing_sync.repositories.account_store import AccountStore, get_account_store
from billing_sync.services.event_handlers import attach_customer, copy_subscription
from billing_sync.services.subscription_writer import SubscriptionWriter
from billing_sync.services.time_controller import TimeController, get_time_controller
from billing_sync.state_logger import log_profile_propagation
from billing_sync.utils.identifiers import generate_account_id, normalize_email

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

# Auth id placeholder for accounts created from billing events
BILLING_AUTH_PREFIX = "billing:"


@dataclass
class DedupOutcome:
    """Result of reconciling one email's duplicate accounts."""

    email: str
    account_count: int
    synced: bool
    source_account_id: Optional[str] = None
    updated_account_ids: list[str] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "accounts": self.account_count,
            "synced": self.synced,
            "source_account_id": self.source_account_id,
            "updated_account_ids": self.updated_account_ids,
            "reason": self.reason,
        }


@dataclass
class SweepReport:
    """Aggregate result of a full duplicate sweep."""

    results: list[DedupOutcome] = field(default_factory=list)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "duplicate_groups": len(self.results),
            "synced_groups": sum(1 for r in self.results if r.synced),
            "accounts_updated": sum(len(r.updated_account_ids) for r in self.results),
            "groups_without_active": sum(1 for r in self.results if r.reason == "no_active_account"),
        }


@dataclass
class DuplicateGroup:
    """Read-only description of accounts sharing an email."""

    email: str
    account_ids: list[str]
    statuses: dict[str, str]
    authoritative_account_id: Optional[str]
    in_sync: bool

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "account_ids": self.account_ids,
            "statuses": self.statuses,
            "authoritative_account_id": self.authoritative_account_id,
            "in_sync": self.in_sync,
        }


def select_authoritative(accounts: list[UserAccount]) -> Optional[UserAccount]:
    """ACTIVE account with the newest last_updated, or None if none is ACTIVE."""
    active = [a for a in accounts if a.subscription.status == SubscriptionStatus.ACTIVE]
    if not active:
        return None
    return max(active, key=lambda a: a.subscription.last_updated or _EPOCH)


class ProfileResolver:
    """Matches identities to accounts and keeps duplicate accounts consistent.

    Args:
        writer: subscription write path
        account_store: account storage (defaults to global instance)
        clock: time source (defaults to global time controller)
    """

    def __init__(
        self,
        writer: SubscriptionWriter,
        account_store: Optional[AccountStore] = None,
        clock: Optional[TimeController] = None,
    ):
        self.writer = writer
        self.store = account_store if account_store is not None else get_account_store()
        self.clock = clock or get_time_controller()

    def _create_account(
        self,
        email: str,
        auth_id: Optional[str] = None,
        display_name: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> UserAccount:
        now = self.clock.now()
        account_id = generate_account_id()
        account = UserAccount(
            id=account_id,
            auth_id=auth_id or f"{BILLING_AUTH_PREFIX}{account_id}",
            email=email,
            display_name=display_name or "",
            created_at=now,
            updated_at=now,
            subscription=SubscriptionRecord(customer_id=customer_id),
        )
        stored = self.store.add(account)
        logger.info(
            "account_created",
            account_id=stored.id,
            email=mask_identifier(email, keep=3),
            from_login=auth_id is not None,
            customer_id=mask_identifier(customer_id),
        )
        return stored

    def _normalize(self, email: str) -> str:
        try:
            return normalize_email(email)
        except ValueError as e:
            raise ValidationError(str(e))

    def resolve_login(self, auth_id: str, email: str, display_name: str = "") -> UserAccount:
        """Find the account for an external auth id, creating it on first login.

        Subscription state from duplicate accounts with the same email is
        reconciled before the account is returned.
        """
        if not auth_id:
            raise ValidationError("auth id is required")
        email = self._normalize(email)

        account = self.store.find_by_auth_id(auth_id)
        if account is None:
            account = self._create_account(email, auth_id=auth_id, display_name=display_name)

        self.sync_email(account.email)
        return self.store.get_by_id(account.id)

    def find_or_create_by_email(
        self,
        email: str,
        display_name: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> UserAccount:
        """Newest account with the email, or a new one.

        When a customer reference is given it is attached to the returned account.
        """
        email = self._normalize(email)
        matches = self.store.find_by_email(email)
        if not matches:
            return self._create_account(email, display_name=display_name, customer_id=customer_id)

        account = matches[0]
        if customer_id and account.subscription.customer_id != customer_id:
            outcome = self.writer.upsert_for_account(
                account.id,
                lambda record: attach_customer(record, customer_id),
                None,
                reason="customer_attached",
            )
            account = outcome.account
        return account

    def sync_email(self, email: str) -> DedupOutcome:
        """Copy the authoritative account's subscription onto its duplicates."""
        accounts = self.store.find_by_email(email)
        if len(accounts) < 2:
            return DedupOutcome(email=email, account_count=len(accounts), synced=False, reason="no_duplicates")

        source = select_authoritative(accounts)
        if source is None:
            return DedupOutcome(email=email, account_count=len(accounts), synced=False, reason="no_active_account")

        updated: list[str] = []
        for sibling in accounts:
            if sibling.id == source.id:
                continue
            outcome = self.writer.upsert_from_account(
                source.id,
                sibling.id,
                source.subscription,
                copy_subscription,
                reason="profile_dedup",
            )
            if outcome.applied:
                updated.append(sibling.id)
                log_profile_propagation(
                    email=email,
                    source_account_id=source.id,
                    target_account_id=sibling.id,
                    status=source.subscription.status.value,
                    period_end=source.subscription.period_end,
                )

        return DedupOutcome(
            email=email,
            account_count=len(accounts),
            synced=True,
            source_account_id=source.id,
            updated_account_ids=updated,
        )

    def sweep(self) -> SweepReport:
        """Reconcile every group of accounts that share an email."""
        report = SweepReport()
        for email in sorted(self.store.duplicate_email_groups()):
            report.results.append(self.sync_email(email))
        logger.info("profile_sweep_completed", **report.stats)
        return report

    def analyze(self) -> list[DuplicateGroup]:
        """Describe duplicate groups without changing anything."""
        groups = []
        for email, accounts in sorted(self.store.duplicate_email_groups().items()):
            source = select_authoritative(accounts)
            in_sync = source is None or all(a.subscription.same_subscription(source.subscription) for a in accounts)
            groups.append(
                DuplicateGroup(
                    email=email,
                    account_ids=[a.id for a in accounts],
                    statuses={a.id: a.subscription.status.value for a in accounts},
                    authoritative_account_id=source.id if source else None,
                    in_sync=in_sync,
                )
            )
        return groups
