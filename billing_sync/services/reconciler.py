"""On-demand reconciliation against the billing provider.

Responsibilities:
- Fetch a customer's subscriptions and pick the one that represents them
- Validate it before anything is written
- Upsert every account carrying the customer reference
- Skip the provider call for records synced within the freshness window
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from billing_sync.config import get_config
from billing_sync.errors import NotFoundError
from billing_sync.logging_config import get_logger, mask_identifier
from billing_sync.models.account import SubscriptionRecord, UserAccount
from billing_sync.models.api_response import SubscriptionSummary
from billing_sync.models.remote import RemoteSubscriptionSnapshot, SubscriptionCandidate
from billing_sync.models.settings import ReconcilerConfig
from billing_sync.services.billing_provider import BillingProviderClient, get_billing_provider
from billing_sync.services.event_handlers import apply_snapshot
from billing_sync.services.subscription_writer import SubscriptionWriter, WriteOutcome
from billing_sync.services.time_controller import TimeController, get_time_controller
from billing_sync.utils.timestamps import age_seconds, is_after

logger = get_logger(__name__)


def select_current_subscription(
    candidates: Sequence[SubscriptionCandidate], now: datetime
) -> Optional[SubscriptionCandidate]:
    """Pick the subscription that represents the customer.

    First active one; otherwise a canceled one still inside its paid period;
    otherwise the first one the provider returned.
    """
    if not candidates:
        return None
    for candidate in candidates:
        if candidate.status == "active":
            return candidate
    for candidate in candidates:
        if candidate.status == "canceled" and is_after(candidate.period_end, now):
            return candidate
    return candidates[0]


def summarize(record: SubscriptionRecord) -> SubscriptionSummary:
    """Subscription shape returned by sync and admin endpoints."""
    return SubscriptionSummary(
        id=record.subscription_id,
        status=record.status.value,
        current_period_start=record.period_start,
        current_period_end=record.period_end,
        cancel_at_period_end=record.cancel_at_period_end,
    )


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation."""

    customer_id: str
    snapshot: RemoteSubscriptionSnapshot
    outcomes: list[WriteOutcome] = field(default_factory=list)

    @property
    def accounts(self) -> list[UserAccount]:
        return [o.account for o in self.outcomes]

    @property
    def summary(self) -> SubscriptionSummary:
        # All outcomes carry the same subscription after a successful reconcile
        return summarize(self.outcomes[0].account.subscription)


class Reconciler:
    """Pulls authoritative subscription state from the billing provider.

    Args:
        writer: subscription write path
        profiles: profile resolver for opportunistic dedup
        provider: billing provider client (defaults to global instance)
        clock: time source (defaults to global time controller)
        reconciler_config: list limit and freshness window (defaults to global config)
    """

    def __init__(
        self,
        writer: SubscriptionWriter,
        profiles: Any,
        provider: Optional[BillingProviderClient] = None,
        clock: Optional[TimeController] = None,
        reconciler_config: Optional[ReconcilerConfig] = None,
    ):
        self.writer = writer
        self.profiles = profiles
        self.provider = provider or get_billing_provider()
        self.clock = clock or get_time_controller()
        self.config = reconciler_config or get_config().reconciler

    def reconcile(self, customer_id: str, sync_profiles: bool = True) -> ReconcileResult:
        """Bring every account with the customer reference in line with the provider.

        Raises:
            NotFoundError: The customer has no subscriptions, or no local account
            ValidationError: The selected subscription is malformed (nothing written)
            ProviderError: The provider call failed
        """
        raw_subscriptions = self.provider.list_subscriptions(customer_id, limit=self.config.subscription_list_limit)
        if not raw_subscriptions:
            raise NotFoundError("no subscription", customer_id=mask_identifier(customer_id))

        now = self.clock.now()
        candidates = [SubscriptionCandidate.from_provider(raw) for raw in raw_subscriptions]
        selected = select_current_subscription(candidates, now)
        snapshot = RemoteSubscriptionSnapshot.from_provider(selected.raw)

        outcomes = self.writer.upsert_for_customer(
            customer_id,
            lambda record: apply_snapshot(record, snapshot),
            now,
            reason="reconcile",
        )

        logger.info(
            "subscription_reconciled",
            customer_id=mask_identifier(customer_id),
            subscription_id=snapshot.id,
            remote_status=snapshot.status,
            candidates=len(candidates),
            accounts=len(outcomes),
            changed=sum(1 for o in outcomes if o.applied),
        )

        if sync_profiles:
            for email in sorted({o.account.email for o in outcomes}):
                self.profiles.sync_email(email)

        return ReconcileResult(customer_id=customer_id, snapshot=snapshot, outcomes=outcomes)

    def is_fresh(self, account: UserAccount) -> bool:
        """True if the record was written within the freshness window."""
        last_updated = account.subscription.last_updated
        if last_updated is None:
            return False
        return age_seconds(last_updated, self.clock.now()) < self.config.freshness_seconds

    def refresh_if_stale(self, account: UserAccount) -> UserAccount:
        """Reconcile the account's customer unless its record is fresh.

        Returns the stored account after any refresh.

        Raises:
            NotFoundError: The account has no customer reference
        """
        customer_id = account.subscription.customer_id
        if not customer_id:
            raise NotFoundError("no customer", account_id=account.id)
        if self.is_fresh(account):
            logger.debug("refresh_skipped_fresh", account_id=account.id)
            return account

        result = self.reconcile(customer_id)
        for refreshed in result.accounts:
            if refreshed.id == account.id:
                return refreshed
        return account
