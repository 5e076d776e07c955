"""Subscription state transitions and per-event handlers.

The transition functions are pure: (record, provider data) -> new record.
Each is idempotent, so re-applying the same event leaves the record as it
was after the first application. The EventHandlers class validates provider
payloads, picks the target accounts and hands transitions to the writer.
"""

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from billing_sync.errors import ValidationError
from billing_sync.logging_config import get_logger, mask_identifier
from billing_sync.models.account import SubscriptionRecord, SubscriptionStatus
from billing_sync.models.events import EventType
from billing_sync.models.remote import CancelledSubscription, CheckoutSession, RemoteSubscriptionSnapshot
from billing_sync.repositories.account_store import AccountStore, get_account_store
from billing_sync.services.billing_provider import BillingProviderClient, get_billing_provider
from billing_sync.services.subscription_writer import SubscriptionWriter, WriteOutcome

logger = get_logger(__name__)

# Provider statuses that end access immediately
_EXPIRED_STATUSES = frozenset({"past_due", "unpaid", "incomplete_expired"})


def map_remote_status(remote_status: str) -> SubscriptionStatus:
    """Map a provider subscription status onto the local status set."""
    if remote_status == "active":
        return SubscriptionStatus.ACTIVE
    if remote_status == "trialing":
        return SubscriptionStatus.TRIAL
    if remote_status == "canceled":
        return SubscriptionStatus.CANCELLED
    if remote_status in _EXPIRED_STATUSES:
        return SubscriptionStatus.EXPIRED
    return SubscriptionStatus.FREE


def _with(record: SubscriptionRecord, **updates: Any) -> SubscriptionRecord:
    """Copy a record with updates, re-running model validation."""
    try:
        return SubscriptionRecord.model_validate({**record.model_dump(), **updates})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid subscription state: {e.errors()[0]['msg']}")


def apply_snapshot(record: SubscriptionRecord, snapshot: RemoteSubscriptionSnapshot) -> SubscriptionRecord:
    """Overwrite the record with a validated provider subscription."""
    return _with(
        record,
        status=map_remote_status(snapshot.status),
        customer_id=snapshot.customer_id,
        product_id=snapshot.product_id,
        subscription_id=snapshot.id,
        period_start=snapshot.period_start,
        period_end=snapshot.period_end,
        cancel_at_period_end=snapshot.cancel_at_period_end,
    )


def apply_cancellation(
    record: SubscriptionRecord,
    period_end: Optional[datetime],
    subscription_id: Optional[str] = None,
) -> SubscriptionRecord:
    """Mark the record CANCELLED, keeping the final period end as the grace marker.

    A cancellation naming a different subscription than the one the record
    currently tracks leaves a live record untouched.

    Raises:
        ValidationError: Neither the payload nor the record has a period end
    """
    if (
        subscription_id
        and record.subscription_id
        and subscription_id != record.subscription_id
        and record.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)
    ):
        return record

    final_period_end = period_end or record.period_end
    if final_period_end is None:
        raise ValidationError(
            "Cancelled subscription has no period end",
            subscription_id=subscription_id,
        )
    updates: dict[str, Any] = {
        "status": SubscriptionStatus.CANCELLED,
        "period_end": final_period_end,
        "cancel_at_period_end": False,
    }
    if record.period_start and record.period_start > final_period_end:
        updates["period_start"] = None
    if subscription_id:
        updates["subscription_id"] = subscription_id
    return _with(record, **updates)


def apply_expiry(record: SubscriptionRecord) -> SubscriptionRecord:
    """Revoke access; the period end is kept for the record."""
    return _with(record, status=SubscriptionStatus.EXPIRED)


def attach_customer(record: SubscriptionRecord, customer_id: str) -> SubscriptionRecord:
    return _with(record, customer_id=customer_id)


def copy_subscription(record: SubscriptionRecord, source: SubscriptionRecord) -> SubscriptionRecord:
    """Take every subscription field from an authoritative record."""
    return _with(record, **source.subscription_fields())


class EventHandlers:
    """Applies billing provider events to local accounts.

    Args:
        writer: subscription write path
        profiles: profile resolver used to match or create accounts by email
        reconciler: reconciler invoked after checkout completion
        provider: billing provider client (defaults to global instance)
        account_store: account storage (defaults to global instance)
    """

    def __init__(
        self,
        writer: SubscriptionWriter,
        profiles: Any,
        reconciler: Any,
        provider: Optional[BillingProviderClient] = None,
        account_store: Optional[AccountStore] = None,
    ):
        self.writer = writer
        self.profiles = profiles
        self.reconciler = reconciler
        self.provider = provider or get_billing_provider()
        self.store = account_store if account_store is not None else get_account_store()
        self._handlers: dict[EventType, Callable[[Mapping[str, Any], Optional[datetime]], list[WriteOutcome]]] = {
            EventType.SUBSCRIPTION_CREATED: self.on_subscription_created,
            EventType.SUBSCRIPTION_UPDATED: self.on_subscription_updated,
            EventType.SUBSCRIPTION_DELETED: self.on_subscription_deleted,
            EventType.CHECKOUT_COMPLETED: self.on_checkout_completed,
        }

    def dispatch(
        self, event_type: EventType, payload: Mapping[str, Any], as_of: Optional[datetime]
    ) -> list[WriteOutcome]:
        """Run the handler for an event type and dedup the affected emails."""
        outcomes = self._handlers[event_type](payload, as_of)
        self._sync_affected(outcomes)
        return outcomes

    def _sync_affected(self, outcomes: list[WriteOutcome]) -> None:
        emails = {o.account.email for o in outcomes if o.applied}
        for email in sorted(emails):
            self.profiles.sync_email(email)

    def on_subscription_created(
        self, payload: Mapping[str, Any], as_of: Optional[datetime]
    ) -> list[WriteOutcome]:
        snapshot = RemoteSubscriptionSnapshot.from_provider(payload)

        def transition(record: SubscriptionRecord) -> SubscriptionRecord:
            return apply_snapshot(record, snapshot)

        if self.store.find_by_customer(snapshot.customer_id):
            return self.writer.upsert_for_customer(
                snapshot.customer_id, transition, as_of, reason="subscription_created"
            )

        email, name = snapshot.email, None
        if not email:
            customer = self.provider.retrieve_customer(snapshot.customer_id)
            email, name = customer.get("email"), customer.get("name")
        if not email:
            raise ValidationError(
                f"Customer for subscription {snapshot.id} has no email",
                customer_id=mask_identifier(snapshot.customer_id),
            )

        account = self.profiles.find_or_create_by_email(email, display_name=name)
        logger.info(
            "customer_attached",
            account_id=account.id,
            customer_id=mask_identifier(snapshot.customer_id),
            subscription_id=snapshot.id,
        )
        return [self.writer.upsert_for_account(account.id, transition, as_of, reason="subscription_created")]

    def on_subscription_updated(
        self, payload: Mapping[str, Any], as_of: Optional[datetime]
    ) -> list[WriteOutcome]:
        snapshot = RemoteSubscriptionSnapshot.from_provider(payload)
        return self.writer.upsert_for_customer(
            snapshot.customer_id,
            lambda record: apply_snapshot(record, snapshot),
            as_of,
            reason="subscription_updated",
        )

    def on_subscription_deleted(
        self, payload: Mapping[str, Any], as_of: Optional[datetime]
    ) -> list[WriteOutcome]:
        cancelled = CancelledSubscription.from_provider(payload)
        return self.writer.upsert_for_customer(
            cancelled.customer_id,
            lambda record: apply_cancellation(record, cancelled.period_end, cancelled.id or None),
            as_of,
            reason="subscription_deleted",
        )

    def on_checkout_completed(
        self, payload: Mapping[str, Any], as_of: Optional[datetime]
    ) -> list[WriteOutcome]:
        session = CheckoutSession.from_provider(payload)
        if not session.email:
            raise ValidationError(f"Checkout session {session.id} has no customer email", session_id=session.id)

        account = self.profiles.find_or_create_by_email(
            session.email, display_name=session.name, customer_id=session.customer_id
        )
        if not session.customer_id:
            logger.info("checkout_without_customer", session_id=session.id, account_id=account.id)
            return []

        result = self.reconciler.reconcile(session.customer_id, sync_profiles=False)
        return result.outcomes
