"""Administrator overrides of subscription state.

Responsibilities:
- Grant a free subscription through the billing provider
- Cancel a user's live provider subscriptions
- Revoke access locally (also used when a grace period has elapsed)

Every action is written to the audit log and returns the subscription
summary shape used by the sync endpoint.
"""

from typing import Optional

from billing_sync.config import get_config
from billing_sync.errors import NotFoundError, ValidationError
from billing_sync.logging_config import get_logger, mask_identifier
from billing_sync.models.account import SubscriptionStatus, UserAccount
from billing_sync.models.api_response import SubscriptionSummary
from billing_sync.models.remote import CancelledSubscription
from billing_sync.models.settings import ReconcilerConfig
from billing_sync.repositories.account_store import AccountStore, get_account_store
from billing_sync.services.billing_provider import BillingProviderClient, get_billing_provider
from billing_sync.services.event_handlers import apply_cancellation, apply_expiry, attach_customer
from billing_sync.services.lookup_cache import ProviderLookupCache
from billing_sync.services.reconciler import Reconciler, summarize
from billing_sync.services.subscription_writer import SubscriptionWriter
from billing_sync.services.time_controller import TimeController, get_time_controller
from billing_sync.state_logger import log_admin_override
from billing_sync.utils.identifiers import normalize_email

logger = get_logger(__name__)

# Provider statuses an admin cancel acts on
LIVE_STATUSES = ("active", "trialing")


class AdminOverrides:
    """Admin-initiated subscription changes.

    Args:
        writer: subscription write path
        reconciler: reconciler used after a grant
        lookup_cache: cached product/price and coupon lookups
        provider: billing provider client (defaults to global instance)
        account_store: account storage (defaults to global instance)
        clock: time source (defaults to global time controller)
        reconciler_config: subscription list limit (defaults to global config)
    """

    def __init__(
        self,
        writer: SubscriptionWriter,
        reconciler: Reconciler,
        lookup_cache: ProviderLookupCache,
        provider: Optional[BillingProviderClient] = None,
        account_store: Optional[AccountStore] = None,
        clock: Optional[TimeController] = None,
        reconciler_config: Optional[ReconcilerConfig] = None,
    ):
        self.writer = writer
        self.reconciler = reconciler
        self.lookup_cache = lookup_cache
        self.provider = provider or get_billing_provider()
        self.store = account_store if account_store is not None else get_account_store()
        self.clock = clock or get_time_controller()
        self.reconciler_config = reconciler_config or get_config().reconciler

    def resolve_target(self, user_id: str) -> UserAccount:
        """Find the target account by account id, auth id or email.

        Raises:
            NotFoundError: No matching account
        """
        account = self.store.find_by_id(user_id) or self.store.find_by_auth_id(user_id)
        if account is None and "@" in user_id:
            try:
                matches = self.store.find_by_email(normalize_email(user_id))
            except ValueError:
                matches = []
            account = matches[0] if matches else None
        if account is None:
            raise NotFoundError("user not found", user_id=user_id)
        return account

    def _summary_for(self, account_id: str) -> SubscriptionSummary:
        return summarize(self.store.get_by_id(account_id).subscription)

    def grant_subscription(
        self,
        target_user_id: str,
        granted_by: str,
        reason: Optional[str] = None,
    ) -> SubscriptionSummary:
        """Create a 100%-discounted provider subscription and sync it locally.

        Raises:
            NotFoundError: Unknown user, or no active product/price
            ValidationError: The user already has an ACTIVE subscription
            ProviderError: A provider call failed
        """
        account = self.resolve_target(target_user_id)
        if account.subscription.status == SubscriptionStatus.ACTIVE:
            raise ValidationError("User already has an active subscription", account_id=account.id)

        customer_id = account.subscription.customer_id
        if not customer_id:
            customer = self.provider.create_customer(
                email=account.email,
                name=account.display_name or None,
                metadata={"account_id": account.id, "auth_id": account.auth_id, "created_by": "admin_grant"},
            )
            customer_id = customer["id"]
            self.writer.upsert_for_account(
                account.id,
                lambda record: attach_customer(record, customer_id),
                None,
                reason="admin_grant",
            )

        product_price = self.lookup_cache.get_product_price()
        coupon = self.lookup_cache.get_promo_coupon()
        subscription = self.provider.create_subscription(
            customer_id,
            product_price.price_id,
            coupon_id=coupon.get("id"),
            metadata={"admin_grant": "true", "granted_by": granted_by, "account_id": account.id},
        )

        self.reconciler.reconcile(customer_id)

        log_admin_override(
            "grant_subscription",
            target_account_id=account.id,
            performed_by=granted_by,
            reason=reason,
            customer_id=mask_identifier(customer_id),
            subscription_id=subscription.get("id"),
            product_id=product_price.product_id,
        )
        return self._summary_for(account.id)

    def cancel_subscription(
        self,
        target_user_id: str,
        performed_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> SubscriptionSummary:
        """Cancel every live provider subscription of the user.

        The local record ends up exactly as a subscription.deleted event
        would leave it: CANCELLED with the final period end as grace marker.

        Raises:
            NotFoundError: Unknown user, no customer reference, or nothing to cancel
            ProviderError: A provider call failed
        """
        account = self.resolve_target(target_user_id)
        customer_id = account.subscription.customer_id
        if not customer_id:
            raise NotFoundError("no customer", account_id=account.id)

        subscriptions = self.provider.list_subscriptions(customer_id, limit=self.reconciler_config.subscription_list_limit)
        live = [s for s in subscriptions if s.get("status") in LIVE_STATUSES]
        if not live:
            raise NotFoundError("no subscription", customer_id=mask_identifier(customer_id))

        cancelled = [CancelledSubscription.from_provider(self.provider.cancel_subscription(s["id"])) for s in live]
        current = next((c for c in cancelled if c.id == account.subscription.subscription_id), None)
        chosen = current or cancelled[0]

        self.writer.upsert_for_customer(
            customer_id,
            lambda record: apply_cancellation(record, chosen.period_end, chosen.id if current else None),
            self.clock.now(),
            reason="admin_cancel",
        )

        log_admin_override(
            "cancel_subscription",
            target_account_id=account.id,
            performed_by=performed_by,
            reason=reason,
            customer_id=mask_identifier(customer_id),
            cancelled=[c.id for c in cancelled],
        )
        return self._summary_for(account.id)

    def revoke_access(
        self,
        target_user_id: str,
        performed_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> SubscriptionSummary:
        """Set the record to EXPIRED locally, keeping its period end.

        Every account sharing the subscription is expired with it: all accounts
        carrying the customer reference, or without one, the email duplicates
        holding the same subscription.

        Does not touch the provider; a later reconcile reflects provider state again.
        """
        account = self.resolve_target(target_user_id)
        write_reason = reason or "access_revoked"
        customer_id = account.subscription.customer_id
        if customer_id:
            self.writer.upsert_for_customer(customer_id, apply_expiry, None, reason=write_reason)
        else:
            self.writer.upsert_for_account(account.id, apply_expiry, None, reason=write_reason)
            for sibling in self.store.find_by_email(account.email):
                if sibling.id != account.id and sibling.subscription.same_subscription(account.subscription):
                    self.writer.upsert_for_account(sibling.id, apply_expiry, None, reason=write_reason)

        log_admin_override(
            "revoke_access",
            target_account_id=account.id,
            performed_by=performed_by,
            reason=reason,
        )
        return self._summary_for(account.id)
