"""Access evaluation for a user account.

Grace periods expire lazily: a CANCELLED record whose period end has passed
is revoked the first time access is checked. ACTIVE or TRIAL records past
their period end are refreshed from the provider when stale.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from billing_sync.errors import NotFoundError, ProviderError, ValidationError
from billing_sync.logging_config import get_logger
from billing_sync.models.account import SubscriptionStatus, UserAccount
from billing_sync.services.admin_overrides import AdminOverrides
from billing_sync.services.reconciler import Reconciler
from billing_sync.services.time_controller import TimeController, get_time_controller
from billing_sync.utils.timestamps import is_after

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    status: SubscriptionStatus
    reason: str
    period_end: Optional[datetime] = None


class AccessService:
    """Decides whether an account currently has subscription access.

    Args:
        reconciler: used to refresh stale ACTIVE/TRIAL records
        admin_overrides: used to revoke elapsed grace periods
        clock: time source (defaults to global time controller)
    """

    def __init__(
        self,
        reconciler: Reconciler,
        admin_overrides: AdminOverrides,
        clock: Optional[TimeController] = None,
    ):
        self.reconciler = reconciler
        self.admin_overrides = admin_overrides
        self.clock = clock or get_time_controller()

    def check_access(self, account: UserAccount) -> AccessDecision:
        if account.is_admin:
            return AccessDecision(True, account.subscription.status, "admin", account.subscription.period_end)
        return self._evaluate(account, allow_refresh=True)

    def _evaluate(self, account: UserAccount, allow_refresh: bool) -> AccessDecision:
        record = account.subscription
        status = record.status
        now = self.clock.now()

        if status == SubscriptionStatus.FREE:
            return AccessDecision(False, status, "no_subscription")

        if status == SubscriptionStatus.EXPIRED:
            return AccessDecision(False, status, "expired", record.period_end)

        if status == SubscriptionStatus.CANCELLED:
            if is_after(record.period_end, now):
                return AccessDecision(True, status, "grace_period", record.period_end)
            self.admin_overrides.revoke_access(account.id, reason="grace_period_elapsed")
            logger.info("grace_period_expired", account_id=account.id)
            return AccessDecision(False, SubscriptionStatus.EXPIRED, "grace_period_elapsed", record.period_end)

        if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL):
            reason = "active" if status == SubscriptionStatus.ACTIVE else "trial"
            if record.period_end is None or is_after(record.period_end, now):
                return AccessDecision(True, status, reason, record.period_end)
            if not allow_refresh or not record.customer_id:
                return AccessDecision(True, status, f"{reason}_unverified", record.period_end)
            try:
                refreshed = self.reconciler.refresh_if_stale(account)
            except (ProviderError, NotFoundError, ValidationError) as e:
                # Stored state stands when the provider cannot confirm
                logger.warning(
                    "access_refresh_failed",
                    account_id=account.id,
                    error=e.message,
                    error_type=type(e).__name__,
                )
                return AccessDecision(True, status, f"{reason}_unverified", record.period_end)
            return self._evaluate(refreshed, allow_refresh=False)

        raise ValueError(f"Unknown subscription status: {status}")
