"""User account and inline subscription record models.

Includes the closed subscription status enumeration and the access record
that reconciliation keeps in line with the billing provider.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

# Fields copied between duplicate accounts and compared for idempotent writes
SUBSCRIPTION_FIELDS = (
    "status",
    "customer_id",
    "product_id",
    "subscription_id",
    "period_start",
    "period_end",
    "cancel_at_period_end",
)


class SubscriptionStatus(str, Enum):
    """Local subscription status."""

    FREE = "FREE"  # Never subscribed, or no provider state yet
    TRIAL = "TRIAL"  # Provider reports a trialing subscription
    ACTIVE = "ACTIVE"  # Paid and current
    CANCELLED = "CANCELLED"  # Cancelled, period end is the grace marker
    EXPIRED = "EXPIRED"  # Access revoked (grace elapsed, unpaid, or admin revoke)


class SubscriptionRecord(BaseModel):
    """Subscription fields stored inline on a user account."""

    status: SubscriptionStatus = Field(default=SubscriptionStatus.FREE, description="Local status")
    customer_id: Optional[str] = Field(None, description="Billing customer reference (e.g. cus_123)")
    product_id: Optional[str] = Field(None, description="Billing product reference (e.g. prod_123)")
    subscription_id: Optional[str] = Field(None, description="Provider subscription id (e.g. sub_123)")
    period_start: Optional[datetime] = Field(None, description="Current period start (UTC)")
    period_end: Optional[datetime] = Field(None, description="Current period end (UTC)")
    cancel_at_period_end: bool = Field(default=False, description="Subscription will not renew")
    last_updated: Optional[datetime] = Field(None, description="When the last effective write happened")
    source_timestamp: Optional[datetime] = Field(
        None, description="Provider time of the state this record reflects (ordering watermark)"
    )

    @model_validator(mode="after")
    def _check_period(self) -> "SubscriptionRecord":
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self

    def subscription_fields(self) -> dict[str, Any]:
        """Fields that describe the subscription itself (no bookkeeping stamps)."""
        return {name: getattr(self, name) for name in SUBSCRIPTION_FIELDS}

    def same_subscription(self, other: "SubscriptionRecord") -> bool:
        """True if both records describe the same subscription state."""
        return self.subscription_fields() == other.subscription_fields()

    class Config:
        json_schema_extra = {
            "example": {
                "status": "ACTIVE",
                "customer_id": "cus_1",
                "product_id": "prod_X",
                "subscription_id": "sub_1",
                "period_start": "2025-08-01T00:00:00Z",
                "period_end": "2025-09-01T00:00:00Z",
                "cancel_at_period_end": False,
            }
        }


class UserAccount(BaseModel):
    """Local user identity with its subscription record."""

    id: str = Field(..., description="Internal account id")
    auth_id: str = Field(..., description="External auth provider id")
    email: str = Field(..., description="Email address (not unique across accounts)")
    display_name: str = Field(default="", description="Display name")
    is_admin: bool = Field(default=False, description="Administrator flag")
    created_at: datetime = Field(..., description="Creation time (UTC)")
    updated_at: datetime = Field(..., description="Last modification time (UTC)")
    subscription: SubscriptionRecord = Field(default_factory=SubscriptionRecord)

    def set_subscription(self, record: SubscriptionRecord, at: datetime, reason: Optional[str] = None) -> None:
        """Replace the subscription record and log status/period transitions.

        Args:
            record: New subscription record
            at: Time of the write
            reason: Why the record changed
        """
        from billing_sync.state_logger import log_period_change, log_status_change

        old = self.subscription
        if old.status != record.status:
            log_status_change(
                account_id=self.id,
                customer_id=record.customer_id,
                old_status=old.status.value,
                new_status=record.status.value,
                reason=reason,
            )
        if old.period_end != record.period_end or old.period_start != record.period_start:
            log_period_change(
                account_id=self.id,
                customer_id=record.customer_id,
                old_period_end=old.period_end,
                new_period_end=record.period_end,
                reason=reason,
            )
        self.subscription = record
        self.updated_at = at

    class Config:
        json_schema_extra = {
            "example": {
                "id": "acct_3f1c9a0b2d4e5f60",
                "auth_id": "user_2abc",
                "email": "trader@example.com",
                "display_name": "Trader",
                "is_admin": False,
                "created_at": "2025-07-28T23:24:09Z",
                "updated_at": "2025-07-28T23:24:09Z",
                "subscription": {"status": "FREE"},
            }
        }
