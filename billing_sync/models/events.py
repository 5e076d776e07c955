"""Billing provider webhook event models.

Maps to the provider's event envelope: {id, type, created, data: {object}}.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from billing_sync.utils.timestamps import from_unix


class EventType(str, Enum):
    """Event kinds the reconciliation core handles."""

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    CHECKOUT_COMPLETED = "checkout.session.completed"

    @classmethod
    def parse(cls, value: str) -> Optional["EventType"]:
        """Resolve an event type string, accepting short aliases.

        Returns None for kinds this service does not handle.
        """
        try:
            return cls(value)
        except ValueError:
            pass
        return _ALIASES.get(value)


_ALIASES = {
    "subscription.created": EventType.SUBSCRIPTION_CREATED,
    "subscription.updated": EventType.SUBSCRIPTION_UPDATED,
    "subscription.deleted": EventType.SUBSCRIPTION_DELETED,
}


class EventData(BaseModel):
    """Event data wrapper."""

    object: dict[str, Any] = Field(..., description="Provider object the event describes")
    previous_attributes: Optional[dict[str, Any]] = Field(None, description="Changed attributes")


class WebhookEvent(BaseModel):
    """Signed webhook event envelope."""

    id: str = Field(..., min_length=1, description="Provider-assigned event id")
    type: str = Field(..., min_length=1, description="Event kind")
    created: Optional[int] = Field(None, description="Event creation time (Unix seconds)")
    livemode: bool = Field(default=False)
    data: EventData

    @property
    def created_at(self) -> Optional[datetime]:
        """Event creation time as UTC datetime."""
        try:
            return from_unix(self.created)
        except ValueError:
            return None

    class Config:
        json_schema_extra = {
            "example": {
                "id": "evt_1PqR",
                "type": "customer.subscription.updated",
                "created": 1754179200,
                "data": {
                    "object": {
                        "id": "sub_1",
                        "customer": "cus_1",
                        "status": "active",
                        "items": {"data": [{"price": {"id": "price_1", "product": "prod_X"}}]},
                        "current_period_start": 1754179200,
                        "current_period_end": 1756857600,
                    }
                },
            }
        }
