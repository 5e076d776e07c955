"""Read-only projections of billing provider objects.

Raw provider payloads are never threaded into business logic: they are
converted here into strictly typed snapshots, failing fast with
ValidationError when a required field is absent.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from billing_sync.errors import ValidationError
from billing_sync.utils.timestamps import from_unix


def _reference_id(value: Any) -> Optional[str]:
    """Resolve a provider reference that may be an id string or an expanded object."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, Mapping):
        ref = value.get("id")
        if isinstance(ref, str) and ref:
            return ref
    return None


def _line_items(raw: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    items = raw.get("items")
    if isinstance(items, Mapping):
        data = items.get("data")
    else:
        data = items
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, Mapping)]


def _timestamp(raw: Mapping[str, Any], key: str, subscription_id: str) -> Optional[datetime]:
    try:
        return from_unix(raw.get(key))
    except ValueError as e:
        raise ValidationError(
            f"Subscription {subscription_id} has an invalid {key}: {e}",
            subscription_id=subscription_id,
            field=key,
        )


def _period_field(
    raw: Mapping[str, Any], item: Optional[Mapping[str, Any]], key: str, subscription_id: str
) -> Optional[datetime]:
    """Read a period field from the subscription, falling back to the first line item.

    The provider populates one or the other depending on API version.
    """
    value = _timestamp(raw, key, subscription_id)
    if value is None and item is not None:
        value = _timestamp(item, key, subscription_id)
    return value


class DiscountDescriptor(BaseModel):
    """Discount applied to a subscription."""

    coupon_id: Optional[str] = Field(None, description="Coupon id")
    name: Optional[str] = Field(None, description="Coupon display name")
    percent_off: Optional[float] = Field(None, description="Percentage discount")

    @classmethod
    def from_provider(cls, raw: Mapping[str, Any]) -> "DiscountDescriptor":
        coupon = raw.get("coupon")
        if not isinstance(coupon, Mapping):
            # Newer API versions nest the coupon under source
            source = raw.get("source")
            coupon = source.get("coupon") if isinstance(source, Mapping) else None
        if isinstance(coupon, str):
            return cls(coupon_id=coupon)
        if not isinstance(coupon, Mapping):
            return cls()
        return cls(
            coupon_id=coupon.get("id"),
            name=coupon.get("name"),
            percent_off=coupon.get("percent_off"),
        )


def _discounts(raw: Mapping[str, Any]) -> list[DiscountDescriptor]:
    entries = raw.get("discounts")
    if not entries and isinstance(raw.get("discount"), Mapping):
        # Legacy single-discount format
        entries = [raw["discount"]]
    if not isinstance(entries, list):
        return []
    return [DiscountDescriptor.from_provider(entry) for entry in entries if isinstance(entry, Mapping)]


class SubscriptionCandidate(BaseModel):
    """Loose projection used only to choose among a customer's subscriptions."""

    id: str
    status: str
    period_end: Optional[datetime] = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_provider(cls, raw: Mapping[str, Any]) -> "SubscriptionCandidate":
        subscription_id = str(raw.get("id") or "")
        items = _line_items(raw)
        try:
            period_end = _period_field(raw, items[0] if items else None, "current_period_end", subscription_id)
        except ValidationError:
            period_end = None
        return cls(
            id=subscription_id,
            status=str(raw.get("status") or ""),
            period_end=period_end,
            raw=dict(raw),
        )


class RemoteSubscriptionSnapshot(BaseModel):
    """Validated, read-only projection of a provider subscription.

    Never persisted verbatim; only its validated fields are copied into the
    local SubscriptionRecord.
    """

    id: str = Field(..., description="Provider subscription id")
    customer_id: str = Field(..., description="Billing customer reference")
    status: str = Field(..., description="Provider status string (active, trialing, canceled, ...)")
    period_start: datetime = Field(..., description="Current period start (UTC)")
    period_end: datetime = Field(..., description="Current period end (UTC)")
    product_id: str = Field(..., description="Product reference from the first line item")
    price_id: Optional[str] = Field(None, description="Price reference from the first line item")
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: Optional[datetime] = Field(None)
    created: Optional[datetime] = Field(None)
    email: Optional[str] = Field(None, description="Customer email when the customer is expanded")
    discounts: list[DiscountDescriptor] = Field(default_factory=list)

    @classmethod
    def from_provider(cls, raw: Mapping[str, Any]) -> "RemoteSubscriptionSnapshot":
        """Validate a raw provider subscription.

        Requires at least one line item, a period start and end (subscription
        level or line-item level), a resolvable product reference and a
        customer reference.

        Raises:
            ValidationError: If any required field is absent or malformed
        """
        if not isinstance(raw, Mapping):
            raise ValidationError("Subscription payload is not an object")

        subscription_id = raw.get("id")
        if not isinstance(subscription_id, str) or not subscription_id:
            raise ValidationError("Subscription is missing its id")

        customer_id = _reference_id(raw.get("customer"))
        if customer_id is None:
            raise ValidationError(
                f"Subscription {subscription_id} is missing its customer reference",
                subscription_id=subscription_id,
            )

        status = raw.get("status")
        if not isinstance(status, str) or not status:
            raise ValidationError(
                f"Subscription {subscription_id} is missing its status",
                subscription_id=subscription_id,
            )

        items = _line_items(raw)
        if not items:
            raise ValidationError(
                f"Subscription {subscription_id} has no items",
                subscription_id=subscription_id,
            )
        item = items[0]

        period_start = _period_field(raw, item, "current_period_start", subscription_id)
        period_end = _period_field(raw, item, "current_period_end", subscription_id)
        if period_start is None or period_end is None:
            raise ValidationError(
                f"Subscription {subscription_id} is missing period information",
                subscription_id=subscription_id,
            )
        if period_end < period_start:
            raise ValidationError(
                f"Subscription {subscription_id} ends before it starts",
                subscription_id=subscription_id,
            )

        price = item.get("price") if isinstance(item.get("price"), Mapping) else item.get("plan")
        product_id = _reference_id(price.get("product")) if isinstance(price, Mapping) else None
        if product_id is None:
            raise ValidationError(
                f"Subscription {subscription_id} is missing product information",
                subscription_id=subscription_id,
            )

        customer = raw.get("customer")
        email = customer.get("email") if isinstance(customer, Mapping) else None

        return cls(
            id=subscription_id,
            customer_id=customer_id,
            status=status,
            period_start=period_start,
            period_end=period_end,
            product_id=product_id,
            price_id=_reference_id(price) if isinstance(price, Mapping) else None,
            cancel_at_period_end=bool(raw.get("cancel_at_period_end", False)),
            canceled_at=_timestamp(raw, "canceled_at", subscription_id),
            created=_timestamp(raw, "created", subscription_id),
            email=email,
            discounts=_discounts(raw),
        )


class CancelledSubscription(BaseModel):
    """Projection of a cancelled subscription.

    Cancellation payloads only need the customer reference; the final period
    end is optional because the stored one can serve as the grace marker.
    """

    id: str
    customer_id: str
    period_end: Optional[datetime] = None

    @classmethod
    def from_provider(cls, raw: Mapping[str, Any]) -> "CancelledSubscription":
        if not isinstance(raw, Mapping):
            raise ValidationError("Subscription payload is not an object")
        subscription_id = str(raw.get("id") or "")
        customer_id = _reference_id(raw.get("customer"))
        if customer_id is None:
            raise ValidationError(
                f"Cancelled subscription {subscription_id} is missing its customer reference",
                subscription_id=subscription_id,
            )
        items = _line_items(raw)
        period_end = _period_field(raw, items[0] if items else None, "current_period_end", subscription_id)
        return cls(id=subscription_id, customer_id=customer_id, period_end=period_end)


class CheckoutSession(BaseModel):
    """Projection of a completed checkout session."""

    id: str
    customer_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_provider(cls, raw: Mapping[str, Any]) -> "CheckoutSession":
        if not isinstance(raw, Mapping) or not raw.get("id"):
            raise ValidationError("Checkout session is missing its id")

        details = raw.get("customer_details")
        details = details if isinstance(details, Mapping) else {}
        metadata = raw.get("metadata")
        metadata = metadata if isinstance(metadata, Mapping) else {}

        email = details.get("email") or raw.get("customer_email") or metadata.get("email")
        return cls(
            id=str(raw["id"]),
            customer_id=_reference_id(raw.get("customer")),
            email=email or None,
            name=details.get("name") or None,
        )


class ProductPrice(BaseModel):
    """Active product/price pair used for admin-granted subscriptions."""

    product_id: str
    price_id: str
    product_name: Optional[str] = None
    amount: int = 0
    currency: str = "usd"
    interval: str = "month"
