"""Shared fixtures: frozen clock, in-memory billing provider and webhook signing."""

import copy
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from billing_sync.api.dependencies import build_container
from billing_sync.errors import NotFoundError
from billing_sync.models.account import SubscriptionRecord, UserAccount
from billing_sync.models.settings import ProviderConfig
from billing_sync.repositories.account_store import AccountStore
from billing_sync.services.billing_provider import BillingProviderClient
from billing_sync.services.time_controller import TimeController
from billing_sync.utils.timestamps import to_unix

WEBHOOK_SECRET = "whsec_test_secret"
START = datetime(2025, 8, 1, 12, 0, tzinfo=timezone.utc)


class FakeBillingProvider(BillingProviderClient):
    """In-memory stand-in for the Stripe-backed client.

    Signature verification is inherited unchanged; every network call is
    served from local dictionaries and counted.
    """

    def __init__(self, clock: TimeController):
        self.config = ProviderConfig(
            api_key="sk_test_fake",
            webhook_secret=WEBHOOK_SECRET,
            timeout_seconds=5,
            signature_tolerance_seconds=300,
        )
        self.clock = clock
        self.subscriptions: dict[str, list[dict[str, Any]]] = {}
        self.customers: dict[str, dict[str, Any]] = {}
        self.products: list[dict[str, Any]] = [{"id": "prod_X", "name": "Premium", "active": True}]
        self.prices: dict[str, list[dict[str, Any]]] = {
            "prod_X": [
                {"id": "price_X", "product": "prod_X", "unit_amount": 14900, "currency": "usd",
                 "recurring": {"interval": "month"}}
            ]
        }
        self.coupons: dict[str, dict[str, Any]] = {}
        self.calls: dict[str, int] = {}
        self.fail_with: Optional[Exception] = None
        self._next_id = 1

    def _record(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.fail_with is not None:
            raise self.fail_with

    def _new_id(self, prefix: str) -> str:
        value = f"{prefix}_fake{self._next_id}"
        self._next_id += 1
        return value

    def add_subscription(self, customer_id: str, subscription: dict[str, Any]) -> None:
        self.subscriptions.setdefault(customer_id, []).append(subscription)

    def list_subscriptions(self, customer_id: str, limit: int) -> list[dict[str, Any]]:
        self._record("list_subscriptions")
        return copy.deepcopy(self.subscriptions.get(customer_id, [])[:limit])

    def create_subscription(self, customer_id, price_id, coupon_id=None, metadata=None):
        self._record("create_subscription")
        product_id = next(p["product"] for prices in self.prices.values() for p in prices if p["id"] == price_id)
        now = self.clock.now()
        subscription = build_subscription(
            self._new_id("sub"), customer_id, "active", now, now + timedelta(days=30), product_id=product_id
        )
        subscription["metadata"] = metadata or {}
        if coupon_id:
            subscription["discounts"] = [{"coupon": self.coupons.get(coupon_id, {"id": coupon_id})}]
        self.subscriptions.setdefault(customer_id, []).insert(0, subscription)
        return copy.deepcopy(subscription)

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        self._record("cancel_subscription")
        for subscriptions in self.subscriptions.values():
            for subscription in subscriptions:
                if subscription["id"] == subscription_id:
                    subscription["status"] = "canceled"
                    subscription["canceled_at"] = to_unix(self.clock.now())
                    return copy.deepcopy(subscription)
        raise NotFoundError("cancel_subscription: resource not found")

    def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        self._record("retrieve_customer")
        if customer_id not in self.customers:
            raise NotFoundError("retrieve_customer: resource not found")
        return dict(self.customers[customer_id])

    def create_customer(self, email, name=None, metadata=None):
        self._record("create_customer")
        customer = {"id": self._new_id("cus"), "email": email, "name": name, "metadata": metadata or {}}
        self.customers[customer["id"]] = customer
        return dict(customer)

    def list_active_products(self, limit: int = 10):
        self._record("list_products")
        return [p for p in self.products if p.get("active")][:limit]

    def list_active_prices(self, product_id: str, limit: int = 10):
        self._record("list_prices")
        return self.prices.get(product_id, [])[:limit]

    def retrieve_coupon(self, coupon_id: str):
        self._record("retrieve_coupon")
        coupon = self.coupons.get(coupon_id)
        return dict(coupon) if coupon else None

    def create_coupon(self, coupon_id, name, percent_off=100, duration="forever"):
        self._record("create_coupon")
        coupon = {"id": coupon_id, "name": name, "percent_off": percent_off, "duration": duration, "valid": True}
        self.coupons[coupon_id] = coupon
        return dict(coupon)


def build_subscription(
    subscription_id: str,
    customer_id: str,
    status: str,
    period_start: Optional[datetime],
    period_end: Optional[datetime],
    product_id: str = "prod_X",
    item_level_periods: bool = False,
    cancel_at_period_end: bool = False,
) -> dict[str, Any]:
    """Stripe-shaped subscription payload."""
    item: dict[str, Any] = {"id": f"si_{subscription_id}", "price": {"id": "price_X", "product": product_id}}
    subscription: dict[str, Any] = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "items": {"object": "list", "data": [item]},
    }
    periods = {"current_period_start": to_unix(period_start), "current_period_end": to_unix(period_end)}
    if item_level_periods:
        item.update(periods)
    else:
        subscription.update(periods)
    return subscription


def build_event(event_id: str, event_type: str, obj: dict[str, Any], created: datetime) -> bytes:
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "created": to_unix(created), "data": {"object": obj}}
    ).encode("utf-8")


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header for a payload (t=...,v1=...)."""
    timestamp = timestamp if timestamp is not None else int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def clock():
    return TimeController(start=START)


@pytest.fixture
def store():
    store = AccountStore()
    yield store
    store.clear()


@pytest.fixture
def provider(clock):
    return FakeBillingProvider(clock)


@pytest.fixture
def container(store, clock, provider):
    """All services wired around the test store, clock and fake provider."""
    return build_container(store=store, clock=clock, provider=provider)


@pytest.fixture
def subscription_factory():
    return build_subscription


@pytest.fixture
def event_factory():
    return build_event


@pytest.fixture
def signer():
    return sign


@pytest.fixture
def make_account(store, clock):
    """Create and store an account; returns the stored copy."""
    counter = {"n": 0}

    def _make(
        email: str = "trader@example.com",
        customer_id: Optional[str] = None,
        auth_id: Optional[str] = None,
        is_admin: bool = False,
        created_at: Optional[datetime] = None,
        **subscription_fields: Any,
    ) -> UserAccount:
        counter["n"] += 1
        n = counter["n"]
        account = UserAccount(
            id=f"acct_{n:016x}",
            auth_id=auth_id or f"user_{n}",
            email=email,
            is_admin=is_admin,
            created_at=created_at or clock.now() + timedelta(seconds=n),
            updated_at=clock.now(),
            subscription=SubscriptionRecord(customer_id=customer_id, **subscription_fields),
        )
        return store.add(account)

    return _make
