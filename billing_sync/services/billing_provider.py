"""Billing provider client - the only module that talks to Stripe.

Responsibilities:
- Verify webhook signatures and parse the event envelope
- List and cancel subscriptions, retrieve and create customers
- Look up products, prices and coupons for admin grants
- Convert SDK failures into the service error taxonomy

Every call goes through an HTTP client with the configured timeout and no
SDK-level retries; the provider's own redelivery and the caller's retry are
the only retry mechanisms.
"""

import json
import threading
from collections.abc import Callable, Mapping
from typing import Any, Optional, TypeVar

import stripe
from pydantic import ValidationError as PydanticValidationError

from billing_sync.config import get_config
from billing_sync.errors import AuthenticityError, InternalError, NotFoundError, ProviderError
from billing_sync.logging_config import get_logger, mask_identifier
from billing_sync.models.events import WebhookEvent
from billing_sync.models.settings import ProviderConfig

logger = get_logger(__name__)

T = TypeVar("T")


def to_plain(value: Any) -> Any:
    """Recursively convert SDK objects into plain dicts and lists."""
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_plain(to_dict())
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


class BillingProviderClient:
    """Thin wrapper around the Stripe SDK.

    Args:
        provider_config: credentials and timeouts (defaults to global config)
    """

    def __init__(self, provider_config: Optional[ProviderConfig] = None):
        self.config = provider_config or get_config().provider
        stripe.api_key = self.config.api_key
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=self.config.timeout_seconds)

        logger.info(
            "billing_provider_initialized",
            api_key_configured=bool(self.config.api_key),
            webhook_secret_configured=bool(self.config.webhook_secret),
            timeout_seconds=self.config.timeout_seconds,
        )

    def _call(self, operation: str, fn: Callable[[], T], **context: Any) -> T:
        """Run one SDK call and translate its failures."""
        try:
            return fn()
        except stripe.InvalidRequestError as e:
            if e.http_status == 404:
                raise NotFoundError(f"{operation}: resource not found", operation=operation, **context)
            logger.error("provider_request_rejected", operation=operation, error=str(e), **context)
            raise ProviderError(f"{operation} was rejected by the billing provider", cause=e, **context)
        except stripe.StripeError as e:
            logger.warning(
                "provider_call_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            raise ProviderError(f"{operation} failed: {e}", cause=e, operation=operation, **context)

    # ==================== Webhooks ====================

    def construct_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """Verify a webhook signature and parse the event envelope.

        Raises:
            AuthenticityError: Missing or invalid signature, or a malformed body
            InternalError: The webhook secret is not configured
        """
        if not self.config.webhook_secret:
            logger.error("webhook_secret_not_configured")
            raise InternalError("Webhook secret not configured")
        if not signature:
            raise AuthenticityError("Missing webhook signature")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise AuthenticityError("Webhook payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.config.webhook_secret,
                self.config.signature_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise AuthenticityError("Invalid webhook signature")

        try:
            return WebhookEvent.model_validate(json.loads(body))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning("webhook_envelope_invalid", error=str(e))
            raise AuthenticityError("Malformed webhook event")

    # ==================== Subscriptions ====================

    def list_subscriptions(self, customer_id: str, limit: int) -> list[dict[str, Any]]:
        """List a customer's subscriptions in provider order, any status."""
        result = self._call(
            "list_subscriptions",
            lambda: stripe.Subscription.list(
                customer=customer_id,
                status="all",
                limit=limit,
                expand=["data.customer"],
            ),
            customer_id=mask_identifier(customer_id),
        )
        subscriptions = to_plain(result).get("data") or []
        logger.debug(
            "subscriptions_listed",
            customer_id=mask_identifier(customer_id),
            count=len(subscriptions),
        )
        return subscriptions

    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        coupon_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "metadata": metadata or {},
        }
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        result = self._call(
            "create_subscription",
            lambda: stripe.Subscription.create(**params),
            customer_id=mask_identifier(customer_id),
        )
        return to_plain(result)

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Cancel a subscription immediately."""
        result = self._call(
            "cancel_subscription",
            lambda: stripe.Subscription.cancel(subscription_id),
            subscription_id=subscription_id,
        )
        return to_plain(result)

    # ==================== Customers ====================

    def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        result = self._call(
            "retrieve_customer",
            lambda: stripe.Customer.retrieve(customer_id),
            customer_id=mask_identifier(customer_id),
        )
        return to_plain(result)

    def create_customer(
        self,
        email: str,
        name: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"email": email, "metadata": metadata or {}}
        if name:
            params["name"] = name
        result = self._call("create_customer", lambda: stripe.Customer.create(**params))
        customer = to_plain(result)
        logger.info("provider_customer_created", customer_id=mask_identifier(customer.get("id")))
        return customer

    # ==================== Catalog ====================

    def list_active_products(self, limit: int = 10) -> list[dict[str, Any]]:
        result = self._call("list_products", lambda: stripe.Product.list(active=True, limit=limit))
        return to_plain(result).get("data") or []

    def list_active_prices(self, product_id: str, limit: int = 10) -> list[dict[str, Any]]:
        result = self._call(
            "list_prices",
            lambda: stripe.Price.list(product=product_id, active=True, limit=limit),
            product_id=product_id,
        )
        return to_plain(result).get("data") or []

    def retrieve_coupon(self, coupon_id: str) -> Optional[dict[str, Any]]:
        """Retrieve a coupon, or None if it does not exist."""
        try:
            result = self._call(
                "retrieve_coupon",
                lambda: stripe.Coupon.retrieve(coupon_id),
                coupon_id=coupon_id,
            )
        except NotFoundError:
            return None
        return to_plain(result)

    def create_coupon(
        self,
        coupon_id: str,
        name: str,
        percent_off: float = 100,
        duration: str = "forever",
    ) -> dict[str, Any]:
        result = self._call(
            "create_coupon",
            lambda: stripe.Coupon.create(
                id=coupon_id,
                name=name,
                percent_off=percent_off,
                duration=duration,
            ),
            coupon_id=coupon_id,
        )
        logger.info("provider_coupon_created", coupon_id=coupon_id)
        return to_plain(result)


# Global client instance
_client_instance: Optional[BillingProviderClient] = None
_client_lock = threading.Lock()


def get_billing_provider() -> BillingProviderClient:
    """Get global billing provider client (singleton)."""
    global _client_instance
    if _client_instance is None:
        with _client_lock:
            if _client_instance is None:
                _client_instance = BillingProviderClient()
    return _client_instance


def reset_billing_provider() -> None:
    global _client_instance
    with _client_lock:
        _client_instance = None
