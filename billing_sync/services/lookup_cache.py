"""Cached billing provider lookups used by admin grants.

Holds two named caches: the default product/price pair and the promotional
100%-off coupon. Neither touches the account store.
"""

from typing import Any, Optional

from billing_sync.config import get_config
from billing_sync.errors import NotFoundError, ValidationError
from billing_sync.logging_config import get_logger
from billing_sync.models.remote import ProductPrice
from billing_sync.models.settings import AdminConfig, CacheConfig
from billing_sync.services.billing_provider import BillingProviderClient, get_billing_provider
from billing_sync.services.time_controller import TimeController, get_time_controller
from billing_sync.utils.ttl_cache import TTLCache

logger = get_logger(__name__)

PRODUCT_PRICE_KEY = "default"


def _price_to_product_price(product: dict[str, Any], price: dict[str, Any]) -> ProductPrice:
    recurring = price.get("recurring") or {}
    return ProductPrice(
        product_id=product["id"],
        price_id=price["id"],
        product_name=product.get("name"),
        amount=price.get("unit_amount") or 0,
        currency=price.get("currency") or "usd",
        interval=recurring.get("interval") or "month",
    )


class ProviderLookupCache:
    """Process-local TTL caches over provider catalog lookups.

    Args:
        provider: billing provider client (defaults to global instance)
        clock: time source (defaults to global time controller)
        cache_config: TTL settings (defaults to global config)
        admin_config: coupon settings (defaults to global config)
    """

    def __init__(
        self,
        provider: Optional[BillingProviderClient] = None,
        clock: Optional[TimeController] = None,
        cache_config: Optional[CacheConfig] = None,
        admin_config: Optional[AdminConfig] = None,
    ):
        config = None
        if cache_config is None or admin_config is None:
            config = get_config()
        self.provider = provider or get_billing_provider()
        self.cache_config = cache_config or config.cache
        self.admin_config = admin_config or config.admin
        clock = clock or get_time_controller()

        self.product_price: TTLCache[str, ProductPrice] = TTLCache(
            "product_price", self.cache_config.ttl_seconds, clock
        )
        self.promo_coupon: TTLCache[str, dict[str, Any]] = TTLCache(
            "promo_coupon", self.cache_config.ttl_seconds, clock
        )

    def get_product_price(self) -> ProductPrice:
        """First active product and its first active price.

        Raises:
            NotFoundError: No active product or no active price
            ProviderError: Provider call failed (nothing cached)
        """
        return self.product_price.get_or_load(PRODUCT_PRICE_KEY, self._load_product_price)

    def _load_product_price(self) -> ProductPrice:
        products = self.provider.list_active_products(limit=1)
        if not products:
            raise NotFoundError("No active product found")
        product = products[0]
        prices = self.provider.list_active_prices(product["id"], limit=1)
        if not prices:
            raise NotFoundError(f"No active price found for product {product['id']}", product_id=product["id"])
        result = _price_to_product_price(product, prices[0])
        logger.info("product_price_loaded", product_id=result.product_id, price_id=result.price_id)
        return result

    def get_promo_coupon(self) -> dict[str, Any]:
        """The admin-grant coupon, created at the provider when missing."""
        coupon_id = self.admin_config.grant_coupon_id
        return self.promo_coupon.get_or_load(coupon_id, lambda: self._load_coupon(coupon_id))

    def _load_coupon(self, coupon_id: str) -> dict[str, Any]:
        coupon = self.provider.retrieve_coupon(coupon_id)
        if coupon is not None and coupon.get("valid", True) and coupon.get("percent_off") == 100:
            return coupon
        if coupon is not None:
            # Existing coupon with the configured id is unusable and the id cannot be reused
            raise ValidationError(
                f"Coupon {coupon_id} exists but is not a valid 100% discount",
                coupon_id=coupon_id,
            )
        logger.info("promo_coupon_missing", coupon_id=coupon_id)
        return self.provider.create_coupon(coupon_id, self.admin_config.grant_coupon_name, percent_off=100)

    def clear(self) -> None:
        self.product_price.clear()
        self.promo_coupon.clear()

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            "product_price": self.product_price.stats(),
            "promo_coupon": self.promo_coupon.stats(),
        }
