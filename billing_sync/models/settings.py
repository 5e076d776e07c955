"""Service configuration models.

Models from settings.yaml configuration.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """Billing provider (Stripe) connection settings."""

    api_key: Optional[str] = Field(None, description="Secret API key; STRIPE_SECRET_KEY overrides it")
    webhook_secret: Optional[str] = Field(
        None, description="Webhook signing secret; STRIPE_WEBHOOK_SECRET overrides it"
    )
    timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for every provider call")
    signature_tolerance_seconds: int = Field(
        default=300, ge=0, description="Maximum age of a signed webhook payload"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "timeout_seconds": 10.0,
                "signature_tolerance_seconds": 300,
            }
        }


class CacheConfig(BaseModel):
    """Provider lookup cache settings."""

    ttl_seconds: int = Field(default=12 * 60 * 60, gt=0, description="Lookup TTL (12 hours)")


class ReconcilerConfig(BaseModel):
    """On-demand reconciliation settings."""

    subscription_list_limit: int = Field(
        default=10, ge=10, le=100, description="Subscriptions fetched per customer"
    )
    freshness_seconds: int = Field(
        default=5 * 60, ge=0, description="Records younger than this skip the provider call"
    )


class WebhookConfig(BaseModel):
    """Webhook ingestion settings."""

    dedup_window_seconds: int = Field(
        default=3 * 24 * 60 * 60,
        gt=0,
        description="How long processed event ids are remembered (>= provider redelivery horizon)",
    )


class DedupConfig(BaseModel):
    """Duplicate profile sweep settings."""

    sweep_interval_seconds: int = Field(
        default=60 * 60, ge=0, description="Periodic sweep interval, 0 disables the sweep"
    )


class AdminConfig(BaseModel):
    """Admin override settings."""

    grant_coupon_id: str = Field(default="admin-grant-100-off", description="Coupon used for granted subscriptions")
    grant_coupon_name: str = Field(default="Admin Grant - 100% Off", description="Coupon display name")


class SettingsConfig(BaseModel):
    """Complete settings.yaml configuration."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    reconciler: ReconcilerConfig = Field(default_factory=ReconcilerConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
