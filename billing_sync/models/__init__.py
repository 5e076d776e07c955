"""Pydantic models for API requests, responses, and domain objects."""

# Settings models
from .settings import (
    AdminConfig,
    CacheConfig,
    DedupConfig,
    ProviderConfig,
    ReconcilerConfig,
    SettingsConfig,
    WebhookConfig,
)

# Account models
from .account import (
    SUBSCRIPTION_FIELDS,
    SubscriptionRecord,
    SubscriptionStatus,
    UserAccount,
)

# Provider projections
from .remote import (
    CancelledSubscription,
    CheckoutSession,
    DiscountDescriptor,
    ProductPrice,
    RemoteSubscriptionSnapshot,
    SubscriptionCandidate,
)

# Webhook events
from .events import (
    EventData,
    EventType,
    WebhookEvent,
)

# API models
from .api_request import AdminUserRequest
from .api_response import (
    AccessResponse,
    DuplicateAnalysisResponse,
    ErrorResponse,
    ProfileSyncResponse,
    SubscriptionResponse,
    SubscriptionSummary,
    WebhookAck,
)

__all__ = [
    # Settings
    "AdminConfig",
    "CacheConfig",
    "DedupConfig",
    "ProviderConfig",
    "ReconcilerConfig",
    "SettingsConfig",
    "WebhookConfig",
    # Accounts
    "SUBSCRIPTION_FIELDS",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "UserAccount",
    # Provider projections
    "CancelledSubscription",
    "CheckoutSession",
    "DiscountDescriptor",
    "ProductPrice",
    "RemoteSubscriptionSnapshot",
    "SubscriptionCandidate",
    # Events
    "EventData",
    "EventType",
    "WebhookEvent",
    # API
    "AdminUserRequest",
    "AccessResponse",
    "DuplicateAnalysisResponse",
    "ErrorResponse",
    "ProfileSyncResponse",
    "SubscriptionResponse",
    "SubscriptionSummary",
    "WebhookAck",
]
