"""Utility functions and helpers for the reconciliation service."""

from billing_sync.utils.identifiers import (
    generate_account_id,
    normalize_email,
    validate_account_id,
)
from billing_sync.utils.timestamps import (
    age_seconds,
    ensure_utc,
    from_unix,
    is_after,
    to_unix,
)
from billing_sync.utils.ttl_cache import CacheEntry, TTLCache

__all__ = [
    # Identifiers
    "generate_account_id",
    "normalize_email",
    "validate_account_id",
    # Timestamps
    "age_seconds",
    "ensure_utc",
    "from_unix",
    "is_after",
    "to_unix",
    # Cache
    "CacheEntry",
    "TTLCache",
]
