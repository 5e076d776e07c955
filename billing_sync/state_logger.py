"""Simple state change logging for subscription records and accounts.

Tracks status and period transitions with before/after values for
debugging and auditing.
"""

from datetime import datetime
from typing import Any, Optional

from billing_sync.logging_config import get_logger, mask_identifier

logger = get_logger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def log_status_change(
    account_id: str,
    customer_id: Optional[str],
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription status change.

    Args:
        account_id: Local account id
        customer_id: Billing customer reference
        old_status: Previous status value
        new_status: New status value
        reason: Reason for state change
        **extra_context: Additional context (event_id, source, etc.)
    """
    logger.info(
        "subscription_status_changed",
        account_id=account_id,
        customer_id=mask_identifier(customer_id),
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_period_change(
    account_id: str,
    customer_id: Optional[str],
    old_period_end: Optional[datetime],
    new_period_end: Optional[datetime],
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription period change."""
    logger.info(
        "subscription_period_changed",
        account_id=account_id,
        customer_id=mask_identifier(customer_id),
        old_period_end=_iso(old_period_end),
        new_period_end=_iso(new_period_end),
        reason=reason,
        **extra_context,
    )


def log_write_skipped(
    account_id: str,
    customer_id: Optional[str],
    reason: str,
    as_of: Optional[datetime] = None,
    watermark: Optional[datetime] = None,
) -> None:
    """Log a write that was not applied (stale event or no change)."""
    logger.debug(
        "subscription_write_skipped",
        account_id=account_id,
        customer_id=mask_identifier(customer_id),
        reason=reason,
        as_of=_iso(as_of),
        watermark=_iso(watermark),
    )


def log_profile_propagation(
    email: str,
    source_account_id: str,
    target_account_id: str,
    status: Any,
    period_end: Optional[datetime],
) -> None:
    """Log subscription fields copied from the authoritative duplicate account."""
    logger.info(
        "profile_subscription_propagated",
        email=mask_identifier(email, keep=3),
        source_account_id=source_account_id,
        target_account_id=target_account_id,
        status=str(status),
        period_end=_iso(period_end),
    )


def log_admin_override(
    action: str,
    target_account_id: str,
    performed_by: Optional[str],
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log an administrator override for the audit trail."""
    logger.info(
        "admin_override_applied",
        action=action,
        target_account_id=target_account_id,
        performed_by=mask_identifier(performed_by),
        reason=reason,
        **extra_context,
    )
