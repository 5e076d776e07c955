"""User-facing subscription endpoints.

Implements:
- POST /subscription/sync - Reconcile the caller's subscription with the provider
- GET /subscription/access - Current access decision for the caller
"""

from fastapi import APIRouter, Depends

from billing_sync.api.dependencies import ServiceContainer, get_container, get_current_account
from billing_sync.errors import NotFoundError
from billing_sync.logging_config import bind_context, get_logger, mask_identifier
from billing_sync.models.account import UserAccount
from billing_sync.models.api_response import AccessResponse, ErrorResponse, SubscriptionResponse
from billing_sync.services.reconciler import summarize

logger = get_logger(__name__)
router = APIRouter(tags=["Subscription"], prefix="/subscription")


@router.post(
    "/sync",
    response_model=SubscriptionResponse,
    response_model_by_alias=True,
    summary="Synchronise subscription with the billing provider",
    responses={
        404: {"model": ErrorResponse, "description": "No customer or no subscription"},
        422: {"model": ErrorResponse, "description": "Provider returned malformed data"},
        503: {"model": ErrorResponse, "description": "Billing provider unavailable"},
    },
)
def sync_subscription(
    account: UserAccount = Depends(get_current_account),
    container: ServiceContainer = Depends(get_container),
) -> SubscriptionResponse:
    """Pull the caller's subscription from the provider and store it.

    Every account sharing the caller's customer reference is updated.
    """
    customer_id = account.subscription.customer_id
    if not customer_id:
        raise NotFoundError("no customer", account_id=account.id)
    bind_context(customer_id=mask_identifier(customer_id))

    logger.info("subscription_sync_request", account_id=account.id)
    container.reconciler.reconcile(customer_id)

    refreshed = container.store.get_by_id(account.id)
    return SubscriptionResponse(
        success=True,
        message="Subscription synchronized with billing provider",
        subscription=summarize(refreshed.subscription),
    )


@router.get(
    "/access",
    response_model=AccessResponse,
    summary="Check subscription access",
)
def check_access(
    account: UserAccount = Depends(get_current_account),
    container: ServiceContainer = Depends(get_container),
) -> AccessResponse:
    decision = container.access.check_access(account)
    return AccessResponse(
        has_access=decision.has_access,
        status=decision.status.value,
        reason=decision.reason,
        period_end=decision.period_end,
    )
