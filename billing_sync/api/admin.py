"""Administrator endpoints.

Implements:
- POST /admin/users/grant-subscription - Grant a free subscription
- POST /admin/users/revoke-access - Revoke access locally
- POST /admin/users/cancel-subscription - Cancel the user's provider subscriptions
- POST /admin/profiles/sync - Reconcile every duplicate-email group
- GET /admin/profiles/duplicates - Report duplicate-email groups
"""

from fastapi import APIRouter, Depends

from billing_sync.api.dependencies import ServiceContainer, get_container, require_admin
from billing_sync.logging_config import get_logger
from billing_sync.models.account import UserAccount
from billing_sync.models.api_request import AdminUserRequest
from billing_sync.models.api_response import (
    DuplicateAnalysisResponse,
    ErrorResponse,
    ProfileSyncResponse,
    SubscriptionResponse,
)

logger = get_logger(__name__)
router = APIRouter(tags=["Admin"], prefix="/admin")

_OVERRIDE_RESPONSES = {
    403: {"model": ErrorResponse, "description": "Caller is not an administrator"},
    404: {"model": ErrorResponse, "description": "User, customer or subscription not found"},
    422: {"model": ErrorResponse, "description": "Request not applicable to the user"},
    503: {"model": ErrorResponse, "description": "Billing provider unavailable"},
}


@router.post(
    "/users/grant-subscription",
    response_model=SubscriptionResponse,
    response_model_by_alias=True,
    summary="Grant a subscription",
    responses=_OVERRIDE_RESPONSES,
)
def grant_subscription(
    request: AdminUserRequest,
    admin: UserAccount = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
) -> SubscriptionResponse:
    """Create a fully discounted provider subscription for the user."""
    logger.info("admin_grant_request", target_user_id=request.user_id, admin_id=admin.id)
    summary = container.admin.grant_subscription(request.user_id, granted_by=admin.id, reason=request.reason)
    return SubscriptionResponse(success=True, message="Subscription granted", subscription=summary)


@router.post(
    "/users/revoke-access",
    response_model=SubscriptionResponse,
    response_model_by_alias=True,
    summary="Revoke access",
    responses=_OVERRIDE_RESPONSES,
)
def revoke_access(
    request: AdminUserRequest,
    admin: UserAccount = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
) -> SubscriptionResponse:
    logger.info("admin_revoke_request", target_user_id=request.user_id, admin_id=admin.id)
    summary = container.admin.revoke_access(request.user_id, performed_by=admin.id, reason=request.reason)
    return SubscriptionResponse(success=True, message="Access revoked", subscription=summary)


@router.post(
    "/users/cancel-subscription",
    response_model=SubscriptionResponse,
    response_model_by_alias=True,
    summary="Cancel subscription",
    responses=_OVERRIDE_RESPONSES,
)
def cancel_subscription(
    request: AdminUserRequest,
    admin: UserAccount = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
) -> SubscriptionResponse:
    """Cancel at the provider; access lasts until the final period end."""
    logger.info("admin_cancel_request", target_user_id=request.user_id, admin_id=admin.id)
    summary = container.admin.cancel_subscription(request.user_id, performed_by=admin.id, reason=request.reason)
    return SubscriptionResponse(success=True, message="Subscription cancelled", subscription=summary)


@router.post(
    "/profiles/sync",
    response_model=ProfileSyncResponse,
    summary="Reconcile duplicate profiles",
)
def sync_profiles(
    admin: UserAccount = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
) -> ProfileSyncResponse:
    report = container.profiles.sweep()
    return ProfileSyncResponse(
        success=True,
        stats=report.stats,
        results=[r.to_dict() for r in report.results],
    )


@router.get(
    "/profiles/duplicates",
    response_model=DuplicateAnalysisResponse,
    summary="Analyse duplicate profiles",
)
def list_duplicates(
    admin: UserAccount = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
) -> DuplicateAnalysisResponse:
    groups = container.profiles.analyze()
    return DuplicateAnalysisResponse(
        stats={
            "duplicate_groups": len(groups),
            "out_of_sync": sum(1 for g in groups if not g.in_sync),
            "without_active": sum(1 for g in groups if g.authoritative_account_id is None),
        },
        groups=[g.to_dict() for g in groups],
    )
