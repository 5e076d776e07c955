"""Billing provider webhook endpoint.

Implements:
- POST /webhooks/billing - Signed subscription and checkout events

Any non-2xx answer makes the provider redeliver the event; errors are mapped
to status codes by the application's BillingSyncError handler.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from billing_sync.api.dependencies import ServiceContainer, get_container
from billing_sync.logging_config import get_logger
from billing_sync.models.api_response import ErrorResponse, WebhookAck

logger = get_logger(__name__)
router = APIRouter(tags=["Webhooks"], prefix="/webhooks")


@router.post(
    "/billing",
    response_model=WebhookAck,
    summary="Receive billing provider events",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid signature or envelope"},
        404: {"model": ErrorResponse, "description": "No matching account yet"},
        422: {"model": ErrorResponse, "description": "Malformed subscription data"},
        503: {"model": ErrorResponse, "description": "Billing provider unavailable"},
    },
)
async def receive_billing_event(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    container: ServiceContainer = Depends(get_container),
) -> WebhookAck:
    """Verify, deduplicate and apply one webhook delivery.

    The raw body is used for signature verification, so it is read before
    any parsing happens.
    """
    payload = await request.body()
    result = await run_in_threadpool(container.ingestor.ingest, payload, stripe_signature)
    return WebhookAck(received=True, event_id=result.event_id, outcome=result.outcome)
