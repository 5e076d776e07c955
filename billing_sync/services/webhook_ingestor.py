"""Webhook ingestion: verify, deduplicate, dispatch.

The billing provider delivers events at least once, in any order, and
redelivers anything that did not get a 2xx answer. An event id is claimed
before its handler runs; when the handler fails the claim is released so the
redelivery is processed.
"""

from dataclasses import dataclass
from typing import Optional

from billing_sync.logging_config import get_logger, webhook_event_context
from billing_sync.models.events import EventType, WebhookEvent
from billing_sync.repositories.event_log import ProcessedEventLog
from billing_sync.services.billing_provider import BillingProviderClient, get_billing_provider
from billing_sync.services.event_handlers import EventHandlers

logger = get_logger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"


@dataclass(frozen=True)
class IngestResult:
    event_id: str
    event_type: str
    outcome: str
    accounts_updated: int = 0


class WebhookIngestor:
    """Entry point for signed billing provider webhooks.

    Args:
        handlers: event handlers
        event_log: processed-event dedup window
        provider: billing provider client used for signature checks
    """

    def __init__(
        self,
        handlers: EventHandlers,
        event_log: ProcessedEventLog,
        provider: Optional[BillingProviderClient] = None,
    ):
        self.handlers = handlers
        self.event_log = event_log
        self.provider = provider or get_billing_provider()

    def ingest(self, payload: bytes, signature: Optional[str]) -> IngestResult:
        """Verify and process one webhook delivery.

        Raises:
            AuthenticityError: Signature or envelope invalid
            ValidationError, NotFoundError, ProviderError, InternalError: Handler failed
                (the event will be processed again on redelivery)
        """
        event = self.provider.construct_event(payload, signature)
        customer = event.data.object.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer
        with webhook_event_context(event.id, event.type, customer_id=customer_id):
            return self._process(event)

    def _process(self, event: WebhookEvent) -> IngestResult:
        if not self.event_log.claim(event.id):
            logger.info("webhook_duplicate")
            return IngestResult(event.id, event.type, OUTCOME_DUPLICATE)

        event_type = EventType.parse(event.type)
        if event_type is None:
            logger.info("webhook_ignored")
            return IngestResult(event.id, event.type, OUTCOME_IGNORED)

        try:
            outcomes = self.handlers.dispatch(event_type, event.data.object, event.created_at)
        except Exception as e:
            self.event_log.release(event.id)
            logger.warning(
                "webhook_handler_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        updated = sum(1 for o in outcomes if o.applied)
        logger.info("webhook_processed", accounts=len(outcomes), accounts_updated=updated)
        return IngestResult(event.id, event.type, OUTCOME_PROCESSED, accounts_updated=updated)
