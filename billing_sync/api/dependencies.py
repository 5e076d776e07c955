"""Service wiring and request dependencies for the HTTP adapters.

Services are built once per process and shared by every router. Tests swap
the whole container through FastAPI's dependency_overrides.
"""

import threading
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from billing_sync.config import get_config
from billing_sync.logging_config import bind_context
from billing_sync.models.account import UserAccount
from billing_sync.repositories.account_store import AccountStore, get_account_store
from billing_sync.repositories.event_log import ProcessedEventLog
from billing_sync.services.access_service import AccessService
from billing_sync.services.admin_overrides import AdminOverrides
from billing_sync.services.billing_provider import BillingProviderClient, get_billing_provider
from billing_sync.services.event_handlers import EventHandlers
from billing_sync.services.lookup_cache import ProviderLookupCache
from billing_sync.services.profile_resolver import ProfileResolver
from billing_sync.services.reconciler import Reconciler
from billing_sync.services.subscription_writer import SubscriptionWriter
from billing_sync.services.time_controller import TimeController, get_time_controller
from billing_sync.services.webhook_ingestor import WebhookIngestor

AUTH_USER_HEADER = "X-Auth-User-Id"
AUTH_EMAIL_HEADER = "X-Auth-User-Email"


@dataclass
class ServiceContainer:
    store: AccountStore
    clock: TimeController
    provider: BillingProviderClient
    writer: SubscriptionWriter
    profiles: ProfileResolver
    reconciler: Reconciler
    handlers: EventHandlers
    event_log: ProcessedEventLog
    ingestor: WebhookIngestor
    lookup_cache: ProviderLookupCache
    admin: AdminOverrides
    access: AccessService


def build_container(
    store: Optional[AccountStore] = None,
    clock: Optional[TimeController] = None,
    provider: Optional[BillingProviderClient] = None,
) -> ServiceContainer:
    """Wire every service around one store, clock and provider client."""
    config = get_config()
    store = store if store is not None else get_account_store()
    clock = clock or get_time_controller()
    provider = provider or get_billing_provider()

    writer = SubscriptionWriter(account_store=store, clock=clock)
    profiles = ProfileResolver(writer, account_store=store, clock=clock)
    reconciler = Reconciler(writer, profiles, provider=provider, clock=clock, reconciler_config=config.reconciler)
    handlers = EventHandlers(writer, profiles, reconciler, provider=provider, account_store=store)
    event_log = ProcessedEventLog(config.webhook.dedup_window_seconds, clock=clock)
    lookup_cache = ProviderLookupCache(
        provider=provider, clock=clock, cache_config=config.cache, admin_config=config.admin
    )
    admin = AdminOverrides(
        writer,
        reconciler,
        lookup_cache,
        provider=provider,
        account_store=store,
        clock=clock,
        reconciler_config=config.reconciler,
    )
    return ServiceContainer(
        store=store,
        clock=clock,
        provider=provider,
        writer=writer,
        profiles=profiles,
        reconciler=reconciler,
        handlers=handlers,
        event_log=event_log,
        ingestor=WebhookIngestor(handlers, event_log, provider=provider),
        lookup_cache=lookup_cache,
        admin=admin,
        access=AccessService(reconciler, admin, clock=clock),
    )


_container_instance: Optional[ServiceContainer] = None
_container_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """Get the process-wide service container (singleton)."""
    global _container_instance
    if _container_instance is None:
        with _container_lock:
            if _container_instance is None:
                _container_instance = build_container()
    return _container_instance


def reset_container() -> None:
    global _container_instance
    with _container_lock:
        _container_instance = None


def get_current_account(
    auth_user_id: Optional[str] = Header(None, alias=AUTH_USER_HEADER),
    auth_email: Optional[str] = Header(None, alias=AUTH_EMAIL_HEADER),
    container: ServiceContainer = Depends(get_container),
) -> UserAccount:
    """Resolve the caller from the gateway's auth headers.

    An unknown auth id is treated as a first login when the email header is present.
    """
    if not auth_user_id:
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": f"Missing {AUTH_USER_HEADER} header"},
        )
    account = container.store.find_by_auth_id(auth_user_id)
    if account is None and auth_email:
        account = container.profiles.resolve_login(auth_user_id, auth_email)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": "Unknown user"},
        )
    bind_context(user_id=account.id)
    return account


def require_admin(account: UserAccount = Depends(get_current_account)) -> UserAccount:
    if not account.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"error": "forbidden", "message": "Administrator access required"},
        )
    return account
