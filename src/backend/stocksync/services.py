from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .credentials import CredentialStore, TokenSource
from .db import SessionLocal
from .integrations.pos_base import get_adapter
from .inventory.alerts import AlertEngine
from .inventory.sync import AdapterFactory, InventorySync
from .inventory.webhooks import WebhookIngestor
from .notifications import NotificationDispatcher, ProviderDispatcher, SenderIdentity


@dataclass
class Services:
    credentials: CredentialStore
    alerts: AlertEngine
    sync: InventorySync
    webhooks: WebhookIngestor
    session_factory: Callable[[], Session]


def build_services(
    session_factory: Callable[[], Session] = SessionLocal,
    dispatcher: Optional[NotificationDispatcher] = None,
    sender: Optional[SenderIdentity] = None,
    adapter_factory: AdapterFactory = get_adapter,
    token_source: Optional[TokenSource] = None,
    clock: Optional[Callable[[], int]] = None,
) -> Services:
    credentials = CredentialStore(token_source=token_source)
    alerts = AlertEngine(dispatcher or ProviderDispatcher(), sender=sender)
    return Services(
        credentials=credentials,
        alerts=alerts,
        sync=InventorySync(credentials, alerts=alerts, adapter_factory=adapter_factory, clock=clock),
        webhooks=WebhookIngestor(credentials, alerts=alerts, adapter_factory=adapter_factory, clock=clock),
        session_factory=session_factory,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services
