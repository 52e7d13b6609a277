"""Webhook Ingestor: single-item stock pushes from Clover and Square."""
from typing import Any, Callable, Dict, List, Optional, Tuple
import base64
import hashlib
import hmac
import logging
import time

import httpx
from sqlalchemy.orm import Session

from ..cache import invalidate_inventory_cache
from ..credentials import CredentialStore
from ..events import emit_event
from ..integrations.pos_base import get_adapter
from ..metrics_counters import WEBHOOK_EVENTS
from . import store
from .alerts import AlertEngine
from .errors import ProviderTransportError, RateLimited
from .sync import AdapterFactory

logger = logging.getLogger(__name__)

CLOVER_ITEM_PREFIX = "I:"
CLOVER_APPLIED_TYPES = {"CREATE", "UPDATE"}
SQUARE_STOCK_EVENTS = {"inventory.count.updated"}


def parse_clover_events(body: Dict[str, Any]) -> List[Tuple[str, str]]:
    """(merchant_id, item_id) pairs from a Clover webhook body.

    Accepts Clover's ``{"merchants": {mId: [{"objectId": "I:...", "type": ...}]}}``
    envelope as well as a flat ``{"merchantId", "objectId", "type"}`` body.
    """
    out: List[Tuple[str, str]] = []
    merchants = body.get("merchants")
    if isinstance(merchants, dict):
        for merchant_id, updates in merchants.items():
            for upd in updates or []:
                object_id = str(upd.get("objectId") or "")
                if upd.get("type") not in CLOVER_APPLIED_TYPES or not object_id.startswith(CLOVER_ITEM_PREFIX):
                    continue
                out.append((str(merchant_id), object_id[len(CLOVER_ITEM_PREFIX):]))
    elif body.get("merchantId") and body.get("objectId") and body.get("type") in CLOVER_APPLIED_TYPES:
        object_id = str(body["objectId"])
        if object_id.startswith(CLOVER_ITEM_PREFIX):
            object_id = object_id[len(CLOVER_ITEM_PREFIX):]
        out.append((str(body["merchantId"]), object_id))
    return list(dict.fromkeys(out))


def parse_square_events(body: Dict[str, Any]) -> List[Tuple[str, str]]:
    """(merchant_id, catalog_object_id) pairs from a Square ``inventory.count.updated`` event."""
    if body.get("type") not in SQUARE_STOCK_EVENTS:
        return []
    merchant_id = str(body.get("merchant_id") or "")
    obj = ((body.get("data") or {}).get("object") or {})
    out = [
        (merchant_id, str(c.get("catalog_object_id")))
        for c in obj.get("inventory_counts") or []
        if c.get("catalog_object_id")
    ]
    if not merchant_id:
        return []
    return list(dict.fromkeys(out))


def verify_square_signature(body: bytes, signature: str, signature_key: str, notification_url: str) -> bool:
    if not (signature and signature_key):
        return False
    mac = hmac.new(signature_key.encode(), notification_url.encode() + body, hashlib.sha256).digest()
    return hmac.compare_digest(signature, base64.b64encode(mac).decode())


class WebhookIngestor:
    def __init__(
        self,
        credentials: CredentialStore,
        alerts: Optional[AlertEngine] = None,
        adapter_factory: AdapterFactory = get_adapter,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.credentials = credentials
        self.alerts = alerts
        self.adapter_factory = adapter_factory
        self._now = clock or (lambda: int(time.time()))

    def handle_event(self, db: Session, provider: str, merchant_id: str, remote_item_id: str) -> Dict[str, Any]:
        """Fetch one item's current stock and upsert it; replays converge to the same row."""
        business_id = self.credentials.business_for_merchant(db, provider, merchant_id)
        if not business_id:
            logger.info("inventory_webhook_unknown_merchant", extra={"provider": provider, "merchant_id": merchant_id})
            WEBHOOK_EVENTS.labels(provider=provider, status="unknown_merchant").inc()
            return {"status": "unknown_merchant"}
        business = store.load_business(db, business_id)
        threshold = business.inventory_default_threshold
        alerts_enabled = bool(business.inventory_alerts_enabled)
        creds = self.credentials.get(db, business_id)
        if creds is None or creds.provider != provider:
            logger.info("inventory_webhook_not_connected", extra={"provider": provider, "business_id": business_id})
            WEBHOOK_EVENTS.labels(provider=provider, status="not_connected").inc()
            return {"status": "not_connected", "business_id": business_id}

        adapter = self.adapter_factory(provider)
        try:
            remote = adapter.fetch_one(creds, remote_item_id)
        except (ProviderTransportError, RateLimited, httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "inventory_webhook_fetch_failed",
                extra={"provider": provider, "business_id": business_id, "remote_id": remote_item_id, "reason": str(exc)[:200]},
            )
            WEBHOOK_EVENTS.labels(provider=provider, status="fetch_failed").inc()
            return {"status": "fetch_failed", "business_id": business_id, "error": str(exc)[:200]}
        if remote is None:
            WEBHOOK_EVENTS.labels(provider=provider, status="ignored").inc()
            return {"status": "ignored", "business_id": business_id}

        created = store.upsert_item(db, business_id, provider, remote, threshold, synced_at=self._now())
        invalidate_inventory_cache(business_id)
        status = "created" if created else "updated"
        WEBHOOK_EVENTS.labels(provider=provider, status=status).inc()
        logger.info(
            "inventory_webhook_applied",
            extra={"provider": provider, "business_id": business_id, "remote_id": remote.remote_id, "quantity": remote.quantity},
        )
        emit_event(
            "InventoryItemPushed",
            {"business_id": business_id, "provider": provider, "remote_id": remote.remote_id, "quantity": remote.quantity},
            db=db,
        )

        alerts_sent = 0
        if alerts_enabled and self.alerts is not None:
            # whole-business scan: other items may have left their cooldown too
            try:
                alerts_sent = self.alerts.check_and_alert(db, business_id).alerts_sent
            except Exception:
                db.rollback()
                logger.exception("inventory_webhook_alert_check_failed", extra={"business_id": business_id})
        return {
            "status": status,
            "business_id": business_id,
            "remote_id": remote.remote_id,
            "quantity": remote.quantity,
            "alerts_sent": alerts_sent,
        }
