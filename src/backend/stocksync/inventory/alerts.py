from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging
import time

from sqlalchemy.orm import Session

from .. import models as dbm
from ..events import emit_event
from ..locks import tenant_lock
from ..metrics_counters import LOW_STOCK_ALERTS
from ..notifications import NotificationDispatcher, SenderIdentity
from . import store
from .errors import ChannelDispatchFailure

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 24 * 3600


@dataclass
class AlertResult:
    alerts_sent: int = 0
    # every tracked item under threshold, including ones still in cooldown
    low_stock_items: List[Dict[str, Any]] = field(default_factory=list)
    alerted_items: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alerts_sent": self.alerts_sent,
            "low_stock_items": self.low_stock_items,
            "alerted_items": self.alerted_items,
        }


def _summary(row: dbm.InventoryItem) -> Dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "category": row.category,
        "quantity": int(row.quantity or 0),
        "threshold": int(row.low_stock_threshold or 0),
    }


def is_eligible(row: dbm.InventoryItem, now: int, cooldown_seconds: int = ALERT_COOLDOWN_SECONDS) -> bool:
    if not row.track_stock or row.quantity >= row.low_stock_threshold:
        return False
    return row.last_alert_sent_at is None or now - row.last_alert_sent_at >= cooldown_seconds


def compose_message(business_name: str, items: List[Dict[str, Any]]) -> Tuple[str, str]:
    n = len(items)
    plural = "s" if n != 1 else ""
    lines = []
    for it in items:
        label = f"{it['name']} ({it['category']})" if it.get("category") else it["name"]
        lines.append(f"• {label}: {it['quantity']} left (threshold: {it['threshold']})")
    body = (
        f"Low Stock Alert - {business_name}\n\n"
        f"{n} item{plural} below threshold:\n\n"
        + "\n".join(lines)
        + "\n\nLog in to manage inventory settings."
    )
    verb = "needs" if n == 1 else "need"
    subject = f"Low Stock Alert: {n} item{plural} {verb} restock"
    return subject, body


class AlertEngine:
    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        sender: Optional[SenderIdentity] = None,
        cooldown_seconds: int = ALERT_COOLDOWN_SECONDS,
    ):
        self.dispatcher = dispatcher
        self.sender = sender or SenderIdentity()
        self.cooldown_seconds = cooldown_seconds

    def _send(self, channel: str, business_id: str, fn, *args) -> bool:
        try:
            fn(*args)
        except ChannelDispatchFailure as exc:
            LOW_STOCK_ALERTS.labels(channel=channel, status="failed").inc()
            logger.warning("inventory_alert_channel_failed", extra={"business_id": business_id, "channel": channel, "reason": exc.reason})
            return False
        except Exception:
            LOW_STOCK_ALERTS.labels(channel=channel, status="failed").inc()
            logger.exception("inventory_alert_channel_error", extra={"business_id": business_id, "channel": channel})
            return False
        LOW_STOCK_ALERTS.labels(channel=channel, status="sent").inc()
        logger.info("inventory_alert_sent", extra={"business_id": business_id, "channel": channel})
        return True

    def _dispatch(self, business: dbm.Business, subject: str, body: str) -> int:
        channel = (business.inventory_alert_channel or "both").lower()
        sent = 0
        if channel in ("sms", "both"):
            from_number = self.sender.from_number(business)
            if business.phone and from_number:
                sent += self._send("sms", business.id, self.dispatcher.send_sms, business.phone, body, from_number)
            else:
                logger.info("inventory_alert_sms_skipped", extra={"business_id": business.id, "has_phone": bool(business.phone)})
        if channel in ("email", "both"):
            if business.email:
                sent += self._send("email", business.id, self.dispatcher.send_email, business.email, subject, body)
            else:
                logger.info("inventory_alert_email_skipped", extra={"business_id": business.id})
        return sent

    def check_and_alert(self, db: Session, business_id: str, now: Optional[int] = None) -> AlertResult:
        """Alert the owner about low items outside the cooldown window.

        Runs under a per-business lock so two triggers close together (a sync
        and a webhook) cannot both select and send for the same items.
        """
        business = store.load_business(db, business_id)
        if not business.inventory_alerts_enabled:
            return AlertResult()
        with tenant_lock(business_id, "alerts"):
            now = now or int(time.time())
            low_rows = store.select_low_stock(db, business_id)
            low = [_summary(r) for r in low_rows]
            eligible = [r for r in low_rows if is_eligible(r, now, self.cooldown_seconds)]
            if not eligible:
                return AlertResult(0, low, [])
            batch = [_summary(r) for r in eligible]
            subject, body = compose_message(business.name, batch)
            sent = self._dispatch(business, subject, body)
            if sent > 0:
                store.stamp_alerted(db, business_id, [r["id"] for r in batch], now)
                emit_event(
                    "LowStockAlertSent",
                    {"business_id": business_id, "items": len(batch), "channels_sent": sent},
                    db=db,
                )
            return AlertResult(sent, low, batch if sent else [])
