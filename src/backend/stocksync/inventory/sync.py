"""Sync Orchestrator: one full inventory pass for one business."""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import json
import logging
import os
import time

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models as dbm
from ..cache import invalidate_inventory_cache
from ..credentials import CredentialStore
from ..events import emit_event
from ..integrations.pos_base import PosAdapter, PosCredentials, RemoteStockItem, get_adapter
from ..metrics_counters import ITEMS_SYNCED, SYNC_RUNS
from . import store
from .alerts import AlertEngine
from .errors import NotConnected, ProviderTransportError, RateLimited

logger = logging.getLogger(__name__)

SYNC_MAX_PAGES = int(os.getenv("INVENTORY_SYNC_MAX_PAGES", "500"))

AdapterFactory = Callable[[str], PosAdapter]


@dataclass
class SyncRun:
    business_id: str
    provider: str
    started_at: int
    synced: int = 0
    created: int = 0
    updated: int = 0
    pages: int = 0
    alerts_sent: int = 0
    errors: List[str] = field(default_factory=list)
    finished_at: Optional[int] = None

    @property
    def status(self) -> str:
        return "partial" if self.errors else "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "business_id": self.business_id,
            "provider": self.provider,
            "status": self.status,
            "synced": self.synced,
            "created": self.created,
            "updated": self.updated,
            "pages": self.pages,
            "alerts_sent": self.alerts_sent,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class InventorySync:
    def __init__(
        self,
        credentials: CredentialStore,
        alerts: Optional[AlertEngine] = None,
        adapter_factory: AdapterFactory = get_adapter,
        max_pages: Optional[int] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.credentials = credentials
        self.alerts = alerts
        self.adapter_factory = adapter_factory
        self.max_pages = max_pages or SYNC_MAX_PAGES
        self._now = clock or (lambda: int(time.time()))

    def _upsert(self, db: Session, run: SyncRun, item: RemoteStockItem, threshold: int) -> None:
        try:
            created = store.upsert_item(db, run.business_id, run.provider, item, threshold, synced_at=self._now())
        except Exception as exc:
            db.rollback()
            run.errors.append(f"Item {item.name}: {exc}")
            logger.exception(
                "inventory_sync_item_failed",
                extra={"business_id": run.business_id, "provider": run.provider, "remote_id": item.remote_id},
            )
            return
        if created:
            run.created += 1
        else:
            run.updated += 1
        run.synced += 1

    def _walk_pages(self, db: Session, run: SyncRun, adapter: PosAdapter, creds: PosCredentials, threshold: int) -> None:
        cursor: Optional[str] = None
        while True:
            if run.pages >= self.max_pages:
                run.errors.append(f"Stopped after {self.max_pages} pages; provider kept returning a next page")
                logger.warning("inventory_sync_page_cap_hit", extra={"business_id": run.business_id, "pages": run.pages})
                return
            try:
                page = adapter.fetch_page(creds, cursor)
            except (ProviderTransportError, RateLimited, httpx.HTTPError, ValueError) as exc:
                # ValueError: malformed page payload (bad offset, price or JSON)
                run.errors.append(f"Pagination error at page {run.pages + 1}: {exc}")
                logger.warning(
                    "inventory_sync_page_failed",
                    extra={"business_id": run.business_id, "provider": run.provider, "page": run.pages + 1},
                )
                return
            run.pages += 1
            if page.raw_count == 0 and not page.items:
                return
            for item in page.items:
                self._upsert(db, run, item, threshold)
            cursor = page.next_cursor
            if not cursor:
                return

    def _record(self, db: Session, run: SyncRun) -> None:
        try:
            db.add(
                dbm.InventorySyncRun(
                    business_id=run.business_id,
                    provider=run.provider,
                    status=run.status,
                    synced=run.synced,
                    created=run.created,
                    updated=run.updated,
                    pages=run.pages,
                    alerts_sent=run.alerts_sent,
                    errors_json=json.dumps(run.errors),
                    started_at=run.started_at,
                    finished_at=run.finished_at,
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("inventory_sync_run_record_failed", extra={"business_id": run.business_id})

    def run(self, db: Session, business_id: str) -> SyncRun:
        """Pull every item from the connected POS and upsert it locally.

        Raises BusinessNotFound / NotConnected before anything is fetched.
        Item failures and a failed page listing end up in ``run.errors``;
        whatever was committed before stays committed.
        """
        business = store.load_business(db, business_id)
        creds = self.credentials.get(db, business_id)
        if creds is None:
            raise NotConnected(business_id)
        threshold = business.inventory_default_threshold
        if threshold is None:
            threshold = store.DEFAULT_THRESHOLD
        alerts_enabled = bool(business.inventory_alerts_enabled)

        run = SyncRun(business_id=business_id, provider=creds.provider, started_at=self._now())
        adapter = self.adapter_factory(creds.provider)
        self._walk_pages(db, run, adapter, creds, threshold)
        run.finished_at = self._now()
        invalidate_inventory_cache(business_id)

        if alerts_enabled and self.alerts is not None:
            try:
                run.alerts_sent = self.alerts.check_and_alert(db, business_id).alerts_sent
            except Exception as exc:
                db.rollback()
                run.errors.append(f"Alert check failed: {exc}")
                logger.exception("inventory_sync_alert_check_failed", extra={"business_id": business_id})

        self._record(db, run)
        SYNC_RUNS.labels(provider=run.provider, status=run.status).inc()
        ITEMS_SYNCED.labels(provider=run.provider).inc(run.synced)
        logger.info(
            "inventory_sync_completed",
            extra={
                "business_id": business_id,
                "provider": run.provider,
                "synced": run.synced,
                "items_created": run.created,
                "items_updated": run.updated,
                "error_count": len(run.errors),
            },
        )
        emit_event("InventorySynced", run.to_dict(), db=db)
        return run


def latest_run(db: Session, business_id: str) -> Optional[Dict[str, Any]]:
    row = (
        db.query(dbm.InventorySyncRun)
        .filter(dbm.InventorySyncRun.business_id == business_id)
        .order_by(dbm.InventorySyncRun.id.desc())
        .first()
    )
    if row is None:
        return None
    return {
        "id": row.id,
        "provider": row.provider,
        "status": row.status,
        "synced": row.synced,
        "created": row.created,
        "updated": row.updated,
        "pages": row.pages,
        "alerts_sent": row.alerts_sent,
        "errors": json.loads(row.errors_json or "[]"),
        "started_at": row.started_at,
        "finished_at": row.finished_at,
    }
