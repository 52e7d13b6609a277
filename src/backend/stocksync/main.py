from __future__ import annotations

from fastapi import FastAPI, Depends, Request, HTTPException, BackgroundTasks, Query
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Tuple
import hmac
import json
import logging
import os
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session

from .auth import UserContext, get_user_context, require_role
from .db import get_db
from .inventory import store
from .inventory.errors import BusinessNotFound, NotConnected
from .inventory.sync import latest_run
from .inventory.webhooks import parse_clover_events, parse_square_events, verify_square_signature
from .metrics_counters import WEBHOOK_EVENTS
from .rate_limit import check_and_increment
from .services import Services, get_services

logger = logging.getLogger(__name__)

WEBHOOK_MAX_PER_MINUTE = int(os.getenv("WEBHOOK_MAX_PER_MINUTE", "120"))

app = FastAPI(title="StockSync Backend", version="0.1.0")


class ItemSettingsUpdate(BaseModel):
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    track_stock: Optional[bool] = None


@app.get("/health", tags=["Ops"])
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics", tags=["Ops"])
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/inventory/items", tags=["Inventory"])
def inventory_items(
    category: Optional[str] = None,
    low_stock: bool = False,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = Query(default=store.DEFAULT_PAGE_SIZE),
    sort_by: Optional[str] = None,
    sort_dir: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
) -> Dict[str, Any]:
    return store.list_items(
        db,
        ctx.tenant_id,
        category=category,
        low_stock_only=low_stock,
        search=search,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_dir=sort_dir,
    )


@app.get("/inventory/stats", tags=["Inventory"])
def inventory_stats(db: Session = Depends(get_db), ctx: UserContext = Depends(get_user_context)) -> Dict[str, Any]:
    return store.get_stats(db, ctx.tenant_id)


@app.get("/inventory/categories", tags=["Inventory"])
def inventory_categories(db: Session = Depends(get_db), ctx: UserContext = Depends(get_user_context)) -> List[str]:
    return store.list_categories(db, ctx.tenant_id)


@app.post("/inventory/sync", tags=["Inventory"])
def inventory_sync(
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    require_role(ctx, "owner_admin", "staff")
    try:
        run = services.sync.run(db, ctx.tenant_id)
    except BusinessNotFound:
        raise HTTPException(status_code=404, detail="business_not_found")
    except NotConnected:
        raise HTTPException(status_code=400, detail="not_connected")
    return {
        "message": f"Synced {run.synced} items ({run.created} new, {run.updated} updated)",
        **run.to_dict(),
    }


@app.get("/inventory/sync/status", tags=["Inventory"])
def inventory_sync_status(db: Session = Depends(get_db), ctx: UserContext = Depends(get_user_context)) -> Dict[str, Any]:
    last = latest_run(db, ctx.tenant_id)
    if last is None:
        return {"status": "none"}
    return last


@app.post("/inventory/check-alerts", tags=["Inventory"])
def inventory_check_alerts(
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    require_role(ctx, "owner_admin", "staff")
    try:
        result = services.alerts.check_and_alert(db, ctx.tenant_id)
    except BusinessNotFound:
        raise HTTPException(status_code=404, detail="business_not_found")
    return result.to_dict()


@app.patch("/inventory/items/{item_id}", tags=["Inventory"])
def inventory_item_update(
    item_id: int,
    req: ItemSettingsUpdate,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
) -> Dict[str, Any]:
    require_role(ctx, "owner_admin", "staff")
    row = store.update_item_settings(
        db,
        ctx.tenant_id,
        item_id,
        low_stock_threshold=req.low_stock_threshold,
        track_stock=req.track_stock,
    )
    if row is None:
        raise HTTPException(status_code=404, detail="item_not_found")
    return store.item_to_dict(row)


# Webhooks ---------------------------------------------------------------------


def _ingest_events(services: Services, provider: str, events: List[Tuple[str, str]]) -> None:
    db = services.session_factory()
    try:
        for merchant_id, item_id in events:
            try:
                services.webhooks.handle_event(db, provider, merchant_id, item_id)
            except Exception:
                db.rollback()
                WEBHOOK_EVENTS.labels(provider=provider, status="error").inc()
                logger.exception(
                    "inventory_webhook_failed",
                    extra={"provider": provider, "merchant_id": merchant_id, "remote_id": item_id},
                )
    finally:
        db.close()


def _schedule(
    background: BackgroundTasks, services: Services, provider: str, events: List[Tuple[str, str]]
) -> JSONResponse:
    allowed: List[Tuple[str, str]] = []
    throttled = 0
    for merchant_id, item_id in events:
        ok, _ = check_and_increment(f"webhook:{provider}", merchant_id, max_per_minute=WEBHOOK_MAX_PER_MINUTE)
        if ok:
            allowed.append((merchant_id, item_id))
        else:
            throttled += 1
    if allowed:
        background.add_task(_ingest_events, services, provider, allowed)
    if throttled:
        WEBHOOK_EVENTS.labels(provider=provider, status="throttled").inc(throttled)
        logger.warning("inventory_webhook_throttled", extra={"provider": provider, "throttled": throttled})
        return JSONResponse({"received": True, "accepted": len(allowed), "throttled": throttled}, status_code=429)
    return JSONResponse({"received": True, "accepted": len(allowed)})


async def _json_body(request: Request) -> Tuple[bytes, Dict[str, Any]]:
    raw = await request.body()
    try:
        body = json.loads(raw or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid_json")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="invalid_json")
    return raw, body


@app.post("/webhooks/clover/inventory", tags=["Webhooks"])
async def clover_inventory_webhook(
    request: Request,
    background: BackgroundTasks,
    services: Services = Depends(get_services),
) -> JSONResponse:
    _, body = await _json_body(request)
    if body.get("verificationCode"):
        # one-time handshake when the webhook URL is registered in the Clover dashboard
        logger.info("clover_webhook_verification", extra={"verification_code": body["verificationCode"]})
        return JSONResponse({"received": True})
    auth_code = os.getenv("CLOVER_WEBHOOK_AUTH_CODE", "")
    if auth_code and not hmac.compare_digest(request.headers.get("x-clover-auth", ""), auth_code):
        raise HTTPException(status_code=401, detail="invalid_signature")
    return _schedule(background, services, "clover", parse_clover_events(body))


@app.post("/webhooks/square/inventory", tags=["Webhooks"])
async def square_inventory_webhook(
    request: Request,
    background: BackgroundTasks,
    services: Services = Depends(get_services),
) -> JSONResponse:
    raw, body = await _json_body(request)
    signature_key = os.getenv("SQUARE_WEBHOOK_SIGNATURE_KEY", "")
    if signature_key:
        url = os.getenv("SQUARE_WEBHOOK_URL", "") or str(request.url)
        sig = request.headers.get("x-square-hmacsha256-signature", "")
        if not verify_square_signature(raw, sig, signature_key, url):
            raise HTTPException(status_code=401, detail="invalid_signature")
    return _schedule(background, services, "square", parse_square_events(body))
