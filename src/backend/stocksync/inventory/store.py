"""Inventory Store: keyed upserts, filtered reads, stats and alert bookkeeping.

Rows are keyed by (business_id, provider, provider_item_id). Every write
commits on its own so a failing item never takes earlier ones with it.
"""
from typing import Any, Dict, List, Optional
import logging
import math
import os
import time

from sqlalchemy import and_, case, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models as dbm
from ..cache import cache_get, cache_set, invalidate_inventory_cache, stats_cache_key
from ..integrations.pos_base import RemoteStockItem
from .errors import BusinessNotFound

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100
DEFAULT_THRESHOLD = 10
STATS_CACHE_TTL = int(os.getenv("INVENTORY_STATS_CACHE_TTL", "30"))

Item = dbm.InventoryItem


def load_business(db: Session, business_id: str) -> dbm.Business:
    business = db.get(dbm.Business, business_id)
    if business is None:
        raise BusinessNotFound(business_id)
    return business


def _find(db: Session, business_id: str, provider: str, remote_id: str) -> Optional[Item]:
    return (
        db.query(Item)
        .filter(
            Item.business_id == business_id,
            Item.provider == provider,
            Item.provider_item_id == remote_id,
        )
        .with_for_update()
        .first()
    )


def _apply_remote(row: Item, remote: RemoteStockItem, synced_at: int) -> None:
    if row.last_synced_at and row.last_synced_at > synced_at:
        # a newer write from the other path already landed
        logger.info(
            "inventory_upsert_stale_skipped",
            extra={"business_id": row.business_id, "provider_item_id": row.provider_item_id},
        )
        return
    incoming = {
        "name": remote.name or row.name,
        "sku": remote.sku,
        "category": remote.category,
        "quantity": remote.quantity,
        "unit_price": remote.unit_price,
    }
    changed = False
    for attr, value in incoming.items():
        if getattr(row, attr) != value:
            setattr(row, attr, value)
            changed = True
    if changed:
        row.updated_at = synced_at
    row.last_synced_at = synced_at


def upsert_item(
    db: Session,
    business_id: str,
    provider: str,
    remote: RemoteStockItem,
    default_threshold: Optional[int] = None,
    synced_at: Optional[int] = None,
) -> bool:
    """Insert or update one remote item. Returns True when a new row was created."""
    synced_at = synced_at or int(time.time())
    row = _find(db, business_id, provider, remote.remote_id)
    if row is None:
        db.add(
            Item(
                business_id=business_id,
                provider=provider,
                provider_item_id=remote.remote_id,
                name=remote.name or "Unknown Item",
                sku=remote.sku,
                category=remote.category,
                quantity=remote.quantity,
                low_stock_threshold=(DEFAULT_THRESHOLD if default_threshold is None else default_threshold),
                unit_price=remote.unit_price,
                track_stock=True,
                last_synced_at=synced_at,
                created_at=synced_at,
                updated_at=synced_at,
            )
        )
        try:
            db.commit()
            return True
        except IntegrityError:
            # lost an insert race on the unique key; fall through to update
            db.rollback()
            row = _find(db, business_id, provider, remote.remote_id)
            if row is None:
                raise
    _apply_remote(row, remote, synced_at)
    db.commit()
    return False


def item_to_dict(row: Item) -> Dict[str, Any]:
    return {
        "id": row.id,
        "business_id": row.business_id,
        "provider": row.provider,
        "provider_item_id": row.provider_item_id,
        "name": row.name,
        "sku": row.sku,
        "category": row.category,
        "quantity": int(row.quantity or 0),
        "low_stock_threshold": int(row.low_stock_threshold or 0),
        "unit_price": row.unit_price,
        "track_stock": bool(row.track_stock),
        "is_low": bool(row.track_stock) and row.quantity < row.low_stock_threshold,
        "is_out": bool(row.track_stock) and row.quantity == 0,
        "last_alert_sent_at": row.last_alert_sent_at,
        "last_synced_at": row.last_synced_at,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def _is_low():
    return and_(Item.track_stock.is_(True), Item.quantity < Item.low_stock_threshold)


def _is_out():
    return and_(Item.track_stock.is_(True), Item.quantity == 0)


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def list_items(
    db: Session,
    business_id: str,
    category: Optional[str] = None,
    low_stock_only: bool = False,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort_by: Optional[str] = None,
    sort_dir: Optional[str] = None,
) -> Dict[str, Any]:
    page = max(1, int(page or 1))
    page_size = min(MAX_PAGE_SIZE, max(1, int(page_size or DEFAULT_PAGE_SIZE)))

    q = db.query(Item).filter(Item.business_id == business_id)
    if category:
        q = q.filter(Item.category == category)
    if low_stock_only:
        q = q.filter(_is_low())
    if search:
        pattern = _like_pattern(search.strip())
        q = q.filter(
            or_(
                Item.name.ilike(pattern, escape="\\"),
                Item.sku.ilike(pattern, escape="\\"),
                Item.category.ilike(pattern, escape="\\"),
            )
        )
    total = q.count()

    desc = (sort_dir or "").lower() != "asc"
    if sort_by == "name":
        order = [Item.name.desc() if desc else Item.name.asc()]
    elif sort_by == "quantity":
        order = [Item.quantity.desc() if desc else Item.quantity.asc(), Item.name.asc()]
    elif sort_by == "category":
        cat = func.coalesce(Item.category, "zzz")
        order = [cat.desc() if desc else cat.asc(), Item.name.asc()]
    else:
        # out of stock first, then low, then everything else
        status_rank = case((_is_out(), 0), (_is_low(), 1), else_=2)
        order = [status_rank.asc(), Item.name.asc()]
    rows = q.order_by(*order, Item.id.asc()).offset((page - 1) * page_size).limit(page_size).all()
    return {
        "items": [item_to_dict(r) for r in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": int(math.ceil(total / page_size)) if total else 0,
    }


def get_stats(db: Session, business_id: str, use_cache: bool = True) -> Dict[str, Any]:
    key = stats_cache_key(business_id)
    if use_cache:
        cached = cache_get(key)
        if cached is not None:
            return cached
    row = (
        db.query(
            func.count(Item.id),
            func.sum(case((Item.track_stock.is_(True), 1), else_=0)),
            func.sum(case((_is_low(), 1), else_=0)),
            func.sum(case((_is_out(), 1), else_=0)),
            func.max(Item.last_synced_at),
        )
        .filter(Item.business_id == business_id)
        .one()
    )
    stats = {
        "total_items": int(row[0] or 0),
        "tracked_items": int(row[1] or 0),
        "low_stock_items": int(row[2] or 0),
        "out_of_stock_items": int(row[3] or 0),
        "last_synced_at": (int(row[4]) if row[4] is not None else None),
    }
    if use_cache:
        cache_set(key, stats, ttl=STATS_CACHE_TTL)
    return stats


def list_categories(db: Session, business_id: str) -> List[str]:
    rows = (
        db.query(Item.category)
        .filter(Item.business_id == business_id, Item.category.isnot(None))
        .distinct()
        .order_by(Item.category.asc())
        .all()
    )
    return [str(r[0]) for r in rows]


def update_item_settings(
    db: Session,
    business_id: str,
    item_id: int,
    low_stock_threshold: Optional[int] = None,
    track_stock: Optional[bool] = None,
) -> Optional[Item]:
    if low_stock_threshold is not None and low_stock_threshold < 0:
        raise ValueError("low_stock_threshold must be >= 0")
    row = db.query(Item).filter(Item.id == item_id, Item.business_id == business_id).first()
    if row is None:
        return None
    if low_stock_threshold is not None:
        row.low_stock_threshold = int(low_stock_threshold)
    if track_stock is not None:
        row.track_stock = bool(track_stock)
    row.updated_at = int(time.time())
    db.commit()
    invalidate_inventory_cache(business_id)
    return row


def select_low_stock(db: Session, business_id: str) -> List[Item]:
    """Tracked items below threshold, cooldown not considered."""
    return (
        db.query(Item)
        .filter(Item.business_id == business_id, _is_low())
        .order_by(Item.quantity.asc(), Item.name.asc())
        .all()
    )


def stamp_alerted(db: Session, business_id: str, item_ids: List[int], now: int) -> None:
    if not item_ids:
        return
    db.execute(
        update(Item)
        .where(Item.business_id == business_id, Item.id.in_(item_ids))
        .values(last_alert_sent_at=now)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
