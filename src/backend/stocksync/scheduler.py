from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional
import logging
import os
import time

from .inventory.errors import InventoryError
from .metrics_counters import SCHED_TICKS
from .services import Services, get_services

logger = logging.getLogger(__name__)

SCHEDULER_SYNC_WORKERS = int(os.getenv("SCHEDULER_SYNC_WORKERS", "4"))
SCHEDULER_INTERVAL_SECONDS = float(os.getenv("SCHEDULER_INTERVAL_SECONDS", "900"))


def _sync_one(services: Services, business_id: str) -> str:
    db = services.session_factory()
    try:
        return services.sync.run(db, business_id).status
    except InventoryError as exc:
        logger.warning("scheduled_sync_skipped", extra={"business_id": business_id, "reason": str(exc)})
        return "skipped"
    except Exception:
        db.rollback()
        logger.exception("scheduled_sync_failed", extra={"business_id": business_id})
        return "error"
    finally:
        db.close()


def run_inventory_tick(services: Optional[Services] = None, max_workers: Optional[int] = None) -> Dict[str, str]:
    """Sync every connected business once; one session per tenant, tenants in parallel."""
    services = services or get_services()
    db = services.session_factory()
    try:
        business_ids = services.credentials.connected_business_ids(db)
    finally:
        db.close()
    results: Dict[str, str] = {}
    if business_ids:
        workers = max(1, min(max_workers or SCHEDULER_SYNC_WORKERS, len(business_ids)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for business_id, status in zip(business_ids, pool.map(lambda b: _sync_one(services, b), business_ids)):
                results[business_id] = status
    SCHED_TICKS.labels(scope="inventory").inc()
    logger.info("inventory_tick_completed", extra={"businesses": len(business_ids)})
    return results


def run_forever(interval_seconds: float = SCHEDULER_INTERVAL_SECONDS) -> None:
    logger.info("Inventory scheduler started")
    while True:
        try:
            run_inventory_tick()
        except Exception:
            logger.exception("inventory_tick_error")
        time.sleep(interval_seconds)


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=logging.INFO)
    run_forever()
