from typing import Any
from prometheus_client import Counter

SYNC_RUNS = Counter("stocksync_inventory_sync_runs_total", "Inventory sync runs", ["provider", "status"])
ITEMS_SYNCED = Counter("stocksync_inventory_items_synced_total", "Inventory items upserted by sync runs", ["provider"])
WEBHOOK_EVENTS = Counter("stocksync_webhook_events_total", "Webhook events processed", ["provider", "status"])
LOW_STOCK_ALERTS = Counter("stocksync_low_stock_alerts_total", "Low-stock alert dispatches", ["channel", "status"])
SCHED_TICKS = Counter("stocksync_scheduler_ticks_total", "Scheduler ticks processed", ["scope"])


def sum_counter(counter: Any) -> int:
    """Total across all label children."""
    total = 0.0
    for metric in counter.collect():
        for sample in metric.samples:
            if sample.name.endswith("_total"):
                total += float(sample.value)
    return int(total)
