from datetime import datetime, timezone
from typing import Dict, Any, Optional
import json
import logging
import time
import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from .cache import _client as _redis_client
from . import models as dbm

logger = logging.getLogger(__name__)

EVENTS_CHANNEL = "stocksync.events"


def emit_event(name: str, payload: Dict[str, Any], db: Optional[Session] = None) -> None:
    """Best-effort domain event: log line, optional Redis publish, optional events_ledger row."""
    event = {
        "name": name,
        "ts": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    logger.info("event %s", name, extra={"event": event})
    client = _redis_client()
    if client is not None:
        try:
            client.publish(EVENTS_CHANNEL, json.dumps(event))
        except redis.RedisError:
            logger.warning("event_publish_failed", extra={"event_name": name})
    if db is None:
        return
    try:
        db.add(
            dbm.EventLedger(
                ts=int(time.time()),
                business_id=str(payload.get("business_id", "")),
                name=name,
                payload=json.dumps(payload),
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("event_ledger_write_failed", extra={"event_name": name})
