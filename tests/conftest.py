import json
import os
from types import SimpleNamespace

os.environ.setdefault("DEV_AUTH_ALLOW", "1")
os.environ.setdefault("SECRET_KEY", "test_secret_key")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.backend.stocksync import cache, rate_limit
from src.backend.stocksync import models as dbm
from src.backend.stocksync.crypto import encrypt_token
from src.backend.stocksync.db import Base
from src.backend.stocksync.inventory.errors import ChannelDispatchFailure
from src.backend.stocksync.integrations.pos_base import get_adapter
from src.backend.stocksync.notifications import NotificationDispatcher

NOW = 1_750_000_000


@pytest.fixture(autouse=True)
def _isolated_cache(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setattr(cache, "_client_singleton", None)
    cache._mem.clear()
    rate_limit._rl_cache.clear()
    yield
    cache._mem.clear()
    rate_limit._rl_cache.clear()


@pytest.fixture()
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def make_business(db):
    def _make(
        business_id="b1",
        provider="clover",
        merchant_id="m1",
        alerts=False,
        channel="both",
        threshold=10,
        phone="+15550001111",
        email="owner@example.com",
        connected=True,
    ):
        db.add(
            dbm.Business(
                id=business_id,
                name=f"Shop {business_id}",
                phone=phone,
                email=email,
                inventory_alerts_enabled=alerts,
                inventory_alert_channel=channel,
                inventory_default_threshold=threshold,
            )
        )
        if connected:
            db.add(
                dbm.ConnectedAccount(
                    business_id=business_id,
                    provider=provider,
                    merchant_id=merchant_id,
                    location_id=("L1" if provider == "square" else None),
                    access_token_enc=encrypt_token(f"tok-{business_id}"),
                )
            )
        db.commit()
        return business_id

    return _make


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.sms = []
        self.emails = []

    def send_sms(self, to_number, body, from_number):
        if "sms" in self.fail:
            raise ChannelDispatchFailure("sms", "carrier rejected")
        self.sms.append({"to": to_number, "body": body, "from": from_number})
        return {"status": "queued"}

    def send_email(self, to, subject, body):
        if "email" in self.fail:
            raise ChannelDispatchFailure("email", "sendgrid 500")
        self.emails.append({"to": to, "subject": subject, "body": body})
        return {"status": "sent"}


@pytest.fixture()
def dispatcher_cls():
    return RecordingDispatcher


def clover_item(i, qty, **overrides):
    item = {
        "id": f"ITEM{i}",
        "name": f"Item {i}",
        "sku": f"SKU-{i}",
        "price": 100 * i,
        "hidden": False,
        "itemStock": {"quantity": qty},
        "categories": {"elements": [{"id": "C1", "name": "Drinks"}]},
    }
    item.update(overrides)
    return item


class FakeClover:
    """In-memory stand-in for the Clover v3 items endpoints."""

    def __init__(self, items, throttle=0, retry_after=None, fail_at_offset=None, failing_merchants=(), garbage_at_offset=None):
        self.items = items
        self.throttle = throttle
        self.retry_after = retry_after
        self.fail_at_offset = fail_at_offset
        self.garbage_at_offset = garbage_at_offset
        self.failing_merchants = set(failing_merchants)
        self.calls = []

    def handler(self, request):
        self.calls.append(request)
        if self.throttle > 0:
            self.throttle -= 1
            headers = {"Retry-After": self.retry_after} if self.retry_after else {}
            return httpx.Response(429, headers=headers, json={"message": "Too Many Requests"})
        parts = request.url.path.strip("/").split("/")
        merchant_id = parts[2]
        if merchant_id in self.failing_merchants:
            return httpx.Response(500, json={"message": "internal"})
        if parts[-1] == "items":
            offset = int(request.url.params.get("offset", 0))
            limit = int(request.url.params.get("limit", 100))
            if self.fail_at_offset is not None and offset >= self.fail_at_offset:
                return httpx.Response(502, text="bad gateway")
            if self.garbage_at_offset is not None and offset >= self.garbage_at_offset:
                return httpx.Response(200, text="<html>gateway</html>")
            return httpx.Response(200, json={"elements": self.items[offset:offset + limit]})
        for it in self.items:
            if it["id"] == parts[-1]:
                return httpx.Response(200, json=it)
        return httpx.Response(404, json={"message": "Not Found"})

    def adapter_factory(self, sleeps=None):
        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        sleep = sleeps.append if sleeps is not None else (lambda seconds: None)
        return lambda provider: get_adapter(provider, client=client, sleep=sleep)


def square_item(i, category_id=None, archived=False, deleted=False, variations=1):
    item_id = f"SQITEM{i}"
    return {
        "type": "ITEM",
        "id": item_id,
        "is_deleted": deleted,
        "item_data": {
            "name": f"Square {i}",
            "category_id": category_id,
            "is_archived": archived,
            "variations": [
                {
                    "type": "ITEM_VARIATION",
                    "id": f"SQVAR{i}-{v}",
                    "item_variation_data": {
                        "item_id": item_id,
                        "sku": f"SQ-SKU-{i}",
                        "price_money": {"amount": 250, "currency": "USD"},
                    },
                }
                for v in range(variations)
            ],
        },
    }


def square_category(cat_id, name):
    return {"type": "CATEGORY", "id": cat_id, "category_data": {"name": name}}


class FakeSquare:
    """In-memory stand-in for Square catalog/list, catalog/object and counts batch-retrieve."""

    def __init__(self, objects, counts, page_size=None):
        self.objects = objects
        self.counts = counts
        self.page_size = page_size
        self.calls = []

    def _categories(self):
        return [o for o in self.objects if o["type"] == "CATEGORY"]

    def handler(self, request):
        self.calls.append(request)
        path = request.url.path
        if path == "/v2/catalog/list":
            start = int(request.url.params.get("cursor") or 0)
            size = self.page_size or len(self.objects)
            body = {"objects": self.objects[start:start + size]}
            if start + size < len(self.objects):
                body["cursor"] = str(start + size)
            return httpx.Response(200, json=body)
        if path == "/v2/inventory/counts/batch-retrieve":
            ids = set(json.loads(request.content)["catalog_object_ids"])
            return httpx.Response(200, json={"counts": [c for c in self.counts if c["catalog_object_id"] in ids]})
        if path.startswith("/v2/catalog/object/"):
            oid = path.rsplit("/", 1)[-1]
            for obj in self.objects:
                if obj["id"] == oid:
                    return httpx.Response(200, json={"object": obj, "related_objects": self._categories()})
                for var in (obj.get("item_data") or {}).get("variations") or []:
                    if var["id"] == oid:
                        return httpx.Response(200, json={"object": var, "related_objects": [obj] + self._categories()})
            return httpx.Response(404, json={"errors": [{"code": "NOT_FOUND"}]})
        return httpx.Response(404, json={})

    def adapter_factory(self, sleeps=None):
        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        sleep = sleeps.append if sleeps is not None else (lambda seconds: None)
        return lambda provider: get_adapter(provider, client=client, sleep=sleep)


@pytest.fixture()
def fake_clover():
    return FakeClover


@pytest.fixture()
def fake_square():
    return FakeSquare


@pytest.fixture()
def catalog():
    """Builders for provider payloads: ``catalog.clover_item(i, qty)`` etc."""
    return SimpleNamespace(
        clover_item=clover_item,
        square_item=square_item,
        square_category=square_category,
        now=NOW,
    )
