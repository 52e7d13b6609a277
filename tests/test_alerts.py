import threading

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.backend.stocksync import models as dbm
from src.backend.stocksync.db import Base
from src.backend.stocksync.integrations.pos_base import RemoteStockItem
from src.backend.stocksync.inventory import store
from src.backend.stocksync.inventory.alerts import ALERT_COOLDOWN_SECONDS, AlertEngine, compose_message
from src.backend.stocksync.notifications import SenderIdentity

T = 1_750_000_000
HOUR = 3600


def _seed(db, business_id, quantities, threshold=10):
    for i, qty in enumerate(quantities, start=1):
        store.upsert_item(
            db,
            business_id,
            "clover",
            RemoteStockItem(remote_id=f"ITEM{i}", name=f"Item {i}", quantity=qty, category="Drinks"),
            threshold,
            synced_at=T - HOUR,
        )


def _engine(dispatcher, number="+15550009999"):
    return AlertEngine(dispatcher, sender=SenderIdentity(number))


def _stamps(db, business_id):
    db.expire_all()
    rows = db.query(dbm.InventoryItem).filter(dbm.InventoryItem.business_id == business_id).all()
    return {r.name: r.last_alert_sent_at for r in rows}


def test_threshold_is_strictly_below_and_untracked_never_alerts(db, make_business, dispatcher_cls):
    make_business(alerts=True)
    _seed(db, "b1", [5, 10, 2])
    untracked = db.query(dbm.InventoryItem).filter(dbm.InventoryItem.name == "Item 3").one()
    store.update_item_settings(db, "b1", untracked.id, track_stock=False)

    result = _engine(dispatcher_cls()).check_and_alert(db, "b1", now=T)
    assert [i["name"] for i in result.low_stock_items] == ["Item 1"]
    assert [i["name"] for i in result.alerted_items] == ["Item 1"]


def test_cooldown_window(db, make_business, dispatcher_cls):
    make_business(alerts=True)
    _seed(db, "b1", [3])
    dispatcher = dispatcher_cls()
    engine = _engine(dispatcher)

    assert engine.check_and_alert(db, "b1", now=T).alerts_sent == 2
    assert _stamps(db, "b1") == {"Item 1": T}

    within = engine.check_and_alert(db, "b1", now=T + HOUR)
    assert within.alerts_sent == 0
    assert within.alerted_items == []
    assert [i["name"] for i in within.low_stock_items] == ["Item 1"]
    assert len(dispatcher.sms) == 1

    after = engine.check_and_alert(db, "b1", now=T + 25 * HOUR)
    assert after.alerts_sent == 2
    assert _stamps(db, "b1") == {"Item 1": T + 25 * HOUR}


def test_cooldown_boundary_is_inclusive(db, make_business, dispatcher_cls):
    make_business(alerts=True)
    _seed(db, "b1", [3])
    engine = _engine(dispatcher_cls())
    engine.check_and_alert(db, "b1", now=T)
    assert engine.check_and_alert(db, "b1", now=T + ALERT_COOLDOWN_SECONDS - 1).alerts_sent == 0
    assert engine.check_and_alert(db, "b1", now=T + ALERT_COOLDOWN_SECONDS).alerts_sent == 2


def test_only_items_out_of_cooldown_are_batched(db, make_business, dispatcher_cls):
    make_business(alerts=True)
    _seed(db, "b1", [3, 50])
    dispatcher = dispatcher_cls()
    engine = _engine(dispatcher)
    engine.check_and_alert(db, "b1", now=T)

    store.upsert_item(db, "b1", "clover", RemoteStockItem(remote_id="ITEM2", name="Item 2", quantity=1), synced_at=T + HOUR)
    result = engine.check_and_alert(db, "b1", now=T + 2 * HOUR)
    assert [i["name"] for i in result.alerted_items] == ["Item 2"]
    assert "1 item below threshold" in dispatcher.emails[-1]["body"]
    assert dispatcher.emails[-1]["subject"] == "Low Stock Alert: 1 item needs restock"


def test_one_channel_failing_still_stamps(db, make_business, dispatcher_cls):
    make_business(alerts=True)
    _seed(db, "b1", [3])
    dispatcher = dispatcher_cls(fail={"sms"})
    result = _engine(dispatcher).check_and_alert(db, "b1", now=T)
    assert result.alerts_sent == 1
    assert len(dispatcher.emails) == 1
    assert _stamps(db, "b1") == {"Item 1": T}


def test_every_channel_failing_leaves_items_unstamped(db, make_business, dispatcher_cls):
    make_business(alerts=True)
    _seed(db, "b1", [3])
    result = _engine(dispatcher_cls(fail={"sms", "email"})).check_and_alert(db, "b1", now=T)
    assert result.alerts_sent == 0
    assert result.alerted_items == []
    assert _stamps(db, "b1") == {"Item 1": None}


def test_disabled_business_sends_nothing(db, make_business, dispatcher_cls):
    make_business(alerts=False)
    _seed(db, "b1", [0, 1])
    dispatcher = dispatcher_cls()
    result = _engine(dispatcher).check_and_alert(db, "b1", now=T)
    assert result.to_dict() == {"alerts_sent": 0, "low_stock_items": [], "alerted_items": []}
    assert dispatcher.sms == [] and dispatcher.emails == []


def test_channel_preference_is_respected(db, make_business, dispatcher_cls):
    make_business(alerts=True, channel="email")
    _seed(db, "b1", [1])
    dispatcher = dispatcher_cls()
    assert _engine(dispatcher).check_and_alert(db, "b1", now=T).alerts_sent == 1
    assert dispatcher.sms == []
    assert dispatcher.emails[0]["to"] == "owner@example.com"


def test_sms_needs_a_sender_number(db, make_business, dispatcher_cls):
    make_business(alerts=True, channel="sms")
    _seed(db, "b1", [1])
    dispatcher = dispatcher_cls()
    sender = SenderIdentity("")
    engine = AlertEngine(dispatcher, sender=sender)
    assert engine.check_and_alert(db, "b1", now=T).alerts_sent == 0
    assert _stamps(db, "b1") == {"Item 1": None}

    sender.refresh("+15550001234")
    assert engine.check_and_alert(db, "b1", now=T + 1).alerts_sent == 1
    assert dispatcher.sms[0]["from"] == "+15550001234"


def test_business_number_wins_over_default_sender(db, make_business, dispatcher_cls):
    make_business(alerts=True, channel="sms")
    business = db.get(dbm.Business, "b1")
    business.sms_from_number = "+15550007777"
    db.commit()
    _seed(db, "b1", [1])
    dispatcher = dispatcher_cls()
    _engine(dispatcher).check_and_alert(db, "b1", now=T)
    assert dispatcher.sms[0]["from"] == "+15550007777"


def test_compose_message_lists_each_item():
    subject, body = compose_message(
        "Corner Cafe",
        [
            {"name": "Oat Milk", "category": "Dairy", "quantity": 0, "threshold": 6},
            {"name": "Cups", "category": None, "quantity": 4, "threshold": 10},
        ],
    )
    assert subject == "Low Stock Alert: 2 items need restock"
    assert body.startswith("Low Stock Alert - Corner Cafe\n\n2 items below threshold:")
    assert "• Oat Milk (Dairy): 0 left (threshold: 6)" in body
    assert "• Cups: 4 left (threshold: 10)" in body
    assert body.endswith("Log in to manage inventory settings.")


def test_alert_writes_event(db, make_business, dispatcher_cls):
    make_business(alerts=True)
    _seed(db, "b1", [1])
    _engine(dispatcher_cls()).check_and_alert(db, "b1", now=T)
    names = [e.name for e in db.query(dbm.EventLedger).all()]
    assert "LowStockAlertSent" in names


def test_concurrent_checks_send_one_batch(tmp_path, dispatcher_cls):
    engine = create_engine(f"sqlite:///{tmp_path / 'alerts.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    sessions = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    s = sessions()
    s.add(
        dbm.Business(
            id="b1",
            name="Shop b1",
            phone="+15550001111",
            email="owner@example.com",
            inventory_alerts_enabled=True,
            inventory_alert_channel="both",
            inventory_default_threshold=10,
        )
    )
    s.commit()
    _seed(s, "b1", [2])
    s.close()

    dispatcher = dispatcher_cls()
    alert_engine = _engine(dispatcher)
    barrier = threading.Barrier(4)
    results = []

    def worker():
        session = sessions()
        try:
            barrier.wait(5)
            results.append(alert_engine.check_and_alert(session, "b1", now=T).alerts_sent)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    engine.dispose()

    assert sorted(results) == [0, 0, 0, 2]
    assert len(dispatcher.sms) == 1
    assert len(dispatcher.emails) == 1


def test_compose_message_single_item_subject():
    subject, body = compose_message("Corner Cafe", [{"name": "Cups", "category": None, "quantity": 1, "threshold": 10}])
    assert subject == "Low Stock Alert: 1 item needs restock"
    assert "1 item below threshold:" in body
