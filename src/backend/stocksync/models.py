from typing import Optional
from sqlalchemy import String, Boolean, Integer, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base
import time


class Business(Base):
    __tablename__ = "businesses"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256))
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    sms_from_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    inventory_alerts_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    inventory_alert_channel: Mapped[str] = mapped_column(String(16), default="both")  # sms|email|both
    inventory_default_threshold: Mapped[int] = mapped_column(Integer, default=10)
    created_at: Mapped[int] = mapped_column(Integer, default=lambda: int(time.time()))


class ConnectedAccount(Base):
    __tablename__ = "connected_accounts"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String(64), ForeignKey("businesses.id"), index=True)
    provider: Mapped[str] = mapped_column(String(32), index=True)  # clover|square
    merchant_id: Mapped[str] = mapped_column(String(128), index=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    environment: Mapped[str] = mapped_column(String(16), default="production")  # production|sandbox
    access_token_enc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(24), default="connected")  # connected|revoked
    connected_at: Mapped[int] = mapped_column(Integer, default=lambda: int(time.time()))


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("business_id", "provider", "provider_item_id", name="uq_inventory_item_remote"),
    )
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String(64), ForeignKey("businesses.id"), index=True)
    provider: Mapped[str] = mapped_column(String(32))
    provider_item_id: Mapped[str] = mapped_column(String(128))
    name: Mapped[str] = mapped_column(String(256))
    sku: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(256), index=True, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=10)
    unit_price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minor units (cents)
    track_stock: Mapped[bool] = mapped_column(Boolean, default=True)
    last_alert_sent_at: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_synced_at: Mapped[int] = mapped_column(Integer, default=lambda: int(time.time()))
    created_at: Mapped[int] = mapped_column(Integer, default=lambda: int(time.time()))
    updated_at: Mapped[int] = mapped_column(Integer, default=lambda: int(time.time()))


class InventorySyncRun(Base):
    __tablename__ = "inventory_sync_runs"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    provider: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16))  # ok|partial|error
    synced: Mapped[int] = mapped_column(Integer, default=0)
    created: Mapped[int] = mapped_column(Integer, default=0)
    updated: Mapped[int] = mapped_column(Integer, default=0)
    pages: Mapped[int] = mapped_column(Integer, default=0)
    alerts_sent: Mapped[int] = mapped_column(Integer, default=0)
    errors_json: Mapped[str] = mapped_column(Text, default="[]")
    started_at: Mapped[int] = mapped_column(Integer)
    finished_at: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class EventLedger(Base):
    __tablename__ = "events_ledger"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    ts: Mapped[int] = mapped_column(Integer)
    business_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(64))
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer, default=lambda: int(time.time()))
