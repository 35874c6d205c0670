"""
Order Service — イベント定義

ドメインで発生した事実(イベント)を定義する。
イベントは過去形で命名し、不変(immutable)として扱う。
イベントストアにはクラス名を event_type として保存する。
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class DomainEvent(BaseModel):
    """イベントの基底クラス"""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime

    @property
    def event_type(self) -> str:
        return type(self).__name__


# ── 会員 (Member) ────────────────────────────────

class MemberRegistered(DomainEvent):
    """会員が登録された"""
    member_id: UUID
    name: str
    city: str
    street: str
    zipcode: str


# ── 商品・在庫 (Item) ────────────────────────────

class ItemRegistered(DomainEvent):
    """商品が登録された"""
    item_id: UUID
    name: str
    price: int
    stock_quantity: int


class StockRemoved(DomainEvent):
    """注文により在庫が減った"""
    item_id: UUID
    quantity: int


class StockRestored(DomainEvent):
    """注文キャンセルにより在庫が戻された"""
    item_id: UUID
    quantity: int


# ── 注文 (Order) ─────────────────────────────────

class OrderLine(BaseModel):
    """OrderCreated に含まれる注文明細"""
    model_config = ConfigDict(frozen=True)

    item_id: UUID
    order_price: int
    quantity: int


class OrderCreated(DomainEvent):
    """注文が作成された"""
    order_id: UUID
    member_id: UUID
    city: str
    street: str
    zipcode: str
    delivery_status: str
    status: str
    lines: list[OrderLine]
    order_date: datetime


class DeliveryStatusChanged(DomainEvent):
    """配送状態が変わった"""
    order_id: UUID
    status: str


class OrderCancelled(DomainEvent):
    """注文がキャンセルされた"""
    order_id: UUID
    total_price: int
