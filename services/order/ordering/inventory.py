"""
Order Service — 商品集約 (Item Aggregate)

在庫数をイベントから再構築する。
注文時に在庫を減らし(remove_stock)、キャンセル時に戻す(restore_stock)。

apply_xxx メソッド: 各イベントを適用して状態を変更する
"""

from uuid import UUID

from .clock import Clock, utc_now
from .errors import NotEnoughStock
from .events import DomainEvent, ItemRegistered, StockRemoved, StockRestored


class Item:
    aggregate_type = "Item"

    def __init__(self) -> None:
        self.id: UUID | None = None
        self.name: str = ""
        self.price: int = 0
        self.stock_quantity: int = 0
        self.version: int = 0
        self.pending_events: list[DomainEvent] = []

    @classmethod
    def register(
        cls,
        item_id: UUID,
        name: str,
        price: int,
        stock_quantity: int,
        clock: Clock = utc_now,
    ) -> "Item":
        """新しい商品を登録する。"""
        if price < 0:
            raise ValueError(f"price must not be negative: {price}")
        if stock_quantity < 0:
            raise ValueError(f"stock_quantity must not be negative: {stock_quantity}")
        event = ItemRegistered(
            item_id=item_id,
            name=name,
            price=price,
            stock_quantity=stock_quantity,
            timestamp=clock(),
        )
        item = cls()
        item._record(event)
        return item

    # ── ビジネスロジック ─────────────────────────────

    def remove_stock(self, quantity: int, clock: Clock = utc_now) -> None:
        """在庫を減らす。不足していれば NotEnoughStock。"""
        _require_positive(quantity)
        rest = self.stock_quantity - quantity
        if rest < 0:
            raise NotEnoughStock(self.id, quantity, self.stock_quantity)
        self._record(
            StockRemoved(item_id=self.id, quantity=quantity, timestamp=clock())
        )

    def restore_stock(self, quantity: int, clock: Clock = utc_now) -> None:
        """在庫を戻す。上限はない。"""
        _require_positive(quantity)
        self._record(
            StockRestored(item_id=self.id, quantity=quantity, timestamp=clock())
        )

    def _record(self, event: DomainEvent) -> None:
        self.apply_event(event.event_type, event.model_dump(mode="json"))
        self.pending_events.append(event)

    # ── イベント適用メソッド ──────────────────────────

    def apply_item_registered(self, data: dict) -> None:
        self.id = UUID(data["item_id"])
        self.name = data["name"]
        self.price = data["price"]
        self.stock_quantity = data["stock_quantity"]

    def apply_stock_removed(self, data: dict) -> None:
        self.stock_quantity -= data["quantity"]

    def apply_stock_restored(self, data: dict) -> None:
        self.stock_quantity += data["quantity"]

    def apply_event(self, event_type: str, event_data: dict) -> None:
        handler = {
            "ItemRegistered": self.apply_item_registered,
            "StockRemoved": self.apply_stock_removed,
            "StockRestored": self.apply_stock_restored,
        }.get(event_type)
        if handler:
            handler(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "Item":
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg

    def __repr__(self) -> str:
        return f"Item(id={self.id}, name={self.name!r}, stock={self.stock_quantity})"


def _require_positive(quantity: int) -> None:
    if quantity <= 0:
        raise ValueError(f"quantity must be positive: {quantity}")
