"""
Order Service — 注文集約 (Order Aggregate)

注文(Order)は集約ルートであり、会員・配送・注文明細の整合性を保証する。
逆参照(会員の注文一覧、配送の order、明細の order)は
すべて Order.create の中で一度に張られ、外部から書き換えることはできない。

状態遷移:
    ORDERED → CANCELLED  (配送完了前のキャンセル)
    CANCELLED は終端状態(再キャンセル・再有効化は不可)
"""

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from uuid import UUID

from .clock import Clock, utc_now
from .entities import Address, Delivery, DeliveryStatus, Member
from .errors import IllegalStateTransition
from .events import (
    DeliveryStatusChanged,
    DomainEvent,
    OrderCancelled,
    OrderCreated,
    OrderLine,
)
from .inventory import Item


class OrderStatus(str, Enum):
    ORDERED = "ORDERED"
    CANCELLED = "CANCELLED"


class OrderItem:
    """注文明細 — 商品・注文時の単価・数量"""

    def __init__(self, item: Item, order_price: int, quantity: int) -> None:
        if order_price < 0:
            raise ValueError(f"order_price must not be negative: {order_price}")
        if quantity <= 0:
            raise ValueError(f"quantity must be positive: {quantity}")
        self.item = item
        self.order_price = order_price
        self.quantity = quantity
        self.cancelled = False
        self._order: "Order | None" = None

    @property
    def order(self) -> "Order | None":
        return self._order

    @classmethod
    def create(
        cls,
        item: Item,
        order_price: int,
        quantity: int,
        clock: Clock = utc_now,
    ) -> "OrderItem":
        """在庫を引き当ててから明細を作る。在庫不足なら NotEnoughStock。"""
        order_item = cls(item, order_price, quantity)
        item.remove_stock(quantity, clock)
        return order_item

    def cancel(self, clock: Clock = utc_now) -> None:
        """
        明細をキャンセルし、数量分の在庫を戻す。

        配送状態は見ない(Order.cancel が先に一度だけ確認する)。
        同じ明細の二重キャンセルは在庫の二重返却になるため拒否する。
        注文に属する明細は、注文ごとキャンセルするときにしか取り消せない
        (明細だけの取り消しは注文のイベント列に残らない)。
        """
        if self.cancelled:
            raise IllegalStateTransition("order item is already cancelled")
        if self._order is not None and not self._order.is_cancelled:
            raise IllegalStateTransition(
                "an order item is cancelled only by cancelling its order"
            )
        self.item.restore_stock(self.quantity, clock)
        self.cancelled = True

    def total_price(self) -> int:
        return self.order_price * self.quantity

    def __repr__(self) -> str:
        return (
            f"OrderItem(item={self.item.name!r}, "
            f"order_price={self.order_price}, quantity={self.quantity})"
        )


class Order:
    aggregate_type = "Order"

    def __init__(self) -> None:
        self.id: UUID | None = None
        self.member: Member | None = None
        self.delivery: Delivery | None = None
        self.order_date: datetime | None = None
        self.status: OrderStatus | None = None
        self.version: int = 0
        self.pending_events: list[DomainEvent] = []
        self._order_items: list[OrderItem] = []
        self._clock: Clock = utc_now

    @property
    def order_items(self) -> tuple[OrderItem, ...]:
        return tuple(self._order_items)

    @property
    def is_cancelled(self) -> bool:
        return self.status == OrderStatus.CANCELLED

    # ── 生成メソッド ─────────────────────────────────

    @classmethod
    def create(
        cls,
        member: Member,
        delivery: Delivery,
        *order_items: OrderItem,
        clock: Clock = utc_now,
    ) -> "Order":
        """
        会員・配送情報・注文明細から注文を作る。

        引数はすべて検証してから関連を張るので、
        途中まで組み立てられた注文が外から見えることはない。
        明細 0 件は許可する(合計金額 0 の注文になる)。
        """
        if member is None:
            raise ValueError("an order requires a member")
        if delivery is None:
            raise ValueError("an order requires a delivery")
        if delivery.order is not None:
            raise ValueError("delivery already belongs to another order")
        if len({id(oi) for oi in order_items}) != len(order_items):
            raise ValueError("the same order item was passed twice")
        for oi in order_items:
            if oi.order is not None:
                raise ValueError(f"{oi!r} already belongs to another order")
            if oi.cancelled:
                raise ValueError(f"{oi!r} is already cancelled")

        order = cls()
        order._clock = clock
        order._set_member(member)
        order._set_delivery(delivery)
        for oi in order_items:
            order._add_order_item(oi)
        order.status = OrderStatus.ORDERED
        order.order_date = clock()
        return order

    # 関連を張るメソッド(逆参照も同時に設定する)

    def _set_member(self, member: Member) -> None:
        self.member = member
        member._attach_order(self)

    def _set_delivery(self, delivery: Delivery) -> None:
        self.delivery = delivery
        delivery._order = self

    def _add_order_item(self, order_item: OrderItem) -> None:
        self._order_items.append(order_item)
        order_item._order = self

    def assign_id(self, order_id: UUID) -> None:
        """永続化時に ID を割り当て、OrderCreated を記録する。"""
        if self.id is not None:
            raise ValueError(f"order already has an id: {self.id}")
        self.id = order_id
        address = self.delivery.address
        self.pending_events.append(
            OrderCreated(
                order_id=order_id,
                member_id=self.member.id,
                city=address.city,
                street=address.street,
                zipcode=address.zipcode,
                delivery_status=self.delivery.status.value,
                status=self.status.value,
                lines=[
                    OrderLine(
                        item_id=oi.item.id,
                        order_price=oi.order_price,
                        quantity=oi.quantity,
                    )
                    for oi in self._order_items
                ],
                order_date=self.order_date,
                timestamp=self._clock(),
            )
        )

    # ── ビジネスロジック ─────────────────────────────

    def cancel(self) -> None:
        """
        注文をキャンセルし、各明細の在庫を戻す。

        配送完了済みなら IllegalStateTransition。確認は変更より前に行うので、
        失敗した場合は注文も在庫も一切変わらない。
        キャンセル済みの注文も IllegalStateTransition(在庫を二重に戻さない)。
        """
        if self.delivery.status == DeliveryStatus.COMPLETE:
            raise IllegalStateTransition("a completed shipment cannot be cancelled")
        if self.is_cancelled:
            raise IllegalStateTransition("order is already cancelled")
        if any(oi.cancelled for oi in self._order_items):
            raise IllegalStateTransition("an order item is already cancelled")

        self.status = OrderStatus.CANCELLED
        for oi in self._order_items:
            oi.cancel(self._clock)

        if self.id is not None:
            self.pending_events.append(
                OrderCancelled(
                    order_id=self.id,
                    total_price=self.total_price(),
                    timestamp=self._clock(),
                )
            )

    def _delivery_status_changed(self, status: DeliveryStatus) -> None:
        if self.id is not None:
            self.pending_events.append(
                DeliveryStatusChanged(
                    order_id=self.id, status=status.value, timestamp=self._clock()
                )
            )

    # ── 照会ロジック ─────────────────────────────────

    def total_price(self) -> int:
        """全明細の合計金額。呼ぶたびに計算し直す。"""
        return sum(oi.total_price() for oi in self._order_items)

    # ── イベント適用メソッド ──────────────────────────

    def apply_order_created(
        self,
        data: dict,
        member: Member,
        items: Mapping[UUID, Item],
    ) -> None:
        self.id = UUID(data["order_id"])
        self.order_date = datetime.fromisoformat(data["order_date"])
        self.status = OrderStatus(data["status"])
        self._set_member(member)
        self._set_delivery(
            Delivery(
                Address(data["city"], data["street"], data["zipcode"]),
                DeliveryStatus(data["delivery_status"]),
            )
        )
        for line in data["lines"]:
            oi = OrderItem(items[UUID(line["item_id"])], line["order_price"], line["quantity"])
            oi.cancelled = self.is_cancelled
            self._add_order_item(oi)

    def apply_delivery_status_changed(self, data: dict) -> None:
        self.delivery.status = DeliveryStatus(data["status"])

    def apply_order_cancelled(self, _data: dict) -> None:
        # 在庫の返却は Item 側の StockRestored で記録済み
        self.status = OrderStatus.CANCELLED
        for oi in self._order_items:
            oi.cancelled = True

    def apply_event(self, event_type: str, event_data: dict) -> None:
        handler = {
            "DeliveryStatusChanged": self.apply_delivery_status_changed,
            "OrderCancelled": self.apply_order_cancelled,
        }.get(event_type)
        if handler:
            handler(event_data)

    @classmethod
    def from_events(
        cls,
        events: list[dict],
        member: Member,
        items: Mapping[UUID, Item],
        clock: Clock = utc_now,
    ) -> "Order":
        """イベント列から集約を再構築する。在庫には触れない。"""
        agg = cls()
        agg._clock = clock
        for e in events:
            if e["event_type"] == "OrderCreated":
                agg.apply_order_created(e["event_data"], member, items)
            else:
                agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg

    def __repr__(self) -> str:
        return (
            f"Order(id={self.id}, status={self.status.value if self.status else None}, "
            f"items={len(self._order_items)})"
        )
