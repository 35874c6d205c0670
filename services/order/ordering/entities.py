"""
Order Service — 会員・住所・配送

注文集約の周辺にあるエンティティ。
会員(Member)の注文一覧と配送(Delivery)の order は逆参照であり、
書き換えは注文集約(Order)だけが行う。外部からは読み取り専用。
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from .clock import Clock, utc_now
from .errors import IllegalStateTransition
from .events import DomainEvent, MemberRegistered

if TYPE_CHECKING:
    from .aggregate import Order


@dataclass(frozen=True)
class Address:
    """住所(値オブジェクト)"""
    city: str
    street: str
    zipcode: str


class Member:
    """
    会員集約 — 注文する主体(party)。

    orders は登録順を保つ。追加は Order.create / Order.from_events からのみ。
    """

    aggregate_type = "Member"

    def __init__(self) -> None:
        self.id: UUID | None = None
        self.name: str = ""
        self.address: Address | None = None
        self.version: int = 0
        self.pending_events: list[DomainEvent] = []
        self._orders: list["Order"] = []

    @property
    def orders(self) -> tuple["Order", ...]:
        return tuple(self._orders)

    @classmethod
    def register(
        cls,
        member_id: UUID,
        name: str,
        address: Address,
        clock: Clock = utc_now,
    ) -> "Member":
        if not name.strip():
            raise ValueError("member name must not be empty")
        event = MemberRegistered(
            member_id=member_id,
            name=name,
            city=address.city,
            street=address.street,
            zipcode=address.zipcode,
            timestamp=clock(),
        )
        member = cls()
        member.apply_member_registered(event.model_dump(mode="json"))
        member.pending_events.append(event)
        return member

    def _attach_order(self, order: "Order") -> None:
        if not any(o is order for o in self._orders):
            self._orders.append(order)

    # ── イベント適用メソッド ──────────────────────────

    def apply_member_registered(self, data: dict) -> None:
        self.id = UUID(data["member_id"])
        self.name = data["name"]
        self.address = Address(data["city"], data["street"], data["zipcode"])

    def apply_event(self, event_type: str, event_data: dict) -> None:
        if event_type == "MemberRegistered":
            self.apply_member_registered(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "Member":
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg

    def __repr__(self) -> str:
        return f"Member(id={self.id}, name={self.name!r})"


class DeliveryStatus(str, Enum):
    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"


class Delivery:
    """
    配送情報 — 注文と 1:1 で、ライフサイクルは注文に従う。

    状態遷移:
        READY → IN_PROGRESS  (出荷)
        READY / IN_PROGRESS → COMPLETE  (配送完了)
    """

    def __init__(
        self,
        address: Address,
        status: DeliveryStatus = DeliveryStatus.READY,
    ) -> None:
        self.address = address
        self.status = status
        self._order: "Order | None" = None

    @property
    def order(self) -> "Order | None":
        return self._order

    def start(self) -> None:
        self._require_active_order()
        if self.status != DeliveryStatus.READY:
            raise IllegalStateTransition(
                f"delivery cannot start from {self.status.value}"
            )
        self._change_status(DeliveryStatus.IN_PROGRESS)

    def complete(self) -> None:
        self._require_active_order()
        if self.status == DeliveryStatus.COMPLETE:
            raise IllegalStateTransition("delivery is already complete")
        self._change_status(DeliveryStatus.COMPLETE)

    def _require_active_order(self) -> None:
        if self._order is not None and self._order.is_cancelled:
            raise IllegalStateTransition("delivery of a cancelled order cannot change")

    def _change_status(self, status: DeliveryStatus) -> None:
        self.status = status
        if self._order is not None:
            self._order._delivery_status_changed(status)

    def __repr__(self) -> str:
        return f"Delivery(status={self.status.value}, address={self.address})"
