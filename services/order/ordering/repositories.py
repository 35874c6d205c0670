"""
Order Service — リポジトリ

集約を ID で読み込み(イベントのリプレイ)、新しい集約を登録する。
ユニットオブワークごとに ID → オブジェクトの対応(identity map)を持つので、
複数の注文が同じ商品を参照していても Item は 1 つのオブジェクトになる。

会員 → 注文一覧は OrderCreated イベントから導出する(list_by_member)。
"""

from uuid import UUID, uuid4

from .aggregate import Order
from .clock import Clock, utc_now
from .entities import Member
from .errors import ItemNotFound, MemberNotFound, NotFound, OrderNotFound
from .inventory import Item


class _EventSourcedRepository:
    not_found = NotFound

    def __init__(self, store) -> None:
        self.store = store
        self.seen: dict[UUID, object] = {}

    async def _load(self, aggregate_id: UUID) -> list[dict]:
        events = await self.store.load(aggregate_id)
        if not events:
            raise self.not_found(aggregate_id)
        return events

    def _track(self, aggregate) -> None:
        self.seen[aggregate.id] = aggregate


class MemberRepository(_EventSourcedRepository):
    not_found = MemberNotFound

    async def get(self, member_id: UUID) -> Member:
        if member_id not in self.seen:
            self._track(Member.from_events(await self._load(member_id)))
        return self.seen[member_id]

    def add(self, member: Member) -> None:
        self._track(member)


class ItemRepository(_EventSourcedRepository):
    not_found = ItemNotFound

    async def get(self, item_id: UUID) -> Item:
        if item_id not in self.seen:
            self._track(Item.from_events(await self._load(item_id)))
        return self.seen[item_id]

    def add(self, item: Item) -> None:
        self._track(item)


class OrderRepository(_EventSourcedRepository):
    not_found = OrderNotFound

    def __init__(
        self,
        store,
        members: MemberRepository,
        items: ItemRepository,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(store)
        self.members = members
        self.items = items
        self.clock = clock

    async def get(self, order_id: UUID) -> Order:
        if order_id in self.seen:
            return self.seen[order_id]

        events = await self._load(order_id)
        created = events[0]["event_data"]
        member = await self.members.get(UUID(created["member_id"]))
        items = {}
        for line in created["lines"]:
            item_id = UUID(line["item_id"])
            items[item_id] = await self.items.get(item_id)

        order = Order.from_events(events, member, items, self.clock)
        self._track(order)
        return order

    def add(self, order: Order) -> UUID:
        """新しい注文に ID を割り当てて追跡する。"""
        order.assign_id(uuid4())
        self._track(order)
        return order.id

    async def list_by_member(self, member_id: UUID) -> list[Order]:
        """
        会員の注文一覧(注文順)。

        全会員の OrderCreated を読んで会員 ID で絞り込むので、
        注文の総数に比例して遅くなる。
        """
        created = await self.store.load_by_type(Order.aggregate_type, "OrderCreated")
        orders = [
            await self.get(UUID(e["aggregate_id"]))
            for e in created
            if e["event_data"]["member_id"] == str(member_id)
        ]
        # まだコミットしていない注文も含める
        for order in self.seen.values():
            if order.member.id == member_id and order not in orders:
                orders.append(order)
        return orders
