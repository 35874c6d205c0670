"""ユニットオブワークとリポジトリのテスト"""

from datetime import timedelta
from uuid import uuid4

import pytest

from factories import FIXED_NOW, fixed_clock, make_delivery, make_item, make_member
from ordering.aggregate import Order, OrderItem, OrderStatus
from ordering.errors import ConcurrencyConflict, ItemNotFound, MemberNotFound, OrderNotFound
from ordering.unit_of_work import InMemoryUnitOfWork, SqlAlchemyUnitOfWork, UnitOfWork


async def _seed(uow):
    """会員 1 人・商品 2 つ・注文 1 件を保存し、それぞれの ID を返す。"""
    member = make_member()
    item_a, item_b = make_item(stock=10), make_item(stock=5)
    async with uow:
        uow.members.add(member)
        uow.items.add(item_a)
        uow.items.add(item_b)
        order = Order.create(
            member,
            make_delivery(),
            OrderItem(item_a, 1000, 2),
            OrderItem(item_b, 2000, 1),
            clock=fixed_clock,
        )
        uow.orders.add(order)
        await uow.commit()
    return member.id, item_a.id, item_b.id, order.id


class TestInMemoryUnitOfWork:

    @pytest.mark.asyncio
    async def test_commit_then_rehydrate(self, store):
        member_id, item_a_id, _, order_id = await _seed(InMemoryUnitOfWork(store, fixed_clock))

        uow = InMemoryUnitOfWork(store, fixed_clock)
        async with uow:
            order = await uow.orders.get(order_id)
            item_a = await uow.items.get(item_a_id)
            member = await uow.members.get(member_id)

        assert order.status == OrderStatus.ORDERED
        assert order.total_price() == 4000
        assert order.order_items[0].item is item_a
        assert order.member is member
        assert member.orders == (order,)

    @pytest.mark.asyncio
    async def test_commit_returns_committed_events(self, store):
        member = make_member()
        uow = InMemoryUnitOfWork(store, fixed_clock)
        async with uow:
            uow.members.add(member)
            committed = await uow.commit()

        assert [(c.aggregate_type, c.event.event_type) for c in committed] == [
            ("Member", "MemberRegistered"),
        ]
        assert member.version == 1
        assert member.pending_events == []

    @pytest.mark.asyncio
    async def test_leaving_without_commit_rolls_back(self, store):
        item = make_item()
        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            uow.items.add(item)

        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            with pytest.raises(ItemNotFound):
                await uow.items.get(item.id)

    @pytest.mark.asyncio
    async def test_exception_rolls_back(self, store):
        _, item_a_id, _, order_id = await _seed(InMemoryUnitOfWork(store, fixed_clock))

        with pytest.raises(RuntimeError):
            async with InMemoryUnitOfWork(store, fixed_clock) as uow:
                order = await uow.orders.get(order_id)
                order.cancel()
                raise RuntimeError("boom")

        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            order = await uow.orders.get(order_id)
            item_a = await uow.items.get(item_a_id)
        assert order.status == OrderStatus.ORDERED
        assert item_a.stock_quantity == 10

    @pytest.mark.asyncio
    async def test_identity_map_shares_items_between_orders(self, store):
        member = make_member()
        item = make_item(stock=10)
        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            uow.members.add(member)
            uow.items.add(item)
            for _ in range(2):
                uow.orders.add(
                    Order.create(member, make_delivery(), OrderItem(item, 100, 1), clock=fixed_clock)
                )
            await uow.commit()

        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            first, second = await uow.orders.list_by_member(member.id)
        assert first.order_items[0].item is second.order_items[0].item

    @pytest.mark.asyncio
    async def test_concurrent_change_is_rejected(self, store):
        _, item_a_id, _, _ = await _seed(InMemoryUnitOfWork(store, fixed_clock))

        uow1 = InMemoryUnitOfWork(store, fixed_clock)
        uow2 = InMemoryUnitOfWork(store, fixed_clock)
        async with uow1, uow2:
            (await uow1.items.get(item_a_id)).remove_stock(1, fixed_clock)
            (await uow2.items.get(item_a_id)).remove_stock(2, fixed_clock)
            await uow1.commit()
            with pytest.raises(ConcurrencyConflict):
                await uow2.commit()

        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            assert (await uow.items.get(item_a_id)).stock_quantity == 9

    @pytest.mark.asyncio
    async def test_saving_order_saves_item_from_an_earlier_unit(self, store):
        member_id, item_a_id, _, _ = await _seed(InMemoryUnitOfWork(store, fixed_clock))
        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            held_item = await uow.items.get(item_a_id)

        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            member = await uow.members.get(member_id)
            line = OrderItem.create(held_item, 1000, 3, fixed_clock)
            uow.orders.add(Order.create(member, make_delivery(), line, clock=fixed_clock))
            committed = await uow.commit()

        assert sorted(c.event.event_type for c in committed) == ["OrderCreated", "StockRemoved"]
        assert held_item.pending_events == []
        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            assert (await uow.items.get(item_a_id)).stock_quantity == 7

    @pytest.mark.asyncio
    async def test_saving_order_saves_its_member_and_items(self, store):
        member, item = make_member(), make_item(stock=10)
        order = Order.create(
            member, make_delivery(), OrderItem.create(item, 1000, 2, fixed_clock),
            clock=fixed_clock,
        )
        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            uow.orders.add(order)
            committed = await uow.commit()

        assert [(c.aggregate_type, c.event.event_type) for c in committed] == [
            ("Item", "ItemRegistered"),
            ("Item", "StockRemoved"),
            ("Member", "MemberRegistered"),
            ("Order", "OrderCreated"),
        ]
        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            rebuilt = await uow.orders.get(order.id)
        assert rebuilt.member.id == member.id
        assert rebuilt.order_items[0].item.stock_quantity == 8

    @pytest.mark.asyncio
    async def test_rows_are_stamped_with_the_unit_clock(self, store):
        later = FIXED_NOW + timedelta(days=1)
        await _seed(InMemoryUnitOfWork(store, lambda: later))

        assert store.rows
        assert {row["created_at"] for row in store.rows} == {later}

    def test_base_class_is_abstract(self):
        with pytest.raises(TypeError):
            UnitOfWork()

    @pytest.mark.asyncio
    async def test_missing_aggregates(self, store):
        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            with pytest.raises(OrderNotFound):
                await uow.orders.get(uuid4())
            with pytest.raises(MemberNotFound):
                await uow.members.get(uuid4())

    @pytest.mark.asyncio
    async def test_list_by_member(self, store):
        member_id, _, _, order_id = await _seed(InMemoryUnitOfWork(store, fixed_clock))
        await _seed(InMemoryUnitOfWork(store, fixed_clock))

        async with InMemoryUnitOfWork(store, fixed_clock) as uow:
            orders = await uow.orders.list_by_member(member_id)
        assert [o.id for o in orders] == [order_id]


class TestSqlAlchemyUnitOfWork:

    @pytest.mark.asyncio
    async def test_commit_then_rehydrate(self, session_factory):
        member_id, item_a_id, item_b_id, order_id = await _seed(
            SqlAlchemyUnitOfWork(session_factory, fixed_clock)
        )

        async with SqlAlchemyUnitOfWork(session_factory, fixed_clock) as uow:
            order = await uow.orders.get(order_id)

        assert order.member.id == member_id
        assert order.delivery.order is order
        assert [line.item.id for line in order.order_items] == [item_a_id, item_b_id]
        assert order.total_price() == 4000
        assert order.version == 1

    @pytest.mark.asyncio
    async def test_cancel_is_saved_as_one_unit(self, session_factory):
        _, item_a_id, item_b_id, order_id = await _seed(
            SqlAlchemyUnitOfWork(session_factory, fixed_clock)
        )

        async with SqlAlchemyUnitOfWork(session_factory, fixed_clock) as uow:
            order = await uow.orders.get(order_id)
            order.cancel()
            committed = await uow.commit()

        assert sorted(c.event.event_type for c in committed) == [
            "OrderCancelled", "StockRestored", "StockRestored",
        ]
        async with SqlAlchemyUnitOfWork(session_factory, fixed_clock) as uow:
            order = await uow.orders.get(order_id)
            item_a = await uow.items.get(item_a_id)
            item_b = await uow.items.get(item_b_id)
        assert order.status == OrderStatus.CANCELLED
        assert (item_a.stock_quantity, item_b.stock_quantity) == (12, 6)
