"""
Order Service — コマンドハンドラ (Write 側)

コマンドは状態を変更する操作。流れはどれも同じ:

1. ユニットオブワークで集約を読み込む
2. 集約のメソッドでビジネスルールを適用する
3. コミット(失敗したら何も保存されない)
4. コミットできたイベントを Redis Pub/Sub で発行する（他サービスへ通知）
"""

import json
import logging
from collections.abc import Sequence
from uuid import UUID, uuid4

import redis.asyncio as aioredis

from .aggregate import Order, OrderItem
from .clock import Clock
from .entities import Address, Delivery, Member
from .errors import IllegalStateTransition
from .inventory import Item
from .unit_of_work import CommittedEvent, UnitOfWork

logger = logging.getLogger(__name__)

CHANNELS = {
    "Order": "order_events",
    "Item": "inventory_events",
    "Member": "member_events",
}


async def register_member(
    uow: UnitOfWork,
    redis: aioredis.Redis,
    name: str,
    address: Address,
) -> Member:
    """会員登録コマンド"""
    async with uow:
        member = Member.register(uuid4(), name, address, uow.clock)
        uow.members.add(member)
        committed = await uow.commit()

    await _publish(redis, committed)
    logger.info("Member registered: %s", member.id)
    return member


async def register_item(
    uow: UnitOfWork,
    redis: aioredis.Redis,
    name: str,
    price: int,
    stock_quantity: int,
) -> Item:
    """商品登録コマンド"""
    async with uow:
        item = Item.register(uuid4(), name, price, stock_quantity, uow.clock)
        uow.items.add(item)
        committed = await uow.commit()

    await _publish(redis, committed)
    logger.info("Item registered: %s (stock=%d)", item.id, item.stock_quantity)
    return item


async def place_order(
    uow: UnitOfWork,
    redis: aioredis.Redis,
    member_id: UUID,
    lines: Sequence[tuple[UUID, int]],
    clock: Clock | None = None,
) -> Order:
    """
    注文作成コマンド

    lines は (商品ID, 数量) の並び。各明細は商品の現在価格で作られ、
    在庫を減らす。配送先は会員の住所。
    どれか 1 つでも在庫不足なら NotEnoughStock で、何も保存されない。
    clock を省略するとユニットオブワークの clock を使う。
    """
    if not lines:
        raise ValueError("an order needs at least one line")
    clock = clock or uow.clock

    async with uow:
        member = await uow.members.get(member_id)
        order_items = []
        for item_id, quantity in lines:
            item = await uow.items.get(item_id)
            order_items.append(OrderItem.create(item, item.price, quantity, clock))

        delivery = Delivery(member.address)
        order = Order.create(member, delivery, *order_items, clock=clock)
        uow.orders.add(order)
        committed = await uow.commit()

    await _publish(redis, committed)
    logger.info(
        "Order placed: %s (member=%s, total=%d)",
        order.id, member_id, order.total_price(),
    )
    return order


async def cancel_order(
    uow: UnitOfWork,
    redis: aioredis.Redis,
    order_id: UUID,
) -> Order:
    """
    注文キャンセルコマンド

    注文の状態変更と全明細の在庫返却を 1 トランザクションで保存する。
    配送完了済み・キャンセル済みなら IllegalStateTransition。
    """
    async with uow:
        order = await uow.orders.get(order_id)
        try:
            order.cancel()
        except IllegalStateTransition as e:
            logger.warning("Order %s cannot be cancelled: %s", order_id, e)
            raise
        committed = await uow.commit()

    await _publish(redis, committed)
    logger.info("Order cancelled: %s", order_id)
    return order


async def start_delivery(
    uow: UnitOfWork,
    redis: aioredis.Redis,
    order_id: UUID,
) -> Order:
    """出荷コマンド(READY → IN_PROGRESS)"""
    async with uow:
        order = await uow.orders.get(order_id)
        order.delivery.start()
        committed = await uow.commit()

    await _publish(redis, committed)
    logger.info("Delivery started: %s", order_id)
    return order


async def complete_delivery(
    uow: UnitOfWork,
    redis: aioredis.Redis,
    order_id: UUID,
) -> Order:
    """配送完了コマンド(以後この注文はキャンセルできない)"""
    async with uow:
        order = await uow.orders.get(order_id)
        order.delivery.complete()
        committed = await uow.commit()

    await _publish(redis, committed)
    logger.info("Delivery completed: %s", order_id)
    return order


async def _publish(redis: aioredis.Redis, committed: list[CommittedEvent]) -> None:
    """コミット済みのイベントを集約の種類ごとのチャネルに発行する。"""
    for c in committed:
        await redis.publish(CHANNELS[c.aggregate_type], json.dumps({
            "event_type": c.event.event_type,
            "data": c.event.model_dump(mode="json"),
        }, default=str))
