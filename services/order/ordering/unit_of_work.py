"""
Order Service — ユニットオブワーク (Unit of Work)

1 つのコマンドで変更した集約(注文・商品・会員)のイベントを
まとめて 1 トランザクションでイベントストアに追記する。

    async with uow:
        order = await uow.orders.get(order_id)
        order.cancel()
        committed = await uow.commit()

commit() せずにブロックを抜けた場合や例外が起きた場合は rollback され、
何も保存されない(キャンセルの全か無か)。
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from .clock import Clock, utc_now
from .event_store import InMemoryEventStore, SqlEventStore
from .events import DomainEvent
from .repositories import ItemRepository, MemberRepository, OrderRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommittedEvent:
    """コミット済みのイベント(発行用)"""
    aggregate_type: str
    event: DomainEvent


class UnitOfWork(ABC):
    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock
        self.store = None
        self._committed = False

    @abstractmethod
    async def _open_store(self):
        """イベントストアを開いて返す。"""

    async def _close_store(self) -> None:
        pass

    async def __aenter__(self) -> "UnitOfWork":
        self.store = await self._open_store()
        self.members = MemberRepository(self.store)
        self.items = ItemRepository(self.store)
        self.orders = OrderRepository(self.store, self.members, self.items, self.clock)
        self._committed = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if not self._committed:
                await self.rollback()
        finally:
            await self._close_store()

    def _tracked(self) -> list:
        """
        保存対象の集約。

        注文を保存するときは、その会員と明細の商品も一緒に保存する
        (リポジトリを通さずに渡された Item の在庫変更も落とさない)。
        同じオブジェクトは一度だけ数える。
        商品 → 会員 → 注文の順に書く(注文の再構築は商品と会員に依存する)。
        """
        orders = list(self.orders.seen.values())
        items = list(self.items.seen.values())
        members = list(self.members.seen.values())
        for order in orders:
            items.extend(oi.item for oi in order.order_items)
            members.append(order.member)

        tracked, ids = [], set()
        for agg in [*items, *members, *orders]:
            if id(agg) not in ids:
                ids.add(id(agg))
                tracked.append(agg)
        return tracked

    async def commit(self) -> list[CommittedEvent]:
        """
        追跡中の集約の未保存イベントをすべて追記してコミットする。

        バージョンが古ければ ConcurrencyConflict(何も保存されない)。
        """
        committed: list[CommittedEvent] = []
        versions: list[tuple[object, int]] = []
        now = self.clock()
        for agg in self._tracked():
            version = agg.version
            for event in agg.pending_events:
                version = await self.store.append(
                    agg.id,
                    agg.aggregate_type,
                    event.event_type,
                    event.model_dump(mode="json"),
                    version,
                    created_at=now,
                )
                committed.append(CommittedEvent(agg.aggregate_type, event))
            versions.append((agg, version))

        await self.store.commit()
        self._committed = True

        # 確定してから集約側の状態を進める
        for agg, version in versions:
            agg.version = version
            agg.pending_events.clear()

        logger.debug("Committed %d events", len(committed))
        return committed

    async def rollback(self) -> None:
        await self.store.rollback()


class SqlAlchemyUnitOfWork(UnitOfWork):
    """AsyncSession 上のユニットオブワーク"""

    def __init__(self, session_factory: sessionmaker, clock: Clock = utc_now) -> None:
        super().__init__(clock)
        self.session_factory = session_factory
        self.session: AsyncSession | None = None

    async def _open_store(self) -> SqlEventStore:
        self.session = self.session_factory()
        return SqlEventStore(self.session)

    async def _close_store(self) -> None:
        await self.session.close()


class InMemoryUnitOfWork(UnitOfWork):
    """メモリ上のユニットオブワーク(テスト用)"""

    def __init__(
        self,
        store: InMemoryEventStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(clock)
        self.event_store = store if store is not None else InMemoryEventStore()

    async def _open_store(self) -> InMemoryEventStore:
        return self.event_store
