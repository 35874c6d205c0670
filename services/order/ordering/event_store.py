"""
Order Service — イベントストア

Event Sourcing の中核コンポーネント。
イベントを PostgreSQL の event_store テーブルに追記し、集約の再構築に使う。
バージョン番号による楽観的ロックで同時書き込みを防ぐ。

SqlEventStore は AsyncSession 上の実装、InMemoryEventStore はテスト用の実装。
どちらも commit() まで追記は確定しない。
"""

import json
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConcurrencyConflict


async def append_event(
    session: AsyncSession,
    aggregate_id: UUID,
    aggregate_type: str,
    event_type: str,
    event_data: dict,
    expected_version: int,
    created_at: datetime | None = None,
) -> int:
    """
    イベントをストアに追記する。
    created_at を省略すると現在時刻(UTC)。

    expected_version で楽観的ロックを実現:
    同じ aggregate_id + version の組み合わせが既に存在すると
    UNIQUE 制約違反で失敗する → ConcurrencyConflict に変換する。
    """
    new_version = expected_version + 1
    try:
        await session.execute(
            text("""
                INSERT INTO event_store
                    (aggregate_id, aggregate_type, event_type, event_data, version, created_at)
                VALUES
                    (:agg_id, :agg_type, :evt_type, :evt_data, :version, :now)
            """),
            {
                "agg_id": str(aggregate_id),
                "agg_type": aggregate_type,
                "evt_type": event_type,
                "evt_data": json.dumps(event_data, default=str),
                "version": new_version,
                "now": created_at or datetime.now(timezone.utc),
            },
        )
    except IntegrityError as e:
        # 競合したトランザクションは呼び出し側(ユニットオブワーク)が rollback する
        raise ConcurrencyConflict(aggregate_id, expected_version) from e
    return new_version


async def load_events(
    session: AsyncSession,
    aggregate_id: UUID,
) -> list[dict]:
    """
    指定した集約の全イベントをバージョン順に読み出す。
    集約を再構築（リプレイ）するために使う。
    """
    result = await session.execute(
        text("""
            SELECT event_type, event_data, version, created_at
            FROM event_store
            WHERE aggregate_id = :agg_id
            ORDER BY version ASC
        """),
        {"agg_id": str(aggregate_id)},
    )
    return [
        {
            "event_type": row.event_type,
            "event_data": _decode(row.event_data),
            "version": row.version,
            "created_at": row.created_at,
        }
        for row in result.fetchall()
    ]


async def load_events_by_type(
    session: AsyncSession,
    aggregate_type: str,
    event_type: str,
) -> list[dict]:
    """
    指定した種類のイベントを時系列順に返す(会員ごとの注文一覧など)。
    created_at が同じイベント同士はバージョン順で、それ以上の順序は付かない。
    """
    result = await session.execute(
        text("""
            SELECT aggregate_id, event_type, event_data, version, created_at
            FROM event_store
            WHERE aggregate_type = :agg_type AND event_type = :evt_type
            ORDER BY created_at ASC, version ASC
        """),
        {"agg_type": aggregate_type, "evt_type": event_type},
    )
    return [
        {
            "aggregate_id": str(row.aggregate_id),
            "event_type": row.event_type,
            "event_data": _decode(row.event_data),
            "version": row.version,
            "created_at": row.created_at,
        }
        for row in result.fetchall()
    ]


def _decode(event_data) -> dict:
    # PostgreSQL の JSONB は dict、それ以外は文字列で返る
    return json.loads(event_data) if isinstance(event_data, str) else event_data


class SqlEventStore:
    """AsyncSession を使うイベントストア"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        event_type: str,
        event_data: dict,
        expected_version: int,
        created_at: datetime | None = None,
    ) -> int:
        return await append_event(
            self.session,
            aggregate_id,
            aggregate_type,
            event_type,
            event_data,
            expected_version,
            created_at,
        )

    async def load(self, aggregate_id: UUID) -> list[dict]:
        return await load_events(self.session, aggregate_id)

    async def load_by_type(self, aggregate_type: str, event_type: str) -> list[dict]:
        return await load_events_by_type(self.session, aggregate_type, event_type)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


class InMemoryEventStore:
    """
    メモリ上のイベントストア。

    追記は commit() まで staged に置かれ、rollback() で捨てられる。
    複数のユニットオブワークで同じインスタンスを共有できる。
    """

    def __init__(self) -> None:
        self.rows: list[dict] = []
        self._staged: list[dict] = []

    def _versions(self, aggregate_id: str) -> set[int]:
        return {
            r["version"]
            for r in self.rows + self._staged
            if r["aggregate_id"] == aggregate_id
        }

    async def append(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        event_type: str,
        event_data: dict,
        expected_version: int,
        created_at: datetime | None = None,
    ) -> int:
        new_version = expected_version + 1
        if new_version in self._versions(str(aggregate_id)):
            raise ConcurrencyConflict(aggregate_id, expected_version)
        self._staged.append(
            {
                "aggregate_id": str(aggregate_id),
                "aggregate_type": aggregate_type,
                "event_type": event_type,
                # 保存時と同じく JSON を経由させ、呼び出し側の dict と切り離す
                "event_data": json.loads(json.dumps(event_data, default=str)),
                "version": new_version,
                "created_at": created_at or datetime.now(timezone.utc),
            }
        )
        return new_version

    async def load(self, aggregate_id: UUID) -> list[dict]:
        rows = [r for r in self.rows if r["aggregate_id"] == str(aggregate_id)]
        return [
            {k: r[k] for k in ("event_type", "event_data", "version", "created_at")}
            for r in sorted(rows, key=lambda r: r["version"])
        ]

    async def load_by_type(self, aggregate_type: str, event_type: str) -> list[dict]:
        return [
            {k: r[k] for k in ("aggregate_id", "event_type", "event_data", "version", "created_at")}
            for r in self.rows
            if r["aggregate_type"] == aggregate_type and r["event_type"] == event_type
        ]

    async def commit(self) -> None:
        self.rows.extend(self._staged)
        self._staged.clear()

    async def rollback(self) -> None:
        self._staged.clear()
