"""
Order Service — ドメイン例外

業務ルール違反はすべてここで定義した例外として呼び出し側に伝える。
引数の誤り(数量が 0 以下など)は組み込みの ValueError を使う。
"""

from uuid import UUID


class OrderingError(Exception):
    """注文ドメインの例外の基底クラス"""


class IllegalStateTransition(OrderingError):
    """許可されていない状態遷移(配送完了後のキャンセルなど)"""


class NotEnoughStock(OrderingError):
    """在庫が不足している"""

    def __init__(self, item_id: UUID | None, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock: requested={requested}, available={available}"
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available


class NotFound(OrderingError):
    """集約が見つからない"""

    kind = "Aggregate"

    def __init__(self, aggregate_id: UUID) -> None:
        super().__init__(f"{self.kind} not found: {aggregate_id}")
        self.aggregate_id = aggregate_id


class MemberNotFound(NotFound):
    kind = "Member"


class ItemNotFound(NotFound):
    kind = "Item"


class OrderNotFound(NotFound):
    kind = "Order"


class ConcurrencyConflict(OrderingError):
    """
    楽観的ロックの競合。

    同じ aggregate_id + version のイベントが既に存在する場合に発生する。
    """

    def __init__(self, aggregate_id: UUID, expected_version: int) -> None:
        super().__init__(
            f"Concurrent modification of {aggregate_id} "
            f"(expected version {expected_version})"
        )
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
