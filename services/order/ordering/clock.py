"""
Order Service — 時刻の供給元

注文日時などの「現在時刻」は呼び出し側から差し替えられるようにする。
テストでは固定時刻を返す関数を渡す。
"""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
