"""
Order Service — 設定

各サービスと同じく環境変数から読む。
DATABASE_URL は必須、それ以外はデフォルト値あり。
"""

import os
from collections.abc import Mapping

from pydantic import BaseModel


class Settings(BaseModel):
    database_url: str
    redis_url: str = "redis://localhost:6379"
    log_level: str = "INFO"
    sql_echo: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            database_url=env["DATABASE_URL"],
            redis_url=env.get("REDIS_URL", "redis://localhost:6379"),
            log_level=env.get("LOG_LEVEL", "INFO"),
            sql_echo=env.get("SQL_ECHO", "false").lower() in ("1", "true", "yes"),
        )
