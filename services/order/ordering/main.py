"""
Order Service — 起動・接続の管理

DB エンジンと Redis 接続を作り、終了時に閉じる。

    async with lifespan(Settings.from_env()) as runtime:
        order = await commands.place_order(
            runtime.unit_of_work(), runtime.redis, member_id, lines,
        )
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .unit_of_work import SqlAlchemyUnitOfWork

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    engine: AsyncEngine
    async_session: sessionmaker
    redis: aioredis.Redis

    def unit_of_work(self) -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(self.async_session)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(settings: Settings):
    configure_logging(settings.log_level)
    engine = create_async_engine(settings.database_url, echo=settings.sql_echo)
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    redis_pool = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Order service started")
    try:
        yield Runtime(engine, async_session, redis_pool)
    finally:
        await redis_pool.aclose()
        await engine.dispose()
        logger.info("Order service stopped")
