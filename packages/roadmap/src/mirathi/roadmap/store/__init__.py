"""Roadmap Store -- SQLite 持久化实现

roadmap、任务集合与事件共享同一个 aiosqlite 连接，
以便 save_roadmap_with_events 在单个事务内完成写入。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from .event_store import SqliteRoadmapEventStore
from .roadmap_store import SqliteRoadmapStore
from .sqlite_init import init_db
from .transaction import save_roadmap_with_events


class StoreGroup:
    """共享连接的 Store 组合"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.roadmap_store = SqliteRoadmapStore(conn)
        self.event_store = SqliteRoadmapEventStore(conn)

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(db_path: str | Path) -> StoreGroup:
    """打开（必要时创建）数据库并初始化表结构

    调用方负责 close()；短生命周期场景用 open_store_group。
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    try:
        await init_db(conn)
    except Exception:
        await conn.close()
        raise
    return StoreGroup(conn)


@asynccontextmanager
async def open_store_group(db_path: str | Path) -> AsyncIterator[StoreGroup]:
    """async with 形式的 create_store_group，退出时关闭连接"""
    group = await create_store_group(db_path)
    try:
        yield group
    finally:
        await group.close()


__all__ = [
    "SqliteRoadmapEventStore",
    "SqliteRoadmapStore",
    "StoreGroup",
    "create_store_group",
    "init_db",
    "open_store_group",
    "save_roadmap_with_events",
]
