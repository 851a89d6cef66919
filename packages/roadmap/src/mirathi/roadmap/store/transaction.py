"""Roadmap + 事件原子事务封装

在同一 SQLite 事务内提交 roadmap 行、完整任务集合和本次命令产生的事件，
要么全部落盘，要么全部回滚，不存在部分任务集合写入。
"""

import aiosqlite

from ..models.event import RoadmapEvent
from ..models.roadmap import ExecutorRoadmap
from .event_store import SqliteRoadmapEventStore
from .roadmap_store import SqliteRoadmapStore


async def save_roadmap_with_events(
    conn: aiosqlite.Connection,
    roadmap_store: SqliteRoadmapStore,
    event_store: SqliteRoadmapEventStore,
    roadmap: ExecutorRoadmap,
    events: list[RoadmapEvent],
) -> list[RoadmapEvent]:
    """原子提交 roadmap 与事件

    事件在写入时分配 roadmap 内连续 seq；提交成功后才更新 roadmap.version。

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        roadmap_store: RoadmapStore 实例
        event_store: EventStore 实例
        roadmap: 要保存的聚合
        events: 聚合产生的待写入事件（通常来自 roadmap.pull_events()）

    Returns:
        已分配 seq 的事件列表

    Raises:
        ConcurrencyConflictError: 版本冲突，事务已回滚
    """
    stored: list[RoadmapEvent] = []
    try:
        new_version = await roadmap_store.save(roadmap)

        next_seq = await event_store.get_next_seq(roadmap.roadmap_id)
        for offset, event in enumerate(events):
            stamped = event.model_copy(update={"seq": next_seq + offset})
            await event_store.append(stamped)
            stored.append(stamped)

        await conn.commit()
    except Exception:
        await conn.rollback()
        raise

    roadmap.version = new_version
    return stored
