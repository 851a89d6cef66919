"""RoadmapEventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
seq 同一 roadmap 内严格单调递增。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import ActorType, EventType
from ..models.event import RoadmapEvent


class SqliteRoadmapEventStore:
    """RoadmapEventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append(self, event: RoadmapEvent) -> None:
        """追加事件（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO roadmap_events (event_id, roadmap_id, seq, ts, type,
                                        actor, actor_id, task_id, payload)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.roadmap_id,
                event.seq,
                event.ts.isoformat(),
                event.type.value,
                event.actor.value,
                event.actor_id,
                event.task_id,
                json.dumps(event.payload, ensure_ascii=False),
            ),
        )

    async def get_next_seq(self, roadmap_id: str) -> int:
        """获取指定 roadmap 的下一个 seq（MAX+1）

        在事务内调用以确保原子性。
        """
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(seq), 0) FROM roadmap_events WHERE roadmap_id = ?",
            (roadmap_id,),
        )
        row = await cursor.fetchone()
        return (row[0] if row else 0) + 1

    async def get_events_for_roadmap(self, roadmap_id: str) -> list[RoadmapEvent]:
        """查询指定 roadmap 的所有事件，按 seq 正序"""
        cursor = await self._conn.execute(
            "SELECT * FROM roadmap_events WHERE roadmap_id = ? ORDER BY seq ASC",
            (roadmap_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_events_after(self, roadmap_id: str, after_seq: int) -> list[RoadmapEvent]:
        """查询指定 seq 之后的增量事件（用于订阅方断线补齐）"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM roadmap_events
            WHERE roadmap_id = ? AND seq > ?
            ORDER BY seq ASC
            """,
            (roadmap_id, after_seq),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_events_for_task(self, task_id: str) -> list[RoadmapEvent]:
        cursor = await self._conn.execute(
            "SELECT * FROM roadmap_events WHERE task_id = ? ORDER BY seq ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> RoadmapEvent:
        """将数据库行转换为 RoadmapEvent 模型"""
        payload = json.loads(row[8]) if row[8] else {}
        return RoadmapEvent(
            event_id=row[0],
            roadmap_id=row[1],
            seq=row[2],
            ts=datetime.fromisoformat(row[3]),
            type=EventType(row[4]),
            actor=ActorType(row[5]),
            actor_id=row[6],
            task_id=row[7],
            payload=payload,
        )
